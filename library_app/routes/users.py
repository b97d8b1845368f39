from flask import Blueprint, current_app
from flask_login import current_user, login_required

from library_app.config import LifecyclePolicy
from library_app.models import admin_required
from library_app.services import StatsService

bp = Blueprint("users", __name__)


def _user_stats(user_id):
    policy = LifecyclePolicy.from_config(current_app.config)
    return StatsService.get_user_stats(user_id, policy=policy)


@bp.route("/me")
@login_required
def me():
    return current_user.to_dict()


@bp.route("/me/stats")
@login_required
def my_stats():
    """The caller's loan and reservation counts and remaining allowance."""
    return _user_stats(current_user.id)


@bp.route("/<int:id>/stats")
@login_required
@admin_required
def stats(id):
    return _user_stats(id)
