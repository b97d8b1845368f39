from flask import Blueprint, request
from flask_login import login_required

from library_app.models import admin_required
from library_app.services import StatsService
from library_app.utils import parse_int

bp = Blueprint("admin", __name__)


@bp.route("/stats")
@login_required
@admin_required
def stats():
    """Dashboard totals."""
    return StatsService.get_admin_stats()


@bp.route("/activity")
@login_required
@admin_required
def activity():
    """Recent loans, returns, reservations and registrations."""
    limit = min(max(parse_int(request.args.get("limit"), 15), 1), 50)
    return {"activity": StatsService.get_recent_activity(limit=limit)}
