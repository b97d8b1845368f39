from flask import Blueprint, request
from flask_login import current_user, login_required

from library_app.models import ReservationStatus, admin_required
from library_app.routes import (
    ensure_owner_or_admin,
    json_body,
    page_response,
    pagination_args,
    required_int,
)
from library_app.services import StatsService, reservation_service
from library_app.utils import parse_int

bp = Blueprint("reservations", __name__)


@bp.route("/", methods=["POST"])
@login_required
def create():
    """Reserve an available book for the caller."""
    body = json_body()
    reservation = reservation_service().create_reservation(
        user_id=current_user.id,
        book_id=required_int(body, "book_id"),
        expires_at=body.get("expires_at"),
    )
    return reservation.to_dict(), 201


@bp.route("/")
@login_required
@admin_required
def index():
    """All reservations with filtering (admin only)."""
    page, limit = pagination_args()
    status = request.args.get("status")
    if status not in ReservationStatus.ALL:
        status = None
    reservations, total = reservation_service().find_reservations(
        user_id=parse_int(request.args.get("user_id")),
        book_id=parse_int(request.args.get("book_id")),
        status=status,
        page=page,
        limit=limit,
    )
    return page_response(
        "reservations", [r.to_dict() for r in reservations], total, page, limit
    )


@bp.route("/my-reservations")
@login_required
def my_reservations():
    reservations = reservation_service().find_user_reservations(current_user.id)
    return {"reservations": [r.to_dict() for r in reservations]}


@bp.route("/stats")
@login_required
@admin_required
def stats():
    return StatsService.get_reservation_stats()


@bp.route("/<int:id>")
@login_required
def detail(id):
    reservation = reservation_service().get_reservation(id)
    ensure_owner_or_admin(current_user, reservation.user_id, "reservations")
    return reservation.to_dict()


@bp.route("/<int:id>", methods=["PATCH"])
@login_required
def update(id):
    body = json_body()
    reservation = reservation_service().update_reservation(
        id,
        current_user,
        status=body.get("status"),
        expires_at=body.get("expires_at"),
    )
    return reservation.to_dict()


@bp.route("/<int:id>/cancel", methods=["POST"])
@login_required
def cancel(id):
    return reservation_service().cancel_reservation(id, current_user.id).to_dict()


@bp.route("/<int:id>/convert-to-loan", methods=["POST"])
@login_required
@admin_required
def convert_to_loan(id):
    return reservation_service().convert_reservation_to_loan(id).to_dict()


@bp.route("/check-expired", methods=["POST"])
@login_required
@admin_required
def check_expired():
    """Run the expiry sweep now."""
    return reservation_service().check_expired_reservations().to_dict()
