from flask import Blueprint, request
from flask_login import current_user, login_required

from library_app.models import LoanStatus, admin_required
from library_app.routes import (
    ensure_owner_or_admin,
    json_body,
    page_response,
    pagination_args,
    required_int,
)
from library_app.services import StatsService, loan_service
from library_app.utils import parse_bool, parse_int

bp = Blueprint("loans", __name__)


@bp.route("/", methods=["POST"])
@login_required
@admin_required
def create():
    """Lend a book to a user (admin only)."""
    body = json_body()
    service = loan_service()
    loan = service.create_loan(
        user_id=required_int(body, "user_id"),
        book_id=required_int(body, "book_id"),
        admin_id=current_user.id,
        due_date=body.get("due_date"),
    )
    return loan.to_dict(now=service.clock()), 201


@bp.route("/")
@login_required
@admin_required
def index():
    """All loans with filtering (admin only)."""
    page, limit = pagination_args()
    status = request.args.get("status")
    if status not in LoanStatus.ALL:
        status = None
    service = loan_service()
    loans, total = service.find_loans(
        user_id=parse_int(request.args.get("user_id")),
        book_id=parse_int(request.args.get("book_id")),
        admin_id=parse_int(request.args.get("admin_id")),
        status=status,
        overdue=parse_bool(request.args.get("overdue")),
        page=page,
        limit=limit,
    )
    now = service.clock()
    return page_response("loans", [loan.to_dict(now=now) for loan in loans], total, page, limit)


@bp.route("/my-loans")
@login_required
def my_loans():
    service = loan_service()
    loans = service.find_user_loans(current_user.id)
    now = service.clock()
    return {"loans": [loan.to_dict(now=now) for loan in loans]}


@bp.route("/overdue")
@login_required
@admin_required
def overdue():
    service = loan_service()
    loans = service.get_overdue_loans()
    now = service.clock()
    return {"loans": [loan.to_dict(now=now) for loan in loans]}


@bp.route("/my-overdue")
@login_required
def my_overdue():
    service = loan_service()
    loans = service.get_user_overdue_loans(current_user.id)
    now = service.clock()
    return {"loans": [loan.to_dict(now=now) for loan in loans]}


@bp.route("/stats")
@login_required
@admin_required
def stats():
    return StatsService.get_loan_stats()


@bp.route("/<int:id>")
@login_required
def detail(id):
    service = loan_service()
    loan = service.get_loan(id)
    ensure_owner_or_admin(current_user, loan.user_id, "loans")
    return loan.to_dict(now=service.clock())


@bp.route("/<int:id>", methods=["PATCH"])
@login_required
@admin_required
def update(id):
    body = json_body()
    service = loan_service()
    loan = service.update_loan(
        id,
        status=body.get("status"),
        due_date=body.get("due_date"),
        returned_at=body.get("returned_at"),
    )
    return loan.to_dict(now=service.clock())


@bp.route("/<int:id>/return", methods=["POST"])
@login_required
@admin_required
def return_loan(id):
    service = loan_service()
    return service.return_loan(id).to_dict(now=service.clock())


@bp.route("/<int:id>/extend", methods=["POST"])
@login_required
@admin_required
def extend(id):
    body = json_body()
    service = loan_service()
    return service.extend_loan(id, body.get("due_date")).to_dict(now=service.clock())


@bp.route("/check-overdue", methods=["POST"])
@login_required
@admin_required
def check_overdue():
    """Run the overdue sweep now."""
    return loan_service().check_overdue_loans().to_dict()
