from flask import Blueprint, request
from flask_login import login_required

from library_app.models import BookStatus, admin_required
from library_app.routes import json_body, page_response, pagination_args
from library_app.services import CatalogService, StatsService
from library_app.services.catalog import BOOK_FIELDS
from library_app.utils import parse_int

bp = Blueprint("books", __name__)


@bp.route("/")
def index():
    """Search and filter the catalog."""
    page, limit = pagination_args()
    status = request.args.get("status")
    if status not in BookStatus.ALL:
        status = None
    books, total = CatalogService.find_books(
        search=request.args.get("search", "").strip() or None,
        category=request.args.get("category") or None,
        status=status,
        author_id=parse_int(request.args.get("author_id")),
        page=page,
        limit=limit,
    )
    return page_response("books", [book.to_dict() for book in books], total, page, limit)


@bp.route("/categories")
def categories():
    return {"categories": CatalogService.get_categories()}


@bp.route("/stats")
@login_required
@admin_required
def stats():
    return StatsService.get_book_stats()


@bp.route("/<int:id>")
def detail(id):
    return CatalogService.get_book(id).to_dict()


@bp.route("/", methods=["POST"])
@login_required
@admin_required
def create():
    body = json_body()
    fields = {name: body[name] for name in BOOK_FIELDS if name in body and name != "title"}
    book = CatalogService.create_book(
        body.get("title", ""),
        author_ids=body.get("author_ids") or [],
        **fields,
    )
    return book.to_dict(), 201


@bp.route("/<int:id>", methods=["PATCH"])
@login_required
@admin_required
def update(id):
    body = json_body()
    fields = {name: body[name] for name in BOOK_FIELDS if name in body}
    if "status" in body:
        fields["status"] = body["status"]
    book = CatalogService.update_book(id, author_ids=body.get("author_ids"), **fields)
    return book.to_dict()


@bp.route("/<int:id>", methods=["DELETE"])
@login_required
@admin_required
def delete(id):
    CatalogService.delete_book(id)
    return "", 204


@bp.route("/<int:id>/status", methods=["PATCH"])
@login_required
@admin_required
def override_status(id):
    """Maintenance override of a book's status."""
    body = json_body()
    return CatalogService.override_status(id, body.get("status")).to_dict()

