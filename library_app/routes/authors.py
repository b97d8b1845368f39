from flask import Blueprint, request
from flask_login import login_required

from library_app.models import admin_required
from library_app.routes import json_body
from library_app.services import CatalogService
from library_app.services.catalog import AUTHOR_FIELDS

bp = Blueprint("authors", __name__)


@bp.route("/")
def index():
    """List authors, optionally filtered by name."""
    authors = CatalogService.find_authors(search=request.args.get("search", "").strip() or None)
    return {"authors": [author.to_dict() for author in authors]}


@bp.route("/<int:id>")
def detail(id):
    return CatalogService.get_author(id).to_dict(with_books=True)


@bp.route("/", methods=["POST"])
@login_required
@admin_required
def create():
    body = json_body()
    author = CatalogService.create_author(
        body.get("first_name", ""),
        body.get("last_name", ""),
        bio=body.get("bio"),
    )
    return author.to_dict(), 201


@bp.route("/<int:id>", methods=["PATCH"])
@login_required
@admin_required
def update(id):
    body = json_body()
    fields = {name: body[name] for name in AUTHOR_FIELDS if name in body}
    return CatalogService.update_author(id, **fields).to_dict(with_books=True)


@bp.route("/<int:id>", methods=["DELETE"])
@login_required
@admin_required
def delete(id):
    CatalogService.delete_author(id)
    return "", 204
