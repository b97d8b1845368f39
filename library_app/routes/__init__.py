"""JSON blueprints and the small request helpers they share."""

from flask import current_app, request

from library_app.errors import Forbidden, InvalidState
from library_app.utils import page_args, parse_int


def json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise InvalidState("Request body must be a JSON object")
    return body


def required_int(body: dict, name: str) -> int:
    value = parse_int(body.get(name))
    if value is None:
        raise InvalidState(f"{name} is required and must be an integer")
    return value


def pagination_args():
    return page_args(
        request.args,
        default_size=current_app.config.get("DEFAULT_PAGE_SIZE", 20),
        max_size=current_app.config.get("MAX_PAGE_SIZE", 100),
    )


def page_response(key: str, items: list, total: int, page: int, limit: int) -> dict:
    return {key: items, "total": total, "page": page, "limit": limit}


def ensure_owner_or_admin(user, owner_id: int, what: str) -> None:
    if not user.is_admin and user.id != owner_id:
        raise Forbidden(f"You can only view your own {what}")
