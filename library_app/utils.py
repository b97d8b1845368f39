"""Shared input parsing helpers."""

from datetime import datetime, timezone

from library_app.errors import InvalidState


def utcnow() -> datetime:
    """Return the current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value, field: str = "date"):
    """Parse an ISO-8601 string (or pass through a datetime) to naive UTC.

    Returns None for None/blank input.  Aware values are converted to UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidState(f"Invalid {field}: {value!r} is not an ISO-8601 date")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def isoformat(value):
    return value.isoformat() if value else None


def parse_int(value, default=None):
    """Return *value* as an int, or *default* if it is blank or not numeric."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def parse_bool(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def page_args(args, default_size: int = 20, max_size: int = 100) -> tuple[int, int]:
    """Extract (page, limit) from request args, clamped to sane bounds."""
    page = max(parse_int(args.get("page"), 1), 1)
    limit = parse_int(args.get("limit"), default_size)
    limit = min(max(limit, 1), max_size)
    return page, limit
