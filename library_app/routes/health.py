import time
from importlib.metadata import PackageNotFoundError, version

from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from library_app import db
from library_app.utils import isoformat, utcnow

bp = Blueprint("health", __name__)

_STARTED = time.monotonic()


def _version():
    try:
        return version("library-circulation")
    except PackageNotFoundError:
        return "0.0.0"


@bp.route("/")
def check():
    return {
        "status": "ok",
        "timestamp": isoformat(utcnow()),
        "uptime": round(time.monotonic() - _STARTED, 3),
        "version": _version(),
    }


@bp.route("/detailed")
def detailed():
    """Basic health plus a database round trip."""
    payload = check()
    started = time.perf_counter()
    try:
        db.session.execute(text("SELECT 1"))
        payload["database"] = {
            "status": "ok",
            "connection": True,
            "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
        }
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        payload["status"] = "degraded"
        payload["database"] = {"status": "error", "connection": False, "error": str(exc)}
    return payload
