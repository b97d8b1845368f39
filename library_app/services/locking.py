"""Per-book serialization boundary for circulation writes.

Every operation that changes a book's status together with a loan or
reservation row runs inside :func:`transaction`, takes the book row with
:func:`lock_book` before checking its preconditions, and writes the new
status with :func:`swap_book_status`.  On databases with row locks the
``FOR UPDATE`` holds off concurrent writers for the same book; where it is
ignored (SQLite) the compare-and-set still refuses to apply a status change
that was computed from a stale read.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field

from sqlalchemy import select, update

from library_app import db
from library_app.models import Book

logger = logging.getLogger(__name__)


@contextmanager
def transaction():
    """Commit the session on success, roll back on any exception."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def lock_book(book_id):
    """Load the book row for update, or None if it does not exist."""
    stmt = (
        select(Book)
        .where(Book.id == book_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def swap_book_status(book_id, expected, new) -> bool:
    """Set ``status`` to *new* only if it is currently one of *expected*.

    Returns True if the row was changed.
    """
    if isinstance(expected, str):
        expected = (expected,)
    stmt = (
        update(Book)
        .where(Book.id == book_id, Book.status.in_(expected))
        .values(status=new)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    changed = result.rowcount == 1
    book = db.session.get(Book, book_id)
    if book is not None:
        db.session.expire(book, ["status"])
    if not changed:
        logger.debug("Book %s status not in %s; left unchanged", book_id, expected)
    return changed


@dataclass
class SweepResult:
    """Outcome of a batch sweep over loans or reservations."""

    processed: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    failed: list = field(default_factory=list)

    @property
    def count(self):
        return len(self.processed)

    def to_dict(self):
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "count": self.count,
        }
