import logging
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import aliased

from library_app import db
from library_app.config import LifecyclePolicy
from library_app.errors import Forbidden, InvalidState, NotFound
from library_app.models import Book, BookStatus, Reservation, ReservationStatus, User
from library_app.services.locking import SweepResult, lock_book, swap_book_status, transaction
from library_app.utils import parse_datetime, utcnow

logger = logging.getLogger(__name__)


def pending_conversion(book_id):
    """The book's converted reservation still waiting for its loan, if any.

    Only meaningful while the book is reserved: the latest reservation on the
    book was converted and no other reservation on it is active.
    """
    if Reservation.query.filter_by(book_id=book_id, status=ReservationStatus.ACTIVE).first():
        return None
    latest = (
        Reservation.query.filter_by(book_id=book_id)
        .order_by(Reservation.reserved_at.desc(), Reservation.id.desc())
        .first()
    )
    if latest is None or latest.status != ReservationStatus.CONVERTED:
        return None
    return latest


class ReservationService:
    """Places, cancels, converts and expires reservations on available books."""

    def __init__(self, policy: LifecyclePolicy = None, clock=None):
        self.policy = policy or LifecyclePolicy()
        self.clock = clock or utcnow

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create_reservation(self, user_id: int, book_id: int, expires_at=None) -> Reservation:
        """Reserve an available book for a user; the book becomes reserved."""
        expires_at = parse_datetime(expires_at, "expiry date")

        with transaction():
            if db.session.get(User, user_id) is None:
                raise NotFound("User not found")

            book = lock_book(book_id)
            if book is None:
                raise NotFound("Book not found")

            if not book.is_available:
                raise InvalidState("Book is not available for reservation")

            existing = Reservation.query.filter_by(
                user_id=user_id, book_id=book_id, status=ReservationStatus.ACTIVE
            ).first()
            if existing:
                raise InvalidState("You already have an active reservation for this book")

            active_count = Reservation.query.filter_by(
                user_id=user_id, status=ReservationStatus.ACTIVE
            ).count()
            if active_count >= self.policy.max_active_reservations:
                raise InvalidState(
                    "You have reached the maximum number of active reservations "
                    f"({self.policy.max_active_reservations})"
                )

            now = self.clock()
            reservation = Reservation(
                user_id=user_id,
                book_id=book_id,
                reserved_at=now,
                expires_at=expires_at or now + timedelta(days=self.policy.default_reservation_days),
                status=ReservationStatus.ACTIVE,
            )
            db.session.add(reservation)

            if not swap_book_status(book_id, BookStatus.AVAILABLE, BookStatus.RESERVED):
                raise InvalidState("Book status changed concurrently, please retry")

        logger.info("Reservation %s created: book %s for user %s", reservation.id, book_id, user_id)
        return reservation

    def update_reservation(self, reservation_id: int, caller, status: str = None, expires_at=None) -> Reservation:
        """Change a reservation's status or expiry on behalf of *caller*.

        Owners may only cancel.  Admins may set any status; writing
        ``converted`` here creates no loan.  Cancelling or expiring an active
        reservation frees the book.
        """
        if status is not None and status not in ReservationStatus.ALL:
            raise InvalidState(f"Unknown reservation status: {status}")
        expires_at = parse_datetime(expires_at, "expiry date")

        with transaction():
            reservation = db.session.get(Reservation, reservation_id)
            if reservation is None:
                raise NotFound("Reservation not found")

            if not caller.is_admin and reservation.user_id != caller.id:
                raise Forbidden("You can only modify your own reservations")

            if not caller.is_admin and (
                (status is not None and status != ReservationStatus.CANCELLED)
                or expires_at is not None
            ):
                raise Forbidden("Users can only cancel their own reservations")

            lock_book(reservation.book_id)
            db.session.refresh(reservation)

            old_status = reservation.status
            if status is not None and status != old_status:
                if old_status in ReservationStatus.TERMINAL:
                    raise InvalidState("Only active reservations can change status")
                reservation.status = status
                if status in (ReservationStatus.CANCELLED, ReservationStatus.EXPIRED):
                    self._release_book(reservation)

            if expires_at is not None:
                reservation.expires_at = expires_at

        if status is not None and status != old_status:
            logger.info("Reservation %s %s -> %s by user %s", reservation.id, old_status, status, caller.id)
        return reservation

    def cancel_reservation(self, reservation_id: int, user_id: int) -> Reservation:
        """Cancel one of the caller's own active reservations."""
        with transaction():
            reservation = Reservation.query.filter_by(id=reservation_id, user_id=user_id).first()
            if reservation is None:
                raise NotFound("Reservation not found or does not belong to you")

            lock_book(reservation.book_id)
            db.session.refresh(reservation)

            if reservation.status != ReservationStatus.ACTIVE:
                raise InvalidState("Only active reservations can be cancelled")

            reservation.status = ReservationStatus.CANCELLED
            self._release_book(reservation)

        logger.info("Reservation %s cancelled by user %s", reservation.id, user_id)
        return reservation

    def convert_reservation_to_loan(self, reservation_id: int) -> Reservation:
        """Mark an active reservation converted.

        No loan is created here; the book stays reserved until the admin
        lends it to the reservation holder, or until the expiry sweep finds
        the reservation past ``expires_at`` and releases the book.
        """
        with transaction():
            reservation = db.session.get(Reservation, reservation_id)
            if reservation is None:
                raise NotFound("Reservation not found")

            lock_book(reservation.book_id)
            db.session.refresh(reservation)

            if reservation.status != ReservationStatus.ACTIVE:
                raise InvalidState("Only active reservations can be converted to loans")

            reservation.status = ReservationStatus.CONVERTED

        logger.info("Reservation %s converted", reservation.id)
        return reservation

    def check_expired_reservations(self) -> SweepResult:
        """Expire active reservations whose ``expires_at`` has passed.

        Each reservation is handled in its own transaction under its book's
        lock and re-checked there, so repeated or overlapping sweeps are
        harmless and a book that moved on since the scan is left alone.

        A converted reservation past its ``expires_at`` whose loan was never
        created releases its book too; those ids are listed as processed.
        """
        now = self.clock()
        candidates = db.session.execute(
            select(Reservation.id, Reservation.book_id).where(
                Reservation.status == ReservationStatus.ACTIVE,
                Reservation.expires_at.is_not(None),
                Reservation.expires_at < now,
            )
        ).all()

        result = SweepResult()
        for reservation_id, book_id in candidates:
            try:
                expired = self._expire_one(reservation_id, book_id, now)
            except SQLAlchemyError:
                logger.exception("Could not expire reservation %s", reservation_id)
                result.failed.append(reservation_id)
                continue
            if expired:
                result.processed.append(reservation_id)
            else:
                result.skipped.append(reservation_id)

        for reservation_id, book_id in self._lapsed_conversions(now):
            try:
                released = self._release_conversion(reservation_id, book_id, now)
            except SQLAlchemyError:
                logger.exception("Could not release book held by reservation %s", reservation_id)
                result.failed.append(reservation_id)
                continue
            if released:
                result.processed.append(reservation_id)
            else:
                result.skipped.append(reservation_id)

        logger.info(
            "Expiry sweep: %d expired, %d skipped, %d failed",
            result.count, len(result.skipped), len(result.failed),
        )
        return result

    def _expire_one(self, reservation_id, book_id, now) -> bool:
        with transaction():
            lock_book(book_id)
            reservation = db.session.get(Reservation, reservation_id)
            if reservation is None:
                return False
            db.session.refresh(reservation)
            if not reservation.is_expired_at(now):
                return False
            reservation.status = ReservationStatus.EXPIRED
            self._release_book(reservation)
        return True

    def _lapsed_conversions(self, now):
        """Converted reservations past expiry that are still the latest on a reserved book."""
        newer = aliased(Reservation)
        return db.session.execute(
            select(Reservation.id, Reservation.book_id)
            .join(Book, Book.id == Reservation.book_id)
            .where(
                Reservation.status == ReservationStatus.CONVERTED,
                Reservation.expires_at.is_not(None),
                Reservation.expires_at < now,
                Book.status == BookStatus.RESERVED,
                ~select(newer.id)
                .where(newer.book_id == Reservation.book_id, newer.id > Reservation.id)
                .exists(),
            )
        ).all()

    def _release_conversion(self, reservation_id, book_id, now) -> bool:
        with transaction():
            book = lock_book(book_id)
            if book is None or book.status != BookStatus.RESERVED:
                return False
            pending = pending_conversion(book_id)
            if pending is None or pending.id != reservation_id:
                return False
            if pending.expires_at is None or pending.expires_at >= now:
                return False
            self._release_book(pending)
        logger.info("Reservation %s was converted but never lent; book %s released", reservation_id, book_id)
        return True

    def _release_book(self, reservation):
        if not swap_book_status(reservation.book_id, BookStatus.RESERVED, BookStatus.AVAILABLE):
            logger.warning(
                "Reservation %s released but book %s was not reserved",
                reservation.id, reservation.book_id,
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_reservation(self, reservation_id: int) -> Reservation:
        reservation = db.session.get(Reservation, reservation_id)
        if reservation is None:
            raise NotFound("Reservation not found")
        return reservation

    def find_reservations(self, user_id=None, book_id=None, status=None, page=1, limit=20):
        """Filtered, paginated reservations, newest first.  Returns (reservations, total)."""
        stmt = select(Reservation)
        if user_id:
            stmt = stmt.where(Reservation.user_id == user_id)
        if book_id:
            stmt = stmt.where(Reservation.book_id == book_id)
        if status:
            stmt = stmt.where(Reservation.status == status)
        stmt = stmt.order_by(Reservation.reserved_at.desc(), Reservation.id.desc())

        pagination = db.paginate(stmt, page=page, per_page=limit, error_out=False)
        return pagination.items, pagination.total

    def find_user_reservations(self, user_id: int) -> list[Reservation]:
        return (
            Reservation.query.filter_by(user_id=user_id)
            .order_by(Reservation.reserved_at.desc(), Reservation.id.desc())
            .all()
        )
