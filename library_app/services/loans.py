import logging
from datetime import timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from library_app import db
from library_app.config import LifecyclePolicy
from library_app.errors import InvalidState, NotFound
from library_app.models import (
    BookStatus,
    Loan,
    LoanStatus,
    Reservation,
    ReservationStatus,
    User,
)
from library_app.services.locking import SweepResult, lock_book, swap_book_status, transaction
from library_app.services.reservations import pending_conversion
from library_app.utils import parse_datetime, utcnow

logger = logging.getLogger(__name__)


class LoanService:
    """Lends books, takes them back, extends due dates and flags overdue loans."""

    def __init__(self, policy: LifecyclePolicy = None, clock=None):
        self.policy = policy or LifecyclePolicy()
        self.clock = clock or utcnow

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create_loan(self, user_id: int, book_id: int, admin_id: int, due_date=None) -> Loan:
        """Lend a book to a user.

        The book must not be borrowed.  If it is reserved, the reservation
        has to be the borrower's own; it is marked converted.  Book status,
        reservation status and the new loan are committed together.
        """
        due_date = parse_datetime(due_date, "due date")

        with transaction():
            if db.session.get(User, user_id) is None:
                raise NotFound("User not found")

            book = lock_book(book_id)
            if book is None:
                raise NotFound("Book not found")

            if book.status == BookStatus.BORROWED:
                raise InvalidState("Book is already borrowed")

            existing = Loan.query.filter_by(
                user_id=user_id, book_id=book_id, status=LoanStatus.ACTIVE
            ).first()
            if existing:
                raise InvalidState("User already has an active loan for this book")

            active_count = Loan.query.filter_by(user_id=user_id, status=LoanStatus.ACTIVE).count()
            if active_count >= self.policy.max_active_loans:
                raise InvalidState(
                    f"User has reached the maximum number of active loans ({self.policy.max_active_loans})"
                )

            prior_status = book.status
            if prior_status == BookStatus.RESERVED:
                reservation = self._borrower_reservation(book_id, user_id)
                if reservation is None:
                    raise InvalidState("Book is reserved by another user")
                reservation.status = ReservationStatus.CONVERTED

            if db.session.get(User, admin_id) is None:
                raise NotFound("Admin not found")

            now = self.clock()
            due = due_date or now + timedelta(days=self.policy.default_loan_days)
            loan = Loan(
                user_id=user_id,
                book_id=book_id,
                admin_id=admin_id,
                borrowed_at=now,
                due_date=due,
                original_due_date=due,
                status=LoanStatus.ACTIVE,
            )
            db.session.add(loan)

            if not swap_book_status(book_id, prior_status, BookStatus.BORROWED):
                raise InvalidState("Book status changed concurrently, please retry")

        logger.info("Loan %s created: book %s to user %s by admin %s", loan.id, book_id, user_id, admin_id)
        return loan

    def _borrower_reservation(self, book_id, user_id):
        """The reservation that lets *user_id* borrow a reserved book, if any.

        That is the user's active reservation, or a pending conversion: the
        book's latest reservation was converted for this user and no other
        reservation is active on the book.
        """
        reservation = Reservation.query.filter_by(
            book_id=book_id, user_id=user_id, status=ReservationStatus.ACTIVE
        ).first()
        if reservation is not None:
            return reservation

        pending = pending_conversion(book_id)
        if pending is not None and pending.user_id == user_id:
            return pending
        return None

    def update_loan(self, loan_id: int, status: str = None, due_date=None, returned_at=None) -> Loan:
        """Apply an administrative update to a loan.

        Returning a loan stamps ``returned_at`` and frees the book once;
        returning it again leaves the book alone.  ``returned`` is terminal.
        """
        if status is not None and status not in LoanStatus.ALL:
            raise InvalidState(f"Unknown loan status: {status}")
        due_date = parse_datetime(due_date, "due date")
        returned_at = parse_datetime(returned_at, "return date")

        with transaction():
            loan = db.session.get(Loan, loan_id)
            if loan is None:
                raise NotFound("Loan not found")

            lock_book(loan.book_id)
            db.session.refresh(loan)

            old_status = loan.status
            if old_status == LoanStatus.RETURNED and status not in (None, LoanStatus.RETURNED):
                raise InvalidState("Returned loans cannot be reopened")

            becomes_returned = status == LoanStatus.RETURNED and old_status != LoanStatus.RETURNED
            if returned_at is not None and not (becomes_returned or old_status == LoanStatus.RETURNED):
                raise InvalidState("Return date can only be set on a returned loan")

            if due_date is not None:
                loan.due_date = due_date

            if becomes_returned:
                loan.status = LoanStatus.RETURNED
                loan.returned_at = returned_at or self.clock()
                if not swap_book_status(loan.book_id, BookStatus.BORROWED, BookStatus.AVAILABLE):
                    logger.warning(
                        "Loan %s returned but book %s was not marked borrowed", loan.id, loan.book_id
                    )
            elif status is not None:
                loan.status = status
            if returned_at is not None and not becomes_returned:
                loan.returned_at = returned_at

        if becomes_returned:
            logger.info("Loan %s returned, book %s available", loan.id, loan.book_id)
        return loan

    def return_loan(self, loan_id: int) -> Loan:
        return self.update_loan(loan_id, status=LoanStatus.RETURNED)

    def extend_loan(self, loan_id: int, new_due_date) -> Loan:
        """Move the due date of an active loan.

        The new date must be in the future and no later than
        ``max_extension_days`` past the loan's original due date.
        """
        new_due = parse_datetime(new_due_date, "due date")
        if new_due is None:
            raise InvalidState("A new due date is required")

        with transaction():
            loan = db.session.get(Loan, loan_id)
            if loan is None:
                raise NotFound("Loan not found")

            if loan.status != LoanStatus.ACTIVE:
                raise InvalidState("Only active loans can be extended")

            if new_due <= self.clock():
                raise InvalidState("Due date must be in the future")

            ceiling = loan.original_due_date + timedelta(days=self.policy.max_extension_days)
            if new_due > ceiling:
                raise InvalidState(
                    f"Due date cannot be more than {self.policy.max_extension_days} days "
                    f"past the original due date"
                )

            loan.due_date = new_due

        logger.info("Loan %s extended to %s", loan.id, new_due.isoformat())
        return loan

    def check_overdue_loans(self) -> SweepResult:
        """Mark every active loan past its due date as overdue.

        Book status is not touched: an overdue loan still holds the book.
        """
        now = self.clock()
        loan_ids = db.session.execute(
            select(Loan.id).where(Loan.status == LoanStatus.ACTIVE, Loan.due_date < now)
        ).scalars().all()

        result = SweepResult()
        for loan_id in loan_ids:
            try:
                with transaction():
                    changed = db.session.execute(
                        update(Loan)
                        .where(
                            Loan.id == loan_id,
                            Loan.status == LoanStatus.ACTIVE,
                            Loan.due_date < now,
                        )
                        .values(status=LoanStatus.OVERDUE)
                        .execution_options(synchronize_session=False)
                    ).rowcount
            except SQLAlchemyError:
                logger.exception("Could not mark loan %s overdue", loan_id)
                result.failed.append(loan_id)
                continue
            if changed:
                result.processed.append(loan_id)
            else:
                result.skipped.append(loan_id)

        logger.info(
            "Overdue sweep: %d marked overdue, %d skipped, %d failed",
            result.count, len(result.skipped), len(result.failed),
        )
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_loan(self, loan_id: int) -> Loan:
        loan = db.session.get(Loan, loan_id)
        if loan is None:
            raise NotFound("Loan not found")
        return loan

    def find_loans(
        self,
        user_id=None,
        book_id=None,
        admin_id=None,
        status=None,
        overdue=False,
        page=1,
        limit=20,
    ):
        """Filtered, paginated loans, newest first.  Returns (loans, total).

        ``overdue=True`` selects active loans already past their due date;
        ``status="overdue"`` selects loans the sweep has flagged.
        """
        stmt = select(Loan)
        if user_id:
            stmt = stmt.where(Loan.user_id == user_id)
        if book_id:
            stmt = stmt.where(Loan.book_id == book_id)
        if admin_id:
            stmt = stmt.where(Loan.admin_id == admin_id)
        if status:
            stmt = stmt.where(Loan.status == status)
        if overdue:
            stmt = stmt.where(Loan.status == LoanStatus.ACTIVE, Loan.due_date < self.clock())
        stmt = stmt.order_by(Loan.borrowed_at.desc(), Loan.id.desc())

        pagination = db.paginate(stmt, page=page, per_page=limit, error_out=False)
        return pagination.items, pagination.total

    def find_user_loans(self, user_id: int) -> list[Loan]:
        return (
            Loan.query.filter_by(user_id=user_id)
            .order_by(Loan.borrowed_at.desc(), Loan.id.desc())
            .all()
        )

    def _overdue_query(self):
        return Loan.query.filter(
            or_(
                Loan.status == LoanStatus.OVERDUE,
                (Loan.status == LoanStatus.ACTIVE) & (Loan.due_date < self.clock()),
            )
        ).order_by(Loan.due_date.asc(), Loan.id.asc())

    def get_overdue_loans(self) -> list[Loan]:
        """Loans flagged overdue by the sweep plus active loans already past due."""
        return self._overdue_query().all()

    def get_user_overdue_loans(self, user_id: int) -> list[Loan]:
        return self._overdue_query().filter(Loan.user_id == user_id).all()

    def count_overdue_loans(self) -> int:
        return self._overdue_query().order_by(None).count()

