from sqlalchemy import DateTime, bindparam, text

from library_app import db
from library_app.config import LifecyclePolicy
from library_app.errors import NotFound
from library_app.models import Loan, LoanStatus, Reservation, User
from library_app.utils import isoformat, utcnow


class StatsService:
    """Service for calculating circulation statistics."""

    @staticmethod
    def get_book_stats() -> dict:
        """Count books in total and by status."""
        sql = text("""
            SELECT
                count(*) as total,
                sum(case when status = 'available' then 1 else 0 end) as available,
                sum(case when status = 'borrowed' then 1 else 0 end) as borrowed,
                sum(case when status = 'reserved' then 1 else 0 end) as reserved
            FROM books
        """)

        result = db.session.execute(sql).fetchone()

        return {
            "total_books": result.total or 0,
            "available_books": int(result.available or 0),
            "borrowed_books": int(result.borrowed or 0),
            "reserved_books": int(result.reserved or 0),
        }

    @staticmethod
    def get_loan_stats() -> dict:
        """
        Count loans by status and compute the average loan duration.

        Returns dict with:
            - total_loans, active_loans, overdue_loans, returned_loans
            - average_loan_duration: mean of (returned_at - borrowed_at) over
              returned loans, in whole days (rounded)
        """
        sql = text("""
            SELECT
                count(*) as total,
                sum(case when status = 'active' then 1 else 0 end) as active,
                sum(case when status = 'overdue' then 1 else 0 end) as overdue,
                sum(case when status = 'returned' then 1 else 0 end) as returned
            FROM loans
        """)

        result = db.session.execute(sql).fetchone()

        returned = db.session.execute(
            db.select(Loan.borrowed_at, Loan.returned_at).where(
                Loan.status == LoanStatus.RETURNED, Loan.returned_at.is_not(None)
            )
        ).all()

        average = 0
        if returned:
            total_seconds = sum(
                (row.returned_at - row.borrowed_at).total_seconds() for row in returned
            )
            average = round(total_seconds / len(returned) / 86400)

        return {
            "total_loans": result.total or 0,
            "active_loans": int(result.active or 0),
            "overdue_loans": int(result.overdue or 0),
            "returned_loans": int(result.returned or 0),
            "average_loan_duration": average,
        }

    @staticmethod
    def get_reservation_stats() -> dict:
        """Count reservations in total and by status."""
        sql = text("""
            SELECT
                count(*) as total,
                sum(case when status = 'active' then 1 else 0 end) as active,
                sum(case when status = 'expired' then 1 else 0 end) as expired,
                sum(case when status = 'converted' then 1 else 0 end) as converted,
                sum(case when status = 'cancelled' then 1 else 0 end) as cancelled
            FROM reservations
        """)

        result = db.session.execute(sql).fetchone()

        return {
            "total_reservations": result.total or 0,
            "active_reservations": int(result.active or 0),
            "expired_reservations": int(result.expired or 0),
            "converted_reservations": int(result.converted or 0),
            "cancelled_reservations": int(result.cancelled or 0),
        }

    @staticmethod
    def get_user_stats(user_id: int, policy=None) -> dict:
        """
        Loan and reservation counts for one user.

        Returns dict with:
            - active_loans, total_loans, active_reservations, total_reservations
            - loans_remaining, reservations_remaining: how many more the user
              may take out under *policy* (defaults apply when omitted)
        """
        if db.session.get(User, user_id) is None:
            raise NotFound("User not found")
        policy = policy or LifecyclePolicy()

        sql = text("""
            SELECT
                (SELECT count(*) FROM loans WHERE user_id = :user_id) as total_loans,
                (
                    SELECT count(*) FROM loans
                    WHERE user_id = :user_id AND status = 'active'
                ) as active_loans,
                (SELECT count(*) FROM reservations WHERE user_id = :user_id) as total_reservations,
                (
                    SELECT count(*) FROM reservations
                    WHERE user_id = :user_id AND status = 'active'
                ) as active_reservations
        """)

        result = db.session.execute(sql, {"user_id": user_id}).fetchone()
        active_loans = result.active_loans or 0
        active_reservations = result.active_reservations or 0

        return {
            "active_loans": active_loans,
            "total_loans": result.total_loans or 0,
            "active_reservations": active_reservations,
            "total_reservations": result.total_reservations or 0,
            "loans_remaining": max(policy.max_active_loans - active_loans, 0),
            "reservations_remaining": max(policy.max_active_reservations - active_reservations, 0),
        }

    @staticmethod
    def get_admin_stats(now=None) -> dict:
        """Dashboard totals.

        ``overdue_loans`` counts loans flagged overdue plus active loans whose
        due date has already passed.
        """
        now = now or utcnow()
        sql = text("""
            SELECT
                (SELECT count(*) FROM books) as total_books,
                (SELECT count(*) FROM users) as total_users,
                (SELECT count(*) FROM loans WHERE status = 'active') as active_loans,
                (
                    SELECT count(*) FROM loans
                    WHERE status = 'overdue'
                    OR (status = 'active' AND due_date < :now)
                ) as overdue_loans,
                (SELECT count(*) FROM reservations WHERE status = 'active') as active_reservations
        """).bindparams(bindparam("now", type_=DateTime))

        result = db.session.execute(sql, {"now": now}).fetchone()
        books = StatsService.get_book_stats()

        return {
            "total_books": result.total_books or 0,
            "total_users": result.total_users or 0,
            "active_loans": result.active_loans or 0,
            "overdue_loans": result.overdue_loans or 0,
            "active_reservations": result.active_reservations or 0,
            "available_books": books["available_books"],
            "borrowed_books": books["borrowed_books"],
            "reserved_books": books["reserved_books"],
        }

    @staticmethod
    def get_recent_activity(limit: int = 15) -> list[dict]:
        """Latest loans, returns, reservations and registrations, newest first."""
        activities = []

        for loan in Loan.query.order_by(Loan.borrowed_at.desc()).limit(10):
            activities.append({
                "id": loan.id,
                "type": "loan",
                "description": f'{loan.user.name} borrowed "{loan.book.title}"',
                "user": loan.user.to_dict(),
                "book": {"id": loan.book.id, "title": loan.book.title},
                "created_at": loan.borrowed_at,
            })

        returned = (
            Loan.query.filter(Loan.returned_at.is_not(None))
            .order_by(Loan.returned_at.desc())
            .limit(10)
        )
        for loan in returned:
            activities.append({
                "id": loan.id,
                "type": "return",
                "description": f'{loan.user.name} returned "{loan.book.title}"',
                "user": loan.user.to_dict(),
                "book": {"id": loan.book.id, "title": loan.book.title},
                "created_at": loan.returned_at,
            })

        for reservation in Reservation.query.order_by(Reservation.reserved_at.desc()).limit(10):
            activities.append({
                "id": reservation.id,
                "type": "reservation",
                "description": f'{reservation.user.name} reserved "{reservation.book.title}"',
                "user": reservation.user.to_dict(),
                "book": {"id": reservation.book.id, "title": reservation.book.title},
                "created_at": reservation.reserved_at,
            })

        for user in User.query.order_by(User.created_at.desc()).limit(5):
            activities.append({
                "id": user.id,
                "type": "user_registration",
                "description": f"New user registered: {user.name}",
                "user": user.to_dict(),
                "book": None,
                "created_at": user.created_at,
            })

        activities = [a for a in activities if a["created_at"] is not None]
        activities.sort(key=lambda a: a["created_at"], reverse=True)
        for activity in activities:
            activity["created_at"] = isoformat(activity["created_at"])
        return activities[:limit]
