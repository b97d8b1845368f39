from library_app.models.user import User, UserRole, admin_required
from library_app.models.author import Author
from library_app.models.book import Book, BookAuthor, BookStatus
from library_app.models.reservation import Reservation, ReservationStatus
from library_app.models.loan import Loan, LoanStatus

__all__ = [
    "User",
    "UserRole",
    "admin_required",
    "Author",
    "Book",
    "BookAuthor",
    "BookStatus",
    "Reservation",
    "ReservationStatus",
    "Loan",
    "LoanStatus",
]
