import logging

from sqlalchemy import or_, select

from library_app import db
from library_app.errors import InvalidState, NotFound
from library_app.models import (
    Author,
    Book,
    BookAuthor,
    BookStatus,
    Loan,
    LoanStatus,
    Reservation,
    ReservationStatus,
)
from library_app.services.locking import lock_book, transaction

logger = logging.getLogger(__name__)

BOOK_FIELDS = ("title", "year", "isbn", "category", "description", "cover_url")
AUTHOR_FIELDS = ("first_name", "last_name", "bio")


class CatalogService:
    """Service for managing books and authors."""

    @staticmethod
    def create_author(first_name: str, last_name: str, bio: str = None) -> Author:
        if not first_name or not last_name:
            raise InvalidState("Author first and last name are required")
        author = Author(first_name=first_name.strip(), last_name=last_name.strip(), bio=bio)
        with transaction():
            db.session.add(author)
        return author

    @staticmethod
    def get_author(author_id: int) -> Author:
        author = db.session.get(Author, author_id)
        if author is None:
            raise NotFound("Author not found")
        return author

    @staticmethod
    def find_authors(search: str = None) -> list[Author]:
        """Authors ordered by last then first name, optionally matching *search*."""
        query = Author.query
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(Author.first_name.ilike(pattern), Author.last_name.ilike(pattern))
            )
        return query.order_by(Author.last_name.asc(), Author.first_name.asc()).all()

    @classmethod
    def update_author(cls, author_id: int, **fields) -> Author:
        unknown = set(fields) - set(AUTHOR_FIELDS)
        if unknown:
            raise InvalidState(f"Unknown author fields: {', '.join(sorted(unknown))}")
        for name in ("first_name", "last_name"):
            if name in fields:
                if not isinstance(fields[name], str) or not fields[name].strip():
                    raise InvalidState("Author first and last name are required")
                fields[name] = fields[name].strip()

        with transaction():
            author = cls.get_author(author_id)
            for name, value in fields.items():
                setattr(author, name, value)

        return author

    @classmethod
    def delete_author(cls, author_id: int) -> None:
        """Remove an author; their books stay in the catalog without the link."""
        with transaction():
            author = cls.get_author(author_id)
            db.session.delete(author)

        logger.info("Author %s deleted", author_id)

    @staticmethod
    def _resolve_authors(author_ids) -> list[Author]:
        author_ids = list(dict.fromkeys(author_ids or []))
        if not author_ids:
            return []
        authors = Author.query.filter(Author.id.in_(author_ids)).all()
        if len(authors) != len(author_ids):
            raise InvalidState("One or more authors not found")
        return authors

    @staticmethod
    def _check_isbn(isbn, book_id=None):
        if not isbn:
            return
        clash = Book.query.filter(Book.isbn == isbn)
        if book_id is not None:
            clash = clash.filter(Book.id != book_id)
        if clash.first():
            raise InvalidState(f"A book with ISBN {isbn} already exists")

    @classmethod
    def create_book(cls, title: str, author_ids=None, **fields) -> Book:
        """Add a title to the catalog.  New books are always available."""
        if not title or not title.strip():
            raise InvalidState("Book title is required")
        unknown = set(fields) - set(BOOK_FIELDS)
        if unknown:
            raise InvalidState(f"Unknown book fields: {', '.join(sorted(unknown))}")

        with transaction():
            authors = cls._resolve_authors(author_ids)
            cls._check_isbn(fields.get("isbn"))
            book = Book(title=title.strip(), status=BookStatus.AVAILABLE, **fields)
            db.session.add(book)
            cls._relink_authors(book, authors)

        logger.info("Book %s added: %s", book.id, book.title)
        return book

    @classmethod
    def update_book(cls, book_id: int, author_ids=None, **fields) -> Book:
        """Update descriptive fields and optionally replace the author list.

        Status is owned by the circulation services and cannot be set here.
        """
        if "status" in fields:
            raise InvalidState("Book status is managed by loans and reservations")
        unknown = set(fields) - set(BOOK_FIELDS)
        if unknown:
            raise InvalidState(f"Unknown book fields: {', '.join(sorted(unknown))}")

        with transaction():
            book = db.session.get(Book, book_id)
            if book is None:
                raise NotFound("Book not found")
            if "isbn" in fields:
                cls._check_isbn(fields["isbn"], book_id=book_id)
            for name, value in fields.items():
                setattr(book, name, value)
            if author_ids is not None:
                authors = cls._resolve_authors(author_ids)
                cls._relink_authors(book, authors)

        return book

    @staticmethod
    def _relink_authors(book, authors):
        """Keep links to authors still listed, drop the rest, add new ones."""
        wanted = {author.id for author in authors}
        with db.session.no_autoflush:
            for link in list(book.book_authors):
                if link.author_id not in wanted:
                    book.book_authors.remove(link)
            linked = {link.author_id for link in book.book_authors}
            for author in authors:
                if author.id not in linked:
                    book.book_authors.append(BookAuthor(author=author))

    @staticmethod
    def delete_book(book_id: int) -> None:
        """Remove a book that has never been lent or reserved."""
        with transaction():
            book = lock_book(book_id)
            if book is None:
                raise NotFound("Book not found")

            active_loans = Loan.query.filter(
                Loan.book_id == book_id,
                Loan.status.in_([LoanStatus.ACTIVE, LoanStatus.OVERDUE]),
            ).count()
            active_reservations = Reservation.query.filter_by(
                book_id=book_id, status=ReservationStatus.ACTIVE
            ).count()
            if active_loans or active_reservations:
                raise InvalidState("Book has an active loan or reservation")

            if Loan.query.filter_by(book_id=book_id).first() or \
                    Reservation.query.filter_by(book_id=book_id).first():
                raise InvalidState("Book has circulation history and cannot be deleted")

            db.session.delete(book)

        logger.info("Book %s deleted", book_id)

    @staticmethod
    def get_book(book_id: int) -> Book:
        book = db.session.get(Book, book_id)
        if book is None:
            raise NotFound("Book not found")
        return book

    @staticmethod
    def find_books(search=None, category=None, status=None, author_id=None, page=1, limit=20):
        """Filtered, paginated books, newest first.  Returns (books, total)."""
        stmt = select(Book)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Book.title.ilike(pattern),
                    Book.description.ilike(pattern),
                    Book.isbn.ilike(pattern),
                )
            )
        if category:
            stmt = stmt.where(Book.category == category)
        if status:
            stmt = stmt.where(Book.status == status)
        if author_id:
            stmt = stmt.where(
                Book.id.in_(select(BookAuthor.book_id).where(BookAuthor.author_id == author_id))
            )
        stmt = stmt.order_by(Book.created_at.desc(), Book.id.desc())

        pagination = db.paginate(stmt, page=page, per_page=limit, error_out=False)
        return pagination.items, pagination.total

    @staticmethod
    def get_categories() -> list[str]:
        """Distinct, non-empty book categories in alphabetical order."""
        rows = db.session.execute(
            select(Book.category).where(Book.category.is_not(None)).distinct()
        ).scalars()
        return sorted(category for category in rows if category)

    @staticmethod
    def override_status(book_id: int, status: str) -> Book:
        """Force a book's status.

        Maintenance escape hatch for repairing data; normal circulation
        never calls this.
        """
        if status not in BookStatus.ALL:
            raise InvalidState(f"Unknown book status: {status}")

        with transaction():
            book = lock_book(book_id)
            if book is None:
                raise NotFound("Book not found")
            previous = book.status
            book.status = status

        logger.warning("Book %s status overridden: %s -> %s", book_id, previous, status)
        return book
