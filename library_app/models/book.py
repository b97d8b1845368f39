from library_app import db
from library_app.utils import isoformat


class BookStatus:
    AVAILABLE = "available"
    RESERVED = "reserved"
    BORROWED = "borrowed"

    ALL = (AVAILABLE, RESERVED, BORROWED)


class Book(db.Model):
    """Catalog titles.  ``status`` mirrors the book's current active claim."""

    __tablename__ = "books"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False, index=True)
    year = db.Column(db.Integer)
    isbn = db.Column(db.String(20), unique=True)
    category = db.Column(db.String(100))
    description = db.Column(db.Text)
    cover_url = db.Column(db.String(255))
    status = db.Column(db.String(20), default=BookStatus.AVAILABLE, nullable=False, index=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    # Relationships
    book_authors = db.relationship(
        "BookAuthor", back_populates="book", cascade="all, delete-orphan"
    )

    @property
    def authors(self):
        return [ba.author for ba in self.book_authors]

    @property
    def is_available(self):
        return self.status == BookStatus.AVAILABLE

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "year": self.year,
            "isbn": self.isbn,
            "category": self.category,
            "description": self.description,
            "cover_url": self.cover_url,
            "status": self.status,
            "created_at": isoformat(self.created_at),
            "authors": [author.to_dict() for author in self.authors],
        }

    def __repr__(self):
        return f"<Book {self.id} {self.title!r} ({self.status})>"


class BookAuthor(db.Model):
    """Links books to their authors."""

    __tablename__ = "book_authors"

    book_id = db.Column(db.Integer, db.ForeignKey("books.id", ondelete="CASCADE"), primary_key=True)
    author_id = db.Column(db.Integer, db.ForeignKey("authors.id", ondelete="CASCADE"), primary_key=True)

    book = db.relationship("Book", back_populates="book_authors")
    author = db.relationship("Author", back_populates="book_authors")
