from library_app import db
from library_app.utils import isoformat


class Author(db.Model):
    """Book authors."""

    __tablename__ = "authors"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    bio = db.Column(db.Text)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    # Relationships
    book_authors = db.relationship("BookAuthor", back_populates="author", cascade="all, delete-orphan")

    __table_args__ = (
        db.Index("idx_authors_name", last_name, first_name),
    )

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self, with_books=False):
        data = {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "bio": self.bio,
            "created_at": isoformat(self.created_at),
        }
        if with_books:
            data["books"] = [
                {"id": link.book.id, "title": link.book.title, "status": link.book.status}
                for link in self.book_authors
            ]
        return data

    def __repr__(self):
        return f"<Author {self.full_name}>"
