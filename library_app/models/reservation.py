from library_app import db
from library_app.utils import isoformat, utcnow


class ReservationStatus:
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    CONVERTED = "converted"

    ALL = (ACTIVE, CANCELLED, EXPIRED, CONVERTED)
    TERMINAL = (CANCELLED, EXPIRED, CONVERTED)


class Reservation(db.Model):
    """A user's hold on an available book."""

    __tablename__ = "reservations"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False)
    reserved_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime)
    status = db.Column(db.String(20), default=ReservationStatus.ACTIVE, nullable=False)

    # Relationships
    user = db.relationship("User")
    book = db.relationship("Book")

    __table_args__ = (
        db.Index("idx_reservations_user_book_status", user_id, book_id, status),
    )

    @property
    def is_active(self):
        return self.status == ReservationStatus.ACTIVE

    def is_expired_at(self, now) -> bool:
        """True if the reservation is still active but past its expiry."""
        return self.is_active and self.expires_at is not None and self.expires_at < now

    def to_dict(self, with_relations=True):
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "reserved_at": isoformat(self.reserved_at),
            "expires_at": isoformat(self.expires_at),
            "status": self.status,
        }
        if with_relations:
            data["user"] = self.user.to_dict() if self.user else None
            data["book"] = self.book.to_dict() if self.book else None
        return data

    def __repr__(self):
        return f"<Reservation {self.id}: book {self.book_id} by user {self.user_id} ({self.status})>"
