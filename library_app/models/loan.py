from library_app import db
from library_app.utils import isoformat, utcnow


class LoanStatus:
    ACTIVE = "active"
    RETURNED = "returned"
    OVERDUE = "overdue"

    ALL = (ACTIVE, RETURNED, OVERDUE)


class Loan(db.Model):
    """A book lent to a user by an administrator."""

    __tablename__ = "loans"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    book_id = db.Column(db.Integer, db.ForeignKey("books.id"), nullable=False)
    admin_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    borrowed_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    due_date = db.Column(db.DateTime, nullable=False)
    # Due date fixed at creation; extensions are capped relative to it
    original_due_date = db.Column(db.DateTime, nullable=False)
    returned_at = db.Column(db.DateTime)
    status = db.Column(db.String(20), default=LoanStatus.ACTIVE, nullable=False)

    # Relationships
    user = db.relationship("User", foreign_keys=[user_id])
    admin = db.relationship("User", foreign_keys=[admin_id])
    book = db.relationship("Book")

    __table_args__ = (
        db.Index("idx_loans_user_book_status", user_id, book_id, status),
    )

    @property
    def is_active(self):
        return self.status == LoanStatus.ACTIVE

    def is_past_due(self, now) -> bool:
        """The computed overdue predicate: active and due date already passed."""
        return self.is_active and self.due_date < now

    def is_overdue(self, now) -> bool:
        """Overdue either by persisted status or by the computed predicate."""
        return self.status == LoanStatus.OVERDUE or self.is_past_due(now)

    def to_dict(self, now=None, with_relations=True):
        now = now or utcnow()
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "admin_id": self.admin_id,
            "borrowed_at": isoformat(self.borrowed_at),
            "due_date": isoformat(self.due_date),
            "original_due_date": isoformat(self.original_due_date),
            "returned_at": isoformat(self.returned_at),
            "status": self.status,
            "is_overdue": self.is_overdue(now),
        }
        if with_relations:
            data["user"] = self.user.to_dict() if self.user else None
            data["admin"] = self.admin.to_dict() if self.admin else None
            data["book"] = self.book.to_dict() if self.book else None
        return data

    def __repr__(self):
        return f"<Loan {self.id}: book {self.book_id} to user {self.user_id} ({self.status})>"
