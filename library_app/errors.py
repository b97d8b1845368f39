class LibraryError(Exception):
    """Base exception for circulation rule violations.

    Args:
        reason  Human readable description of why the operation was refused
    """

    status_code = 400
    code = "error"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def to_dict(self) -> dict:
        return {"detail": self.reason, "code": self.code}


class NotFound(LibraryError):
    """Raised when a referenced user, book, loan or reservation does not exist."""

    status_code = 404
    code = "not_found"


class InvalidState(LibraryError):
    """Raised when a business rule precondition fails.

    Examples are a book that is already borrowed, a duplicate active claim,
    a reached cap, or a date outside the allowed range.
    """

    status_code = 400
    code = "invalid_state"


class Forbidden(LibraryError):
    """Raised when the caller lacks the role or ownership for a mutation."""

    status_code = 403
    code = "forbidden"
