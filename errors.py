"""Typed failures raised by the circulation engine.

Each error carries a stable ``code`` and the HTTP status the API layer maps it
to, so callers never need to parse messages.
"""


class CirculationError(Exception):
    code = "CIRCULATION_ERROR"
    status_code = 400
    default_message = "Circulation request failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(CirculationError):
    code = "VALIDATION_ERROR"
    default_message = "Validation failed."


class NotFoundError(CirculationError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Resource not found."


class InactiveUserError(CirculationError):
    code = "INACTIVE_USER"
    default_message = "User account is not active."


class InsufficientCopiesError(CirculationError):
    code = "INSUFFICIENT_COPIES"
    default_message = "No copies available for borrowing."


class AlreadyBorrowedError(CirculationError):
    code = "ALREADY_BORROWED"
    default_message = "Book already borrowed by this user."


class AlreadyReturnedError(CirculationError):
    code = "ALREADY_RETURNED"
    default_message = "Book already returned."


class InternalError(CirculationError):
    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal server error."
