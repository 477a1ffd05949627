from __future__ import annotations

from datetime import datetime

BORROWED = "borrowed"
RETURNED = "returned"
# Derived only, never stored
OVERDUE = "overdue"


class BorrowRecord:
    """A single loan of one book to one user.

    Created as ``borrowed`` by a checkout and closed exactly once by a return.
    Whether a loan is overdue is computed on demand and never persisted.
    """

    def __init__(self, id: str, user_id: str, book_id: str, borrow_date: datetime, due_date: datetime,
                 return_date: datetime | None = None, status: str = BORROWED,
                 fine_amount: float = 0.0) -> None:
        self.id = id
        self.user_id = user_id
        self.book_id = book_id
        self.borrow_date = borrow_date
        self.due_date = due_date
        self.return_date = return_date
        self.status = status
        self.fine_amount = fine_amount
        # Denormalized display data filled in by QueryService
        self.book: dict | None = None
        self.user: dict | None = None

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<BorrowRecord {self.id} user={self.user_id} book={self.book_id} {self.status}>"

    @property
    def is_active(self) -> bool:
        return self.status == BORROWED

    def is_overdue(self, now: datetime) -> bool:
        return self.status == BORROWED and now > self.due_date

    def to_dict(self, now: datetime | None = None) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "borrow_date": self.borrow_date,
            "due_date": self.due_date,
            "return_date": self.return_date,
            "status": self.status,
            "fine_amount": self.fine_amount,
            "book": self.book,
            "user": self.user,
        }
        if now is not None:
            data["is_overdue"] = self.is_overdue(now)
        return data
