"""Boundary parsing for incoming payloads.

Parsers only check shape and types and hand back a ``ParseResult``; business
rules (due date in the future, copies left, ...) stay in CirculationService.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from errors import ValidationError

T = TypeVar("T")


@dataclass
class ParseResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise ValidationError(self.error)
        return self.value

    @staticmethod
    def success(value: T) -> "ParseResult[T]":
        return ParseResult(value=value)

    @staticmethod
    def failure(error: str) -> "ParseResult[T]":
        return ParseResult(error=error)


@dataclass
class BorrowRequest:
    user_id: str
    book_id: str
    due_date: datetime


@dataclass
class NewBookRequest:
    isbn: str
    title: str
    author: str
    total_copies: int
    genre: Optional[str] = None
    location: Optional[str] = None


def parse_datetime(raw: Any) -> Optional[datetime]:
    """Accept datetimes or ISO-8601 strings (a trailing 'Z' means UTC)."""
    if isinstance(raw, datetime):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _required_string(data: dict, key: str) -> Optional[str]:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def parse_borrow_request(data: Any) -> ParseResult[BorrowRequest]:
    if not isinstance(data, dict):
        return ParseResult.failure("Request body must be a JSON object.")
    user_id = _required_string(data, "userId")
    if user_id is None:
        return ParseResult.failure('"userId" is required')
    book_id = _required_string(data, "bookId")
    if book_id is None:
        return ParseResult.failure('"bookId" is required')
    if data.get("dueDate") is None:
        return ParseResult.failure('"dueDate" is required')
    due_date = parse_datetime(data.get("dueDate"))
    if due_date is None:
        return ParseResult.failure('"dueDate" must be a valid date')
    return ParseResult.success(BorrowRequest(user_id=user_id, book_id=book_id, due_date=due_date))


def parse_book_request(data: Any) -> ParseResult[NewBookRequest]:
    if not isinstance(data, dict):
        return ParseResult.failure("Request body must be a JSON object.")
    isbn = ISBNValidator.normalize_isbn(data.get("isbn") or "")
    if not ISBNValidator.is_valid_isbn(isbn):
        return ParseResult.failure("Invalid ISBN format.")
    title = _required_string(data, "title")
    if title is None:
        return ParseResult.failure('"title" is required')
    author = _required_string(data, "author")
    if author is None or author.isdigit():
        return ParseResult.failure('"author" is required')
    copies = data.get("totalCopies", 1)
    if isinstance(copies, bool) or not isinstance(copies, int) or copies < 1:
        return ParseResult.failure('"totalCopies" must be a positive integer')
    return ParseResult.success(NewBookRequest(
        isbn=isbn,
        title=title,
        author=author,
        total_copies=copies,
        genre=data.get("genre"),
        location=data.get("location"),
    ))


class ISBNValidator:
    """ISBN-10 / ISBN-13 checksum validation.

    An ISBN-10 ending in 'X' must pass the checksum like any other; there is no
    lenient path for it. The ISBN becomes the book's unique catalog key, so a
    wrong check character would register a title that can never be found by its
    real ISBN.
    """

    @staticmethod
    def normalize_isbn(raw: str) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[^0-9Xx]", "", raw)
        return s.upper()

    @staticmethod
    def is_valid_isbn(isbn: str) -> bool:
        if not isbn:
            return False
        s = ISBNValidator.normalize_isbn(isbn)
        if len(s) == 10:
            total = 0
            for i, ch in enumerate(s[:-1], 1):
                if not ch.isdigit():
                    return False
                total += i * int(ch)
            check = s[-1]
            if check == 'X':
                check_val = 10
            elif check.isdigit():
                check_val = int(check)
            else:
                return False
            # sum(i * d_i) for i = 1..10 must be divisible by 11
            return (total + 10 * check_val) % 11 == 0
        elif len(s) == 13 and s.isdigit():
            total = 0
            for i, ch in enumerate(s[:-1]):
                factor = 1 if i % 2 == 0 else 3
                total += factor * int(ch)
            check_val = (10 - (total % 10)) % 10
            return check_val == int(s[-1])
        return False
