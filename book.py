from __future__ import annotations

import math

AVAILABLE = "available"
UNAVAILABLE = "unavailable"
MAINTENANCE = "maintenance"


class Book:
    """Represents a single title in the library and its lendable copies."""

    def __init__(self, title: str, author: str, isbn: str, total_copies: int = 1,
                 available_copies: int | None = None, status: str | None = None,
                 id: str | None = None, genre: str | None = None, location: str | None = None,
                 created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = isbn.strip()
        self.total_copies = total_copies
        self.available_copies = total_copies if available_copies is None else available_copies
        self.status = status or derive_status(self.available_copies)
        self.genre = genre
        self.location = location
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    @property
    def is_low_stock(self) -> bool:
        return self.available_copies <= math.ceil(self.total_copies * 0.2)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "genre": self.genre,
            "location": self.location,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "status": self.status,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            isbn=data["isbn"],
            total_copies=data["total_copies"],
            available_copies=data.get("available_copies"),
            status=data.get("status"),
            genre=data.get("genre"),
            location=data.get("location"),
            created_at=data.get("created_at"),
        )


def derive_status(available_copies: int, current: str | None = None) -> str:
    """Status implied by the copy count; a manual maintenance flag is kept."""
    if current == MAINTENANCE:
        return MAINTENANCE
    return AVAILABLE if available_copies > 0 else UNAVAILABLE
