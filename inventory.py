import logging
import sqlite3
import uuid
from typing import List, Optional

from book import Book, MAINTENANCE
from database import get_db_connection, to_db_timestamp, utcnow
from errors import InternalError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# The copy count and the status it implies change in one statement. SQLite
# evaluates every SET expression against the row as it was before the update.
_DECREMENT_SQL = """
    UPDATE books
    SET available_copies = available_copies - 1,
        status = CASE
            WHEN status = 'maintenance' THEN 'maintenance'
            WHEN available_copies - 1 > 0 THEN 'available'
            ELSE 'unavailable'
        END
    WHERE id = ? AND available_copies > 0
"""

_INCREMENT_SQL = """
    UPDATE books
    SET available_copies = available_copies + 1,
        status = CASE WHEN status = 'maintenance' THEN 'maintenance' ELSE 'available' END
    WHERE id = ? AND available_copies < total_copies
"""

_MARK_RESTORED_SQL = "UPDATE borrow_records SET copy_restored = 1 WHERE id = ? AND copy_restored = 0"


class InventoryStore:
    """Owns book records and the availability counters of their copies."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Catalog operations ------------------------- #
    def add_book(self, book: Book) -> Book:
        """Add a pre-constructed Book. Prevent duplicates by ISBN."""
        book.isbn = self._normalize_isbn(book.isbn)
        if not book.isbn:
            raise ValidationError("ISBN cannot be empty.")
        if not book.title or not book.author:
            raise ValidationError("Title and author are required.")
        if book.total_copies < 1:
            raise ValidationError("A book needs at least one copy.")

        book.id = book.id or uuid.uuid4().hex
        book.available_copies = book.total_copies
        book.status = MAINTENANCE if book.status == MAINTENANCE else "available"
        book.created_at = to_db_timestamp(utcnow())

        conn = get_db_connection(self.db_file)
        try:
            conn.execute(
                "INSERT INTO books (id, isbn, title, author, genre, location, total_copies, "
                "available_copies, status, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (book.id, book.isbn, book.title, book.author, book.genre, book.location,
                 book.total_copies, book.available_copies, book.status, book.created_at)
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Book with ISBN {book.isbn} already exists.") from e
        except sqlite3.Error as e:
            logger.error(f"Failed to add book {book.isbn}: {e}")
            raise InternalError() from e
        finally:
            conn.close()
        return book

    def get_book(self, book_id: str) -> Book:
        row = self._fetch_one("SELECT * FROM books WHERE id = ?", (book_id,))
        if row is None:
            raise NotFoundError("Book not found")
        return Book.from_dict(dict(row))

    def find_by_isbn(self, isbn: str) -> Optional[Book]:
        row = self._fetch_one("SELECT * FROM books WHERE isbn = ?", (self._normalize_isbn(isbn),))
        return Book.from_dict(dict(row)) if row else None

    def list_books(self) -> List[Book]:
        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute("SELECT * FROM books ORDER BY title").fetchall()
            return [Book.from_dict(dict(row)) for row in rows]
        except sqlite3.Error as e:
            logger.error(f"Failed to list books: {e}")
            raise InternalError() from e
        finally:
            conn.close()

    def set_maintenance(self, book_id: str, in_maintenance: bool) -> Book:
        """Flag a book for maintenance, or clear the flag and fall back to the derived status."""
        updated = self._execute_update(
            """
            UPDATE books
            SET status = CASE
                WHEN ? THEN 'maintenance'
                WHEN available_copies > 0 THEN 'available'
                ELSE 'unavailable'
            END
            WHERE id = ?
            """,
            (1 if in_maintenance else 0, book_id),
        )
        if not updated:
            raise NotFoundError("Book not found")
        return self.get_book(book_id)

    # ------------------------- Availability ------------------------- #
    def try_decrement_availability(self, book_id: str) -> bool:
        """Reserve one copy if any is left.

        Runs as a single conditional UPDATE, so two concurrent callers racing for
        the last copy cannot both succeed, even from different processes.
        """
        return self._execute_update(_DECREMENT_SQL, (book_id,)) == 1

    def increment_availability(self, book_id: str) -> Book:
        """Give one copy back, never exceeding total_copies."""
        self.restore_copy(book_id)
        return self.get_book(book_id)

    def restore_copy(self, book_id: str, borrow_id: Optional[str] = None) -> bool:
        """Give one copy back and commit; nothing is read back afterwards.

        With a ``borrow_id`` the loan is flagged as restored in the same
        transaction as the increment, so running this again for the same loan
        changes nothing. Returns True when a copy was added.
        """
        conn = get_db_connection(self.db_file)
        try:
            if borrow_id is not None:
                flagged = conn.execute(_MARK_RESTORED_SQL, (borrow_id,)).rowcount
                if flagged == 0:
                    logger.info(f"Copy of book {book_id} for borrow {borrow_id} was already restored")
                    return False
            restored = conn.execute(_INCREMENT_SQL, (book_id,)).rowcount == 1
            if not restored:
                if conn.execute("SELECT 1 FROM books WHERE id = ?", (book_id,)).fetchone() is None:
                    logger.warning(f"Book {book_id} not found; no copy restored")
                else:
                    logger.warning(f"Book {book_id} already has all copies available; increment capped")
            conn.commit()
            return restored
        except sqlite3.Error as e:
            logger.error(f"Restoring a copy of book {book_id} failed: {e}")
            raise InternalError() from e
        finally:
            conn.close()

    # ------------------------- Persistence helpers ------------------------- #
    def _fetch_one(self, sql: str, params: tuple) -> Optional[sqlite3.Row]:
        conn = get_db_connection(self.db_file)
        try:
            return conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Inventory read failed: {e}")
            raise InternalError() from e
        finally:
            conn.close()

    def _execute_update(self, sql: str, params: tuple) -> int:
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            logger.error(f"Inventory update failed: {e}")
            raise InternalError() from e
        finally:
            conn.close()

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _normalize_isbn(raw: str) -> str:
        if raw is None:
            return ""
        cleaned = "".join(ch for ch in raw if ch.isalnum())
        return cleaned.upper()
