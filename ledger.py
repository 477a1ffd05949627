import logging
import sqlite3
import uuid
from datetime import datetime
from typing import List, Optional

from borrow_record import BORROWED, RETURNED, BorrowRecord
from database import ensure_utc, from_db_timestamp, get_db_connection, to_db_timestamp, utcnow
from errors import (
    AlreadyBorrowedError,
    AlreadyReturnedError,
    InternalError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

RESTORE_COPY = "restore_copy"


def record_from_row(row: sqlite3.Row) -> BorrowRecord:
    return BorrowRecord(
        id=row["id"],
        user_id=row["user_id"],
        book_id=row["book_id"],
        borrow_date=from_db_timestamp(row["borrow_date"]),
        due_date=from_db_timestamp(row["due_date"]),
        return_date=from_db_timestamp(row["return_date"]),
        status=row["status"],
        fine_amount=row["fine_amount"],
    )


class ReconciliationEvent:
    def __init__(self, id: int, kind: str, book_id: str, borrow_id: Optional[str],
                 reason: Optional[str], attempts: int, created_at: str) -> None:
        self.id = id
        self.kind = kind
        self.book_id = book_id
        self.borrow_id = borrow_id
        self.reason = reason
        self.attempts = attempts
        self.created_at = created_at


class CirculationLedger:
    """Owns borrow records and the log of partial failures awaiting repair."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Lookups ------------------------- #
    def get_record(self, borrow_id: str) -> BorrowRecord:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute("SELECT * FROM borrow_records WHERE id = ?", (borrow_id,)).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to load borrow record {borrow_id}: {e}")
            raise InternalError() from e
        finally:
            conn.close()
        if row is None:
            raise NotFoundError("Borrow record not found")
        return record_from_row(row)

    def find_active_borrow(self, user_id: str, book_id: str) -> Optional[BorrowRecord]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                "SELECT * FROM borrow_records WHERE user_id = ? AND book_id = ? AND status = ?",
                (user_id, book_id, BORROWED),
            ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to look up active borrow for user {user_id}: {e}")
            raise InternalError() from e
        finally:
            conn.close()
        return record_from_row(row) if row else None

    # ------------------------- State transitions ------------------------- #
    def create_record(self, user_id: str, book_id: str, due_date: datetime,
                      now: Optional[datetime] = None) -> BorrowRecord:
        now = ensure_utc(now or utcnow())
        due_date = ensure_utc(due_date)
        if due_date <= now:
            raise ValidationError("Due date must be in the future.")

        record = BorrowRecord(
            id=uuid.uuid4().hex,
            user_id=user_id,
            book_id=book_id,
            borrow_date=now,
            due_date=due_date,
        )
        conn = get_db_connection(self.db_file)
        try:
            conn.execute(
                "INSERT INTO borrow_records (id, user_id, book_id, borrow_date, due_date, status, fine_amount) "
                "VALUES (?, ?, ?, ?, ?, ?, 0)",
                (record.id, user_id, book_id, to_db_timestamp(now), to_db_timestamp(due_date), BORROWED),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            # The partial unique index allows only one active loan per (user, book)
            if "UNIQUE" in str(e):
                raise AlreadyBorrowedError() from e
            raise NotFoundError("Book not found") from e
        except sqlite3.Error as e:
            logger.error(f"Failed to create borrow record for user {user_id}, book {book_id}: {e}")
            raise InternalError() from e
        finally:
            conn.close()
        return record

    def close_record(self, borrow_id: str, return_date: datetime, fine_amount: float) -> BorrowRecord:
        """Mark a loan returned. Only a record that is still borrowed can be closed."""
        if fine_amount < 0:
            raise ValidationError("Fine amount cannot be negative.")
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(
                "UPDATE borrow_records SET status = ?, return_date = ?, fine_amount = ? "
                "WHERE id = ? AND status = ?",
                (RETURNED, to_db_timestamp(return_date), fine_amount, borrow_id, BORROWED),
            )
            updated = cursor.rowcount
            # Read inside the transaction; commit is the last step
            row = conn.execute("SELECT * FROM borrow_records WHERE id = ?", (borrow_id,)).fetchone()
            record = record_from_row(row) if row else None
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to close borrow record {borrow_id}: {e}")
            raise InternalError() from e
        finally:
            conn.close()

        if record is None:
            raise NotFoundError("Borrow record not found")
        if updated == 0:
            raise AlreadyReturnedError()
        return record

    # ------------------------- Reconciliation log ------------------------- #
    def record_reconciliation(self, kind: str, book_id: str, borrow_id: Optional[str] = None,
                              reason: Optional[str] = None) -> int:
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(
                "INSERT INTO reconciliation_events (kind, book_id, borrow_id, reason, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (kind, book_id, borrow_id, reason, to_db_timestamp(utcnow())),
            )
            conn.commit()
            return cursor.lastrowid
        except sqlite3.Error as e:
            raise InternalError() from e
        finally:
            conn.close()

    def pending_reconciliations(self) -> List[ReconciliationEvent]:
        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(
                "SELECT * FROM reconciliation_events WHERE resolved = 0 ORDER BY id"
            ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to read reconciliation events: {e}")
            raise InternalError() from e
        finally:
            conn.close()
        return [
            ReconciliationEvent(
                id=row["id"], kind=row["kind"], book_id=row["book_id"], borrow_id=row["borrow_id"],
                reason=row["reason"], attempts=row["attempts"], created_at=row["created_at"],
            )
            for row in rows
        ]

    def mark_reconciliation(self, event_id: int, resolved: bool) -> None:
        conn = get_db_connection(self.db_file)
        try:
            if resolved:
                conn.execute(
                    "UPDATE reconciliation_events SET resolved = 1, attempts = attempts + 1, resolved_at = ? "
                    "WHERE id = ?",
                    (to_db_timestamp(utcnow()), event_id),
                )
            else:
                conn.execute(
                    "UPDATE reconciliation_events SET attempts = attempts + 1 WHERE id = ?", (event_id,)
                )
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to update reconciliation event {event_id}: {e}")
            raise InternalError() from e
        finally:
            conn.close()
