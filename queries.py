import logging
import math
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from borrow_record import BORROWED, OVERDUE, RETURNED, BorrowRecord
from config import settings
from database import ensure_utc, get_db_connection, to_db_timestamp, utcnow
from errors import InternalError, NotFoundError, ValidationError
from ledger import record_from_row
from user import User

logger = logging.getLogger(__name__)

STATUS_FILTERS = (BORROWED, RETURNED, OVERDUE)

_SELECT_WITH_SUMMARIES = """
    SELECT r.*,
           b.title AS book_title, b.author AS book_author, b.isbn AS book_isbn,
           u.name AS user_name, u.email AS user_email, u.membership_id AS user_membership_id
    FROM borrow_records r
    LEFT JOIN books b ON b.id = r.book_id
    LEFT JOIN users u ON u.id = r.user_id
"""

# Newest loans first; id breaks ties so pages never overlap
_ORDER_BY = " ORDER BY r.borrow_date DESC, r.id DESC"


class BorrowPage:
    def __init__(self, borrow_records: List[BorrowRecord], total: int, current_page: int, limit: int) -> None:
        self.borrow_records = borrow_records
        self.total = total
        self.current_page = current_page
        self.limit = limit
        self.total_pages = math.ceil(total / limit) if limit else 0


class QueryService:
    """Read-only listings of borrow records for display."""

    def __init__(self, db_file: Optional[str] = None, clock: Callable[[], datetime] = utcnow) -> None:
        self.db_file = db_file
        self.clock = clock

    def list_borrow_records(self, page: int = 1, limit: Optional[int] = None, status: Optional[str] = None,
                            user_id: Optional[str] = None, borrowed_from: Optional[datetime] = None,
                            borrowed_to: Optional[datetime] = None) -> BorrowPage:
        limit = settings.default_page_size if limit is None else limit
        if page < 1:
            raise ValidationError("page must be at least 1")
        if limit < 1 or limit > settings.max_page_size:
            raise ValidationError(f"limit must be between 1 and {settings.max_page_size}")

        where, params = self._build_filters(status, user_id, borrowed_from, borrowed_to)
        offset = (page - 1) * limit

        conn = get_db_connection(self.db_file)
        try:
            total = conn.execute(f"SELECT COUNT(*) FROM borrow_records r{where}", params).fetchone()[0]
            rows = conn.execute(
                f"{_SELECT_WITH_SUMMARIES}{where}{_ORDER_BY} LIMIT ? OFFSET ?", params + [limit, offset]
            ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to list borrow records: {e}")
            raise InternalError() from e
        finally:
            conn.close()

        return BorrowPage([self._with_summaries(row) for row in rows], total, page, limit)

    def get_borrow_record(self, borrow_id: str) -> BorrowRecord:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(f"{_SELECT_WITH_SUMMARIES} WHERE r.id = ?", (borrow_id,)).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to load borrow record {borrow_id}: {e}")
            raise InternalError() from e
        finally:
            conn.close()
        if row is None:
            raise NotFoundError("Borrow record not found")
        return self._with_summaries(row)

    def list_overdue(self, page: int = 1, limit: Optional[int] = None) -> BorrowPage:
        return self.list_borrow_records(page=page, limit=limit, status=OVERDUE)

    def user_history(self, user_id: str) -> Dict[str, Any]:
        """The user's current loans and full borrow history, newest first."""
        conn = get_db_connection(self.db_file)
        try:
            user_row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            rows = conn.execute(
                f"{_SELECT_WITH_SUMMARIES} WHERE r.user_id = ?{_ORDER_BY}", (user_id,)
            ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to load borrow history for user {user_id}: {e}")
            raise InternalError() from e
        finally:
            conn.close()
        if user_row is None:
            raise NotFoundError("User not found")

        history = [self._with_summaries(row) for row in rows]
        return {
            "user": User.from_row(user_row),
            "current_borrows": [r for r in history if r.is_active],
            "borrow_history": history,
        }

    def circulation_stats(self) -> Dict[str, Any]:
        now = to_db_timestamp(self._now())
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM borrow_records WHERE status = ?", (BORROWED,))
            active = cursor.fetchone()[0]
            cursor.execute(
                "SELECT COUNT(*) FROM borrow_records WHERE status = ? AND due_date < ?", (BORROWED, now)
            )
            overdue = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM borrow_records WHERE status = ?", (RETURNED,))
            returned = cursor.fetchone()[0]
            cursor.execute(
                "SELECT COUNT(DISTINCT user_id) FROM borrow_records WHERE status = ?", (BORROWED,)
            )
            borrowers = cursor.fetchone()[0]
            cursor.execute("SELECT COALESCE(SUM(fine_amount), 0) FROM borrow_records")
            fines = cursor.fetchone()[0]
        except sqlite3.Error as e:
            logger.error(f"Failed to compute circulation stats: {e}")
            raise InternalError() from e
        finally:
            conn.close()

        return {
            "active_loans": active,
            "overdue_loans": overdue,
            "returned_loans": returned,
            "users_with_active_borrows": borrowers,
            "total_fines": fines,
        }

    # ------------------------- Helpers ------------------------- #
    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    def _build_filters(self, status: Optional[str], user_id: Optional[str],
                       borrowed_from: Optional[datetime], borrowed_to: Optional[datetime]) -> Tuple[str, list]:
        clauses: List[str] = []
        params: list = []
        if status:
            if status not in STATUS_FILTERS:
                raise ValidationError(f"Invalid status. Allowed: {', '.join(STATUS_FILTERS)}")
            if status == OVERDUE:
                clauses.append("r.status = ? AND r.due_date < ?")
                params.extend([BORROWED, to_db_timestamp(self._now())])
            else:
                clauses.append("r.status = ?")
                params.append(status)
        if user_id:
            clauses.append("r.user_id = ?")
            params.append(user_id)
        if borrowed_from:
            clauses.append("r.borrow_date >= ?")
            params.append(to_db_timestamp(borrowed_from))
        if borrowed_to:
            clauses.append("r.borrow_date <= ?")
            params.append(to_db_timestamp(borrowed_to))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    @staticmethod
    def _with_summaries(row: sqlite3.Row) -> BorrowRecord:
        record = record_from_row(row)
        if row["book_title"] is not None:
            record.book = {
                "id": record.book_id,
                "title": row["book_title"],
                "author": row["book_author"],
                "isbn": row["book_isbn"],
            }
        if row["user_name"] is not None:
            record.user = {
                "id": record.user_id,
                "name": row["user_name"],
                "email": row["user_email"],
                "membership_id": row["user_membership_id"],
            }
        return record
