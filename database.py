import os
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv

from config import settings

# Make sure .env is loaded before the database path is resolved, even when this
# module is imported ahead of config by a caller.
load_dotenv()

# Default database file. LIBRARY_DB_FILE wins over the value captured by settings
# so tests and scripts can point at another file after config was imported.
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE") or settings.data_file


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    Every store opens a connection per operation and closes it afterwards, so
    several processes (or threads) can share the same database file. SQLite's
    write lock is what serializes conflicting updates.
    """
    conn = sqlite3.connect(db_file or DATABASE_FILE, timeout=settings.db_timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the required tables and indexes if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        # WAL lets readers proceed while a checkout holds the write lock
        conn.execute("PRAGMA journal_mode=WAL;")
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                isbn TEXT UNIQUE NOT NULL,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                genre TEXT,
                location TEXT,
                total_copies INTEGER NOT NULL CHECK(total_copies >= 1),
                available_copies INTEGER NOT NULL
                    CHECK(available_copies >= 0 AND available_copies <= total_copies),
                status TEXT NOT NULL DEFAULT 'available'
                    CHECK(status IN ('available', 'unavailable', 'maintenance')),
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                membership_id TEXT UNIQUE NOT NULL,
                role TEXT NOT NULL DEFAULT 'member'
                    CHECK(role IN ('admin', 'librarian', 'member')),
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS borrow_records (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                book_id TEXT NOT NULL,
                borrow_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                return_date TEXT,
                status TEXT NOT NULL DEFAULT 'borrowed'
                    CHECK(status IN ('borrowed', 'returned')),
                fine_amount REAL NOT NULL DEFAULT 0 CHECK(fine_amount >= 0),
                copy_restored INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY (book_id) REFERENCES books(id)
            )
        """)

        # Failed compensations waiting to be replayed
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reconciliation_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                kind TEXT NOT NULL,
                book_id TEXT NOT NULL,
                borrow_id TEXT,
                reason TEXT,
                resolved INTEGER NOT NULL DEFAULT 0,
                attempts INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                resolved_at TEXT
            )
        """)

        # At most one active loan per (user, book)
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS ux_borrow_records_active
            ON borrow_records(user_id, book_id) WHERE status = 'borrowed'
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_user ON borrow_records(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_status ON borrow_records(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_borrow_date ON borrow_records(borrow_date)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reconciliation_pending ON reconciliation_events(resolved)")

        # Add columns missing from databases created by older versions
        cursor.execute("PRAGMA table_info(borrow_records)")
        columns = [column[1] for column in cursor.fetchall()]
        if "copy_restored" not in columns:
            cursor.execute("ALTER TABLE borrow_records ADD COLUMN copy_restored INTEGER NOT NULL DEFAULT 0")
        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating tables when needed."""
    create_tables(db_file)


# ------------------------- Timestamps ------------------------- #
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    # Fixed width keeps lexical ordering in SQL equal to chronological ordering
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))
