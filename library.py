from datetime import datetime, timedelta
from typing import Callable, Optional

import database
from book import Book
from borrow_record import BorrowRecord
from circulation import CirculationService
from config import settings
from database import ensure_utc, initialize_database, utcnow
from fines import FineCalculator
from inventory import InventoryStore
from ledger import CirculationLedger
from queries import QueryService
from user import User, UserDirectory


class Library:
    """Wires the stores and services of the circulation desk around one database file."""

    def __init__(self, db_file: Optional[str] = None, clock: Callable[[], datetime] = utcnow,
                 fine_per_day: Optional[float] = None) -> None:
        self.db_file = db_file or database.DATABASE_FILE
        initialize_database(self.db_file)  # Ensure DB and tables exist

        self.clock = clock
        self.inventory = InventoryStore(self.db_file)
        self.ledger = CirculationLedger(self.db_file)
        self.users = UserDirectory(self.db_file)
        self.fines = FineCalculator(fine_per_day)
        self.circulation = CirculationService(
            self.inventory, self.ledger, self.users, fines=self.fines, clock=clock
        )
        self.queries = QueryService(self.db_file, clock=clock)

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    # ------------------------- Catalog / members ------------------------- #
    def add_book(self, title: str, author: str, isbn: str, copies: int = 1, **extra) -> Book:
        return self.inventory.add_book(Book(title=title, author=author, isbn=isbn, total_copies=copies, **extra))

    def add_user(self, name: str, email: str, role: str = "member") -> User:
        return self.users.add_user(name, email, role)

    # ------------------------- Circulation ------------------------- #
    def checkout(self, user_id: str, book_id: str, due_date: Optional[datetime] = None) -> BorrowRecord:
        """Checkout with the configured default loan length when no due date is given."""
        if due_date is None:
            due_date = self.now() + timedelta(days=settings.max_borrow_days)
        return self.circulation.checkout(user_id, book_id, due_date)

    def return_book(self, borrow_id: str) -> BorrowRecord:
        return self.circulation.return_book(borrow_id)
