"""Checkout and return workflow.

The conditional decrement in ``InventoryStore`` is the only thing that decides
whether a copy was reserved; every other check here is an early exit. Writes
that span the inventory and the ledger are compensated when the second half
fails, and anything that cannot be compensated is persisted as a
reconciliation event instead of being reported as success.
"""
import logging
import time
from datetime import datetime
from typing import Callable, Dict, Optional

from borrow_record import BORROWED, BorrowRecord
from config import settings
from database import ensure_utc, utcnow
from errors import (
    AlreadyBorrowedError,
    AlreadyReturnedError,
    CirculationError,
    InactiveUserError,
    InsufficientCopiesError,
    InternalError,
    ValidationError,
)
from fines import FineCalculator
from inventory import InventoryStore
from ledger import RESTORE_COPY, CirculationLedger
from user import UserDirectory

logger = logging.getLogger(__name__)


class CirculationService:
    def __init__(self, inventory: InventoryStore, ledger: CirculationLedger, users: UserDirectory,
                 fines: Optional[FineCalculator] = None, clock: Callable[[], datetime] = utcnow,
                 retries: Optional[int] = None, backoff: Optional[float] = None) -> None:
        self.inventory = inventory
        self.ledger = ledger
        self.users = users
        self.fines = fines or FineCalculator()
        self.clock = clock
        self.retries = max(1, settings.reconcile_retries if retries is None else retries)
        self.backoff = settings.reconcile_backoff if backoff is None else backoff

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    # ------------------------- Checkout ------------------------- #
    def checkout(self, user_id: str, book_id: str, due_date: datetime) -> BorrowRecord:
        """Lend one copy of ``book_id`` to ``user_id`` until ``due_date``."""
        now = self._now()
        due_date = ensure_utc(due_date)
        if due_date <= now:
            raise ValidationError("Due date must be in the future.")

        self.inventory.get_book(book_id)

        user = self.users.get_user(user_id)
        if not user.is_active:
            raise InactiveUserError()

        if self.ledger.find_active_borrow(user_id, book_id) is not None:
            raise AlreadyBorrowedError()

        if not self.inventory.try_decrement_availability(book_id):
            raise InsufficientCopiesError()

        try:
            record = self.ledger.create_record(user_id, book_id, due_date, now=now)
        except Exception as exc:
            self._compensate_checkout(user_id, book_id, exc)
            raise

        logger.info(f"Book {book_id} checked out to user {user_id} as {record.id}, due {record.due_date.isoformat()}")
        return record

    def _compensate_checkout(self, user_id: str, book_id: str, cause: Exception) -> None:
        logger.warning(
            f"Checkout of book {book_id} for user {user_id} failed after a copy was reserved "
            f"({type(cause).__name__}: {cause}); releasing the copy"
        )
        if not self._restore_copy(book_id):
            self._flag_reconciliation(book_id, None, f"checkout compensation failed after {type(cause).__name__}")

    # ------------------------- Return ------------------------- #
    def return_book(self, borrow_id: str) -> BorrowRecord:
        """Close an active loan, charge any overdue fine and release the copy."""
        record = self.ledger.get_record(borrow_id)
        if record.status != BORROWED:
            raise AlreadyReturnedError()

        now = self._now()
        fine_amount = self.fines.compute(record.due_date, now)
        record = self.ledger.close_record(borrow_id, now, fine_amount)

        if not self._restore_copy(record.book_id, borrow_id):
            self._flag_reconciliation(record.book_id, borrow_id, "return could not restore availability")
            raise InternalError("Return recorded but the copy count is pending reconciliation.")

        logger.info(f"Borrow {borrow_id} returned; fine {fine_amount}")
        return record

    # ------------------------- Reconciliation ------------------------- #
    def reconcile(self) -> Dict[str, int]:
        """Replay pending compensations. Returns how many were resolved and how many remain."""
        resolved = 0
        pending = 0
        for event in self.ledger.pending_reconciliations():
            if event.kind != RESTORE_COPY:
                logger.warning(f"Unknown reconciliation event kind {event.kind!r} (id={event.id})")
                pending += 1
                continue
            try:
                self.inventory.restore_copy(event.book_id, event.borrow_id)
            except InternalError:
                self.ledger.mark_reconciliation(event.id, resolved=False)
                pending += 1
                continue
            self.ledger.mark_reconciliation(event.id, resolved=True)
            resolved += 1
            logger.info(f"Reconciliation event {event.id} resolved for book {event.book_id}")
        return {"resolved": resolved, "pending": pending}

    def _restore_copy(self, book_id: str, borrow_id: Optional[str] = None) -> bool:
        # Each attempt is one transaction; a loan already flagged as restored is skipped
        for attempt in range(self.retries):
            try:
                self.inventory.restore_copy(book_id, borrow_id)
                return True
            except CirculationError as e:
                if attempt < self.retries - 1:
                    time.sleep(self.backoff * (2 ** attempt))
                else:
                    logger.error(f"Could not restore a copy of book {book_id} after {self.retries} attempts: {e}")
        return False

    def _flag_reconciliation(self, book_id: str, borrow_id: Optional[str], reason: str) -> None:
        logger.error(f"Reconciliation required for book {book_id} (borrow {borrow_id}): {reason}")
        try:
            self.ledger.record_reconciliation(RESTORE_COPY, book_id, borrow_id, reason)
        except InternalError:
            logger.critical(f"Could not persist reconciliation event for book {book_id}; manual repair needed")
