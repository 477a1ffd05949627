import math
from datetime import datetime

from config import settings
from database import ensure_utc

SECONDS_PER_DAY = 24 * 60 * 60


def days_overdue(due_date: datetime, return_date: datetime) -> int:
    """Whole days late; any started day counts as a full one."""
    late_seconds = (ensure_utc(return_date) - ensure_utc(due_date)).total_seconds()
    if late_seconds <= 0:
        return 0
    return math.ceil(late_seconds / SECONDS_PER_DAY)


def compute_fine(due_date: datetime, return_date: datetime, rate_per_day: float) -> float:
    """Overdue fine for a loan returned at ``return_date``. Zero when on time."""
    if rate_per_day < 0:
        raise ValueError("rate_per_day cannot be negative")
    return days_overdue(due_date, return_date) * rate_per_day


class FineCalculator:
    """Binds the configured flat daily rate to ``compute_fine``."""

    def __init__(self, rate_per_day: float | None = None) -> None:
        self.rate_per_day = settings.fine_per_day if rate_per_day is None else rate_per_day

    def compute(self, due_date: datetime, return_date: datetime) -> float:
        return compute_fine(due_date, return_date, self.rate_per_day)
