from datetime import datetime, timedelta, timezone

import pytest

from fines import FineCalculator, compute_fine, days_overdue

DUE = datetime(2026, 3, 16, 12, 0, tzinfo=timezone.utc)
RATE = 5


def test_returned_on_due_date_has_no_fine():
    assert compute_fine(DUE, DUE, RATE) == 0


def test_returned_three_days_late():
    assert compute_fine(DUE, DUE + timedelta(days=3), RATE) == 3 * RATE


def test_returned_early_has_no_fine():
    assert compute_fine(DUE, DUE - timedelta(days=1), RATE) == 0


def test_partial_day_rounds_up():
    assert compute_fine(DUE, DUE + timedelta(hours=1), RATE) == RATE
    assert compute_fine(DUE, DUE + timedelta(days=2, seconds=1), RATE) == 3 * RATE


def test_days_overdue_handles_naive_datetimes_as_utc():
    naive_due = DUE.replace(tzinfo=None)
    assert days_overdue(naive_due, DUE + timedelta(days=1)) == 1


def test_negative_rate_is_rejected():
    with pytest.raises(ValueError):
        compute_fine(DUE, DUE + timedelta(days=1), -1)


def test_calculator_uses_configured_rate(monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "fine_per_day", 2.5)
    calculator = FineCalculator()
    assert calculator.rate_per_day == 2.5
    assert calculator.compute(DUE, DUE + timedelta(days=4)) == 10


def test_calculator_explicit_rate_wins():
    assert FineCalculator(rate_per_day=1).compute(DUE, DUE + timedelta(days=2)) == 2
