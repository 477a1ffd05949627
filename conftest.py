from datetime import datetime, timedelta, timezone

import pytest

from library import Library


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def db_file(tmp_path, request):
    # A unique database file per test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def lib(db_file, clock):
    lib = Library(db_file=db_file, clock=clock, fine_per_day=5)
    # Keep compensation retries fast
    lib.circulation.backoff = 0
    return lib


@pytest.fixture
def book(lib):
    return lib.add_book("Dune", "Frank Herbert", "9780441172719", copies=3)


@pytest.fixture
def member(lib):
    return lib.add_user("Alice Reader", "alice@example.com")
