from datetime import timedelta

import pytest

from errors import AlreadyBorrowedError, AlreadyReturnedError, NotFoundError, ValidationError
from ledger import RESTORE_COPY


def test_create_and_find_active(lib, clock, book, member):
    record = lib.ledger.create_record(member.id, book.id, clock() + timedelta(days=14), now=clock())
    assert record.status == "borrowed"
    assert record.borrow_date == clock()
    assert record.fine_amount == 0

    active = lib.ledger.find_active_borrow(member.id, book.id)
    assert active is not None
    assert active.id == record.id
    assert active.due_date == record.due_date


def test_due_date_must_be_in_the_future(lib, clock, book, member):
    with pytest.raises(ValidationError):
        lib.ledger.create_record(member.id, book.id, clock(), now=clock())
    with pytest.raises(ValidationError):
        lib.ledger.create_record(member.id, book.id, clock() - timedelta(days=1), now=clock())


def test_second_active_record_is_rejected(lib, clock, book, member):
    lib.ledger.create_record(member.id, book.id, clock() + timedelta(days=7), now=clock())
    with pytest.raises(AlreadyBorrowedError):
        lib.ledger.create_record(member.id, book.id, clock() + timedelta(days=7), now=clock())


def test_new_record_allowed_after_return(lib, clock, book, member):
    first = lib.ledger.create_record(member.id, book.id, clock() + timedelta(days=7), now=clock())
    lib.ledger.close_record(first.id, clock(), 0)

    second = lib.ledger.create_record(member.id, book.id, clock() + timedelta(days=7), now=clock())
    assert second.id != first.id


def test_record_for_unknown_book(lib, clock, member):
    with pytest.raises(NotFoundError):
        lib.ledger.create_record(member.id, "missing", clock() + timedelta(days=7), now=clock())


def test_close_record_once(lib, clock, book, member):
    record = lib.ledger.create_record(member.id, book.id, clock() + timedelta(days=7), now=clock())
    returned_at = clock() + timedelta(days=9)

    closed = lib.ledger.close_record(record.id, returned_at, 10)
    assert closed.status == "returned"
    assert closed.return_date == returned_at
    assert closed.fine_amount == 10
    assert lib.ledger.find_active_borrow(member.id, book.id) is None

    with pytest.raises(AlreadyReturnedError):
        lib.ledger.close_record(record.id, returned_at + timedelta(days=1), 15)
    # The first closure stays untouched
    assert lib.ledger.get_record(record.id).fine_amount == 10


def test_close_missing_record(lib, clock):
    with pytest.raises(NotFoundError):
        lib.ledger.close_record("missing", clock(), 0)


def test_close_rejects_negative_fine(lib, clock, book, member):
    record = lib.ledger.create_record(member.id, book.id, clock() + timedelta(days=7), now=clock())
    with pytest.raises(ValidationError):
        lib.ledger.close_record(record.id, clock(), -1)


def test_reconciliation_log(lib, book):
    event_id = lib.ledger.record_reconciliation(RESTORE_COPY, book.id, None, "test")
    pending = lib.ledger.pending_reconciliations()
    assert [e.id for e in pending] == [event_id]

    lib.ledger.mark_reconciliation(event_id, resolved=False)
    assert lib.ledger.pending_reconciliations()[0].attempts == 1

    lib.ledger.mark_reconciliation(event_id, resolved=True)
    assert lib.ledger.pending_reconciliations() == []
