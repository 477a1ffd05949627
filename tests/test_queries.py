from datetime import timedelta

import pytest

from errors import NotFoundError, ValidationError


@pytest.fixture
def loans(lib, clock, member):
    """Three loans for the same member, one hour apart; the first one returned."""
    books = [
        lib.add_book("Dune", "Frank Herbert", "9780441172719"),
        lib.add_book("Clean Code", "Robert C. Martin", "9780132350884"),
        lib.add_book("Harry Potter", "J.K. Rowling", "9780590353427"),
    ]
    records = []
    for b in books:
        records.append(lib.circulation.checkout(member.id, b.id, clock() + timedelta(days=7)))
        clock.advance(hours=1)
    lib.circulation.return_book(records[0].id)
    return records


def test_newest_first_with_pagination(lib, loans):
    first = lib.queries.list_borrow_records(page=1, limit=2)
    assert first.total == 3
    assert first.total_pages == 2
    assert first.current_page == 1
    assert [r.id for r in first.borrow_records] == [loans[2].id, loans[1].id]

    second = lib.queries.list_borrow_records(page=2, limit=2)
    assert [r.id for r in second.borrow_records] == [loans[0].id]


def test_page_past_the_end_is_empty(lib, loans):
    page = lib.queries.list_borrow_records(page=5, limit=2)
    assert page.borrow_records == []
    assert page.total == 3


def test_records_carry_summaries(lib, loans, member):
    record = lib.queries.list_borrow_records(limit=1).borrow_records[0]
    assert record.book["title"] == "Harry Potter"
    assert record.book["isbn"] == "9780590353427"
    assert record.user["name"] == member.name
    assert record.user["membership_id"] == member.membership_id


def test_filter_by_status(lib, loans):
    returned = lib.queries.list_borrow_records(status="returned")
    assert [r.id for r in returned.borrow_records] == [loans[0].id]

    borrowed = lib.queries.list_borrow_records(status="borrowed")
    assert borrowed.total == 2


def test_overdue_is_derived(lib, clock, loans):
    assert lib.queries.list_overdue().total == 0

    clock.advance(days=8)
    overdue = lib.queries.list_overdue()
    assert {r.id for r in overdue.borrow_records} == {loans[1].id, loans[2].id}
    assert all(r.is_overdue(clock()) for r in overdue.borrow_records)
    assert all(r.status == "borrowed" for r in overdue.borrow_records)


def test_filter_by_user(lib, clock, loans):
    other = lib.add_user("Bob", "bob@example.com")
    extra = lib.add_book("Sapiens", "Yuval Noah Harari", "9780099590088")
    mine = lib.circulation.checkout(other.id, extra.id, clock() + timedelta(days=7))

    result = lib.queries.list_borrow_records(user_id=other.id)
    assert [r.id for r in result.borrow_records] == [mine.id]


def test_filter_by_borrow_date(lib, clock, loans):
    result = lib.queries.list_borrow_records(borrowed_from=loans[1].borrow_date,
                                             borrowed_to=loans[1].borrow_date)
    assert [r.id for r in result.borrow_records] == [loans[1].id]


def test_invalid_arguments(lib):
    with pytest.raises(ValidationError):
        lib.queries.list_borrow_records(status="lost")
    with pytest.raises(ValidationError):
        lib.queries.list_borrow_records(page=0)
    with pytest.raises(ValidationError):
        lib.queries.list_borrow_records(limit=1000)


def test_get_borrow_record(lib, loans):
    record = lib.queries.get_borrow_record(loans[1].id)
    assert record.book["title"] == "Clean Code"
    with pytest.raises(NotFoundError):
        lib.queries.get_borrow_record("missing")


def test_user_history(lib, loans, member):
    history = lib.queries.user_history(member.id)
    assert history["user"].email == member.email
    assert [r.id for r in history["current_borrows"]] == [loans[2].id, loans[1].id]
    assert len(history["borrow_history"]) == 3

    with pytest.raises(NotFoundError):
        lib.queries.user_history("nobody")


def test_circulation_stats(lib, clock, loans):
    clock.advance(days=8)
    stats = lib.queries.circulation_stats()
    assert stats["active_loans"] == 2
    assert stats["overdue_loans"] == 2
    assert stats["returned_loans"] == 1
    assert stats["users_with_active_borrows"] == 1
    assert stats["total_fines"] == 0
