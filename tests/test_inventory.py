from datetime import timedelta

import pytest

from book import Book
from errors import NotFoundError, ValidationError


def test_add_book_starts_fully_available(lib):
    book = lib.add_book("Clean Code", "Robert C. Martin", "978-0132350884", copies=2)
    stored = lib.inventory.get_book(book.id)
    assert stored.isbn == "9780132350884"
    assert stored.total_copies == 2
    assert stored.available_copies == 2
    assert stored.status == "available"


def test_add_duplicate_isbn(lib, book):
    with pytest.raises(ValidationError, match="already exists"):
        lib.add_book("Dune Again", "Frank Herbert", book.isbn)
    assert len(lib.inventory.list_books()) == 1


def test_add_book_requires_a_copy(lib):
    with pytest.raises(ValidationError):
        lib.inventory.add_book(Book("Empty", "Nobody", "1234567890", total_copies=0))


def test_get_missing_book(lib):
    with pytest.raises(NotFoundError):
        lib.inventory.get_book("missing")


def test_find_by_isbn(lib, book):
    assert lib.inventory.find_by_isbn("978-0441172719").id == book.id
    assert lib.inventory.find_by_isbn("0000000000") is None


def test_decrement_until_empty(lib):
    book = lib.add_book("Solo", "Author", "1111111111", copies=1)

    assert lib.inventory.try_decrement_availability(book.id) is True
    empty = lib.inventory.get_book(book.id)
    assert empty.available_copies == 0
    assert empty.status == "unavailable"

    assert lib.inventory.try_decrement_availability(book.id) is False
    assert lib.inventory.get_book(book.id).available_copies == 0


def test_decrement_unknown_book_reserves_nothing(lib):
    assert lib.inventory.try_decrement_availability("missing") is False


def test_increment_restores_status(lib):
    book = lib.add_book("Solo", "Author", "1111111111", copies=1)
    lib.inventory.try_decrement_availability(book.id)

    restored = lib.inventory.increment_availability(book.id)
    assert restored.available_copies == 1
    assert restored.status == "available"


def test_increment_is_capped_at_total(lib, book):
    capped = lib.inventory.increment_availability(book.id)
    assert capped.available_copies == capped.total_copies == 3


def test_increment_unknown_book(lib):
    with pytest.raises(NotFoundError):
        lib.inventory.increment_availability("missing")


def test_maintenance_survives_count_changes(lib):
    book = lib.add_book("Fragile", "Author", "2222222222", copies=1)
    lib.inventory.set_maintenance(book.id, True)

    lib.inventory.try_decrement_availability(book.id)
    assert lib.inventory.get_book(book.id).status == "maintenance"

    lib.inventory.increment_availability(book.id)
    assert lib.inventory.get_book(book.id).status == "maintenance"


def test_clearing_maintenance_derives_status(lib):
    book = lib.add_book("Fragile", "Author", "2222222222", copies=1)
    lib.inventory.set_maintenance(book.id, True)
    lib.inventory.try_decrement_availability(book.id)

    cleared = lib.inventory.set_maintenance(book.id, False)
    assert cleared.status == "unavailable"

    lib.inventory.increment_availability(book.id)
    assert lib.inventory.get_book(book.id).status == "available"


def test_set_maintenance_unknown_book(lib):
    with pytest.raises(NotFoundError):
        lib.inventory.set_maintenance("missing", True)


def test_low_stock_flag():
    assert Book("T", "A", "1", total_copies=10, available_copies=2).is_low_stock is True
    assert Book("T", "A", "1", total_copies=10, available_copies=3).is_low_stock is False


def test_restore_copy_once_per_borrow(lib, clock, book, member):
    record = lib.circulation.checkout(member.id, book.id, clock() + timedelta(days=7))
    assert lib.inventory.get_book(book.id).available_copies == 2

    assert lib.inventory.restore_copy(book.id, record.id) is True
    assert lib.inventory.restore_copy(book.id, record.id) is False
    assert lib.inventory.get_book(book.id).available_copies == 3


def test_restore_copy_unknown_book(lib):
    assert lib.inventory.restore_copy("missing") is False
