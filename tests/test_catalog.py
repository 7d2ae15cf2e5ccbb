import pytest

from errors import NoCopiesAvailable, NotFoundError, ValidationError


def test_create_defaults_available_to_total(library):
    book = library.catalog.create({"bookName": "Dune", "shortIntro": "Spice", "totalCopies": 3})
    assert book.total_copies == 3
    assert book.available_copies == 3
    assert book.short_intro == "Spice"


def test_create_rejects_available_above_total(library):
    with pytest.raises(ValidationError):
        library.catalog.create({"bookName": "Dune", "totalCopies": 1, "availableCopies": 2})


def test_create_rejects_negative_copies(library):
    with pytest.raises(ValidationError):
        library.catalog.create({"bookName": "Dune", "totalCopies": -1})


def test_list_is_sorted_by_name(library):
    for name in ("Zorba", "animal farm", "Dune"):
        library.catalog.create({"bookName": name})
    assert [b.book_name for b in library.catalog.list()] == ["animal farm", "Dune", "Zorba"]


def test_update_display_fields(library, book):
    updated = library.catalog.update(book.id, {"bookName": "Dune Messiah", "bookImage": "https://cdn/x.png"})
    assert updated.book_name == "Dune Messiah"
    assert updated.book_image == "https://cdn/x.png"
    assert updated.available_copies == 2


def test_update_cannot_touch_available_copies(library, book):
    with pytest.raises(ValidationError):
        library.catalog.update(book.id, {"availableCopies": 10})
    assert library.catalog.get(book.id).available_copies == 2


def test_update_total_copies_goes_through_circulation(library, book, borrower):
    library.borrow_book(book.id, borrower)
    updated = library.catalog.update(book.id, {"totalCopies": 4})
    assert updated.total_copies == 4
    assert updated.available_copies == 3


def test_update_without_fields(library, book):
    with pytest.raises(ValidationError):
        library.catalog.update(book.id, {})


def test_update_missing_book(library):
    with pytest.raises(NotFoundError):
        library.catalog.update("missing", {"bookName": "x"})


def test_delete_refuses_books_on_loan(library, book, borrower):
    loan = library.borrow_book(book.id, borrower)
    with pytest.raises(ValidationError):
        library.catalog.delete(book.id)
    assert library.catalog.get(book.id).available_copies == 1

    library.return_book(loan.id)
    library.catalog.delete(book.id)
    with pytest.raises(NotFoundError):
        library.catalog.get(book.id)


def test_delete_blocks_borrows_while_checking_loans(library, book, borrower, monkeypatch):
    refused = []
    count = library.catalog.borrows.count

    def borrow_during_count(filters=None):
        if not refused:
            with pytest.raises(NoCopiesAvailable) as exc:
                library.borrow_book(book.id, borrower)
            refused.append(exc.value)
        return count(filters)

    monkeypatch.setattr(library.catalog.borrows, "count", borrow_during_count)

    library.catalog.delete(book.id)

    assert len(refused) == 1
    assert library.circulation.list() == []
    with pytest.raises(NotFoundError):
        library.catalog.get(book.id)


def test_delete_missing_book(library):
    with pytest.raises(NotFoundError):
        library.catalog.delete("missing")
