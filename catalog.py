"""Book catalog administration."""

import logging
from typing import Any, Dict, List, Union

from circulation import BOOKS, BORROWS, CirculationManager
from database import Store
from errors import NotFoundError, ValidationError
from schemas import Book, BookCreate, BookUpdate, parse


logger = logging.getLogger("library.catalog")


class Catalog:
    def __init__(self, store: Store, circulation: CirculationManager) -> None:
        self.books = store[BOOKS]
        self.borrows = store[BORROWS]
        self.circulation = circulation

    def create(self, data: Union[BookCreate, Dict[str, Any]]) -> Book:
        payload = parse(BookCreate, data)
        doc = payload.model_dump()
        if doc.get("available_copies") is None:
            doc["available_copies"] = doc["total_copies"]
        book = Book.model_validate(self.books.create(doc))
        logger.info("Book added | id=%s copies=%s", book.id, book.total_copies)
        return book

    def get(self, book_id: str) -> Book:
        doc = self.books.get(book_id)
        if doc is None:
            raise NotFoundError("Book", book_id)
        return Book.model_validate(doc)

    def list(self) -> List[Book]:
        return sorted(
            (Book.model_validate(d) for d in self.books.list()),
            key=lambda b: b.book_name.lower(),
        )

    def update(self, book_id: str, data: Union[BookUpdate, Dict[str, Any]]) -> Book:
        payload = parse(BookUpdate, data)
        update = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
        if not update:
            raise ValidationError("No fields to update")

        total = update.pop("total_copies", None)
        if total is not None:
            self.circulation.set_total_copies(book_id, total)
        if update:
            if self.books.update(book_id, update) is None:
                raise NotFoundError("Book", book_id)
        return self.get(book_id)

    def delete(self, book_id: str) -> None:
        """Remove a book that has no copies on loan.

        The shelf is emptied with a conditional write before loans are
        counted, so no borrow can take a copy while the book is checked.
        A borrow that took its copy before the shelf was emptied but had
        not yet written its loan is only caught after the delete, and is
        logged.
        """
        book = self.books.get(book_id)
        if book is None:
            raise NotFoundError("Book", book_id)
        available = book.get("available_copies", 0)

        held = self.books.update_if(book_id, {"available_copies": available}, {"available_copies": 0})
        if held is None:
            if self.books.get(book_id) is None:
                raise NotFoundError("Book", book_id)
            raise ValidationError("Book is being borrowed; try again")

        active = {"book_id": book_id, "status": "borrowed"}
        if self.borrows.count(active) > 0:
            self.books.increment(book_id, "available_copies", available)
            raise ValidationError("Book has active loans")
        if not self.books.delete(book_id):
            raise NotFoundError("Book", book_id)
        logger.info("Book deleted | id=%s", book_id)

        if self.borrows.count(active) > 0:
            logger.error("Book %s was deleted while a loan for it was being written", book_id)
