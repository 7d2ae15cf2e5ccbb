"""
Borrowing and returning book copies.

A book's ``available_copies`` is the one shared counter here and only this
module writes it. Borrowing takes a copy with a conditional decrement
before the loan is written, so two borrowers can never both take the last
copy; if the loan write then fails the copy is put back. Returning flips
the loan to ``returned`` with a conditional write, so a loan can only be
returned once, and restocks the book without going past ``total_copies``;
if the restock fails the loan is reopened.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from config import settings
from database import Store
from errors import (
    AlreadyReturned,
    NoCopiesAvailable,
    NotFoundError,
    RepositoryFailure,
    ValidationError,
)
from schemas import BookBorrow, Borrower, BorrowStatusUpdate, parse


logger = logging.getLogger("library.circulation")

BOOKS = "book"
BORROWS = "book_borrow"

RESIZE_ATTEMPTS = 3


class CirculationManager:
    def __init__(
        self,
        store: Store,
        loan_days: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.books = store[BOOKS]
        self.borrows = store[BORROWS]
        self.loan_period = timedelta(days=loan_days or settings.loan_period_days)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _book(self, book_id: str) -> Dict[str, Any]:
        book = self.books.get(book_id) if book_id else None
        if book is None:
            raise NotFoundError("Book", book_id)
        return book

    # ---- loans

    def borrow(self, book_id: str, borrower: Union[Borrower, Dict[str, Any]]) -> BookBorrow:
        """Lend one copy of ``book_id`` to ``borrower``.

        Raises:
            ValidationError: malformed borrower descriptor.
            NotFoundError: the book does not exist.
            NoCopiesAvailable: every copy is out.
            RepositoryFailure: the store failed; no copy stays taken.
        """
        if not book_id:
            raise ValidationError("bookId is required")
        borrower = parse(Borrower, borrower)
        book = self._book(book_id)

        if self.books.increment(book_id, "available_copies", -1) is None:
            if self.books.get(book_id) is None:
                raise NotFoundError("Book", book_id)
            logger.warning("Borrow refused | book=%s user=%s: no copies", book_id, borrower.user_id)
            raise NoCopiesAvailable()

        now = self._clock()
        try:
            doc = self.borrows.create(
                {
                    "user_id": borrower.user_id,
                    "book_id": book_id,
                    "book_title": book.get("book_name", ""),
                    "borrower_name": borrower.name,
                    "borrower_phone": borrower.phone,
                    "borrower_email": borrower.email,
                    "borrow_date": now,
                    "due_date": now + self.loan_period,
                    "return_date": None,
                    "status": "borrowed",
                }
            )
        except RepositoryFailure:
            logger.error("Loan write failed for book %s; restoring the copy", book_id)
            self.books.increment(book_id, "available_copies", 1, ceiling="total_copies")
            raise

        loan = BookBorrow.model_validate(doc)
        logger.info("Book borrowed | loan=%s book=%s user=%s due=%s", loan.id, book_id, loan.user_id, loan.due_date)
        return loan

    def return_copy(self, borrow_id: str) -> BookBorrow:
        """Mark a loan returned and put its copy back on the shelf.

        Raises:
            NotFoundError: no loan with ``borrow_id``.
            AlreadyReturned: the loan was returned before.
            RepositoryFailure: the store failed; the loan stays borrowed.
        """
        loan = self.get(borrow_id)
        if loan.status == "returned":
            raise AlreadyReturned()

        doc = self.borrows.update_if(
            borrow_id,
            {"status": loan.status},
            {"status": "returned", "return_date": self._clock()},
        )
        if doc is None:
            # lost a race with another return (or a delete)
            if self.borrows.get(borrow_id) is None:
                raise NotFoundError("Book borrow", borrow_id)
            raise AlreadyReturned()

        try:
            restocked = self.books.increment(loan.book_id, "available_copies", 1, ceiling="total_copies")
        except RepositoryFailure:
            logger.error("Restock failed for book %s; reopening loan %s", loan.book_id, borrow_id)
            self.borrows.update_if(
                borrow_id, {"status": "returned"}, {"status": loan.status, "return_date": None}
            )
            raise
        if restocked is None:
            logger.warning("Book %s not restocked for loan %s: missing or already full", loan.book_id, borrow_id)

        loan = BookBorrow.model_validate(doc)
        logger.info("Book returned | loan=%s book=%s", loan.id, loan.book_id)
        return loan

    def set_status(
        self, borrow_id: str, status: str, return_date: Optional[datetime] = None
    ) -> BookBorrow:
        """Administrative status override. Leaves the book's copy count alone.

        ``returned`` without a date keeps an existing return date or stamps
        now; ``borrowed`` clears the return date.
        """
        update = parse(BorrowStatusUpdate, {"status": status, "return_date": return_date})
        loan = self.get(borrow_id)

        fields: Dict[str, Any] = {"status": update.status}
        if update.status == "returned":
            if update.return_date is not None:
                fields["return_date"] = update.return_date
            elif loan.return_date is None:
                fields["return_date"] = self._clock()
        else:
            if update.return_date is not None:
                raise ValidationError("returnDate can only be set with status returned")
            fields["return_date"] = None

        doc = self.borrows.update(borrow_id, fields)
        if doc is None:
            raise NotFoundError("Book borrow", borrow_id)
        logger.info("Loan status overridden | loan=%s %s -> %s", borrow_id, loan.status, update.status)
        return BookBorrow.model_validate(doc)

    def get(self, borrow_id: str) -> BookBorrow:
        doc = self.borrows.get(borrow_id) if borrow_id else None
        if doc is None:
            raise NotFoundError("Book borrow", borrow_id)
        return BookBorrow.model_validate(doc)

    def list(self, user_id: Optional[str] = None, status: Optional[str] = None) -> List[BookBorrow]:
        filters: Dict[str, Any] = {}
        if user_id:
            filters["user_id"] = user_id
        if status:
            filters["status"] = status
        docs = self.borrows.find(filters) if filters else self.borrows.list()
        return [BookBorrow.model_validate(d) for d in docs]

    def delete(self, borrow_id: str) -> None:
        """Drop a loan record. Copy counts are not adjusted."""
        if not self.borrows.delete(borrow_id):
            raise NotFoundError("Book borrow", borrow_id)
        logger.info("Loan deleted | loan=%s", borrow_id)

    # ---- inventory

    def set_total_copies(self, book_id: str, total: int) -> Dict[str, Any]:
        """Resize a book's inventory, keeping the copies on loan out."""
        if total < 0:
            raise ValidationError("totalCopies must be non-negative")

        for _ in range(RESIZE_ATTEMPTS):
            book = self._book(book_id)
            old_total = book.get("total_copies", 0)
            old_available = book.get("available_copies", 0)
            on_loan = old_total - old_available
            if total < on_loan:
                raise ValidationError(f"totalCopies cannot drop below the {on_loan} copies on loan")
            doc = self.books.update_if(
                book_id,
                {"total_copies": old_total, "available_copies": old_available},
                {"total_copies": total, "available_copies": total - on_loan},
            )
            if doc is not None:
                logger.info("Inventory resized | book=%s total %s -> %s", book_id, old_total, total)
                return doc
        raise RepositoryFailure(f"Book {book_id} kept changing; inventory not resized")
