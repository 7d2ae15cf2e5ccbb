from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

import security
from applications import ApplicationManager, application_id_from_subject, borrower_from_application
from catalog import Catalog
from circulation import CirculationManager
from database import Store, get_store
from schemas import (
    BookBorrow,
    Borrower,
    CardApplication,
    CardApplicationCreate,
    CardLogin,
    CirculationStats,
)


class LibrarySystem:
    """
    A facade that wires the store + services and offers the compact API
    the HTTP layer calls.
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        clock: Optional[Callable[[], datetime]] = None,
        verify_secret: Callable[[str, str], bool] = security.verify_secret,
    ) -> None:
        self.store = store if store is not None else get_store()
        self.applications = ApplicationManager(self.store, verify_secret=verify_secret, clock=clock)
        self.circulation = CirculationManager(self.store, clock=clock)
        self.catalog = Catalog(self.store, self.circulation)

    # ---- membership
    def submit_application(self, data: Union[CardApplicationCreate, Dict[str, Any]]) -> CardApplication:
        return self.applications.submit(data)

    def set_application_status(self, application_id: str, status: str) -> CardApplication:
        return self.applications.set_status(application_id, status)

    def find_application_by_card_number(self, card_number: str) -> Optional[CardApplication]:
        return self.applications.find_by_card_number(card_number)

    def authorize_card_login(self, card_number: str, secret: str) -> CardLogin:
        return self.applications.authorize_card_login(card_number, secret)

    # ---- circulation
    def borrow_book(self, book_id: str, borrower: Union[Borrower, Dict[str, Any]]) -> BookBorrow:
        return self.circulation.borrow(book_id, borrower)

    def return_book(self, borrow_id: str) -> BookBorrow:
        return self.circulation.return_copy(borrow_id)

    def set_borrow_status(
        self, borrow_id: str, status: str, return_date: Optional[datetime] = None
    ) -> BookBorrow:
        return self.circulation.set_status(borrow_id, status, return_date)

    def borrower_for(
        self,
        user_id: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Borrower:
        """Build the borrower snapshot for a caller.

        Card holders are described by their application; anyone else by
        the profile details the caller supplied.
        """
        application_id = application_id_from_subject(user_id)
        if application_id:
            return borrower_from_application(self.applications.get(application_id))
        return Borrower(user_id=user_id, name=name or email or "", phone=phone, email=email)

    # ---- reporting
    def stats(self) -> CirculationStats:
        books = self.catalog.list()
        borrows = self.circulation.borrows
        return CirculationStats(
            books=len(books),
            copies=sum(b.total_copies for b in books),
            available=sum(b.available_copies for b in books),
            library_cards=self.applications.applications.count(),
            students=self.applications.students.count(),
            borrowed_books=borrows.count({"status": "borrowed"}),
            returned_books=borrows.count({"status": "returned"}),
        )
