from typing import Optional


class LibraryError(Exception):
    """Base exception for membership and circulation errors."""

    message = "Library operation failed"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)


class NotFoundError(LibraryError):
    """Requested entity id does not resolve."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ValidationError(LibraryError):
    """Missing or malformed required input field."""

    message = "Invalid input"


class InvalidStatusTransition(ValidationError):
    """Status change from a terminal value to a different value."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change status from {current} to {requested}")


class NoCopiesAvailable(LibraryError):
    """Book has no copies left to lend."""

    message = "No copies available for borrowing"


class AlreadyReturned(LibraryError):
    """Loan was already returned."""

    message = "Book already returned"


class CardLoginError(LibraryError):
    """Library card login refused."""


class InvalidCredential(CardLoginError):
    message = "Write correct details"


class NoCredential(CardLoginError):
    message = "No password set. Please contact library."


class NotApproved(CardLoginError):
    """Card application exists but is not approved.

    ``reason`` is ``pending``, ``rejected`` or ``other``.
    """

    MESSAGES = {
        "pending": "Wait for approval by library",
        "rejected": "Your library card application was rejected.",
        "other": "Library card is not active.",
    }

    def __init__(self, status: str) -> None:
        self.status = status
        self.reason = status if status in ("pending", "rejected") else "other"
        super().__init__(self.MESSAGES[self.reason])


class RepositoryFailure(LibraryError):
    """The backing store returned an error or timed out."""

    message = "Storage is unavailable"


class DuplicateRecord(RepositoryFailure):
    """A unique key constraint in the store rejected the write."""

    message = "Record already exists"
