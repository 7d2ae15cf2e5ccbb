from datetime import datetime, timezone

import pytest

from database import MemoryStore
from library import LibrarySystem
from security import hash_secret


FIXED_NOW = datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)
SECRET = "open-sesame"

# bcrypt's minimum cost keeps the suite fast
SECRET_HASH = hash_secret(SECRET, rounds=4)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def library(store):
    return LibrarySystem(store=store, clock=lambda: FIXED_NOW)


@pytest.fixture
def applicant():
    """Raw application input as the HTTP layer would pass it (camelCase)."""
    return {
        "firstName": "Ayesha",
        "lastName": "Khan",
        "class": "Class 11",
        "field": "Computer Science",
        "rollNo": "A-123",
        "email": "ayesha@example.com",
        "phone": "0300-1234567",
        "addressStreet": "12 Mall Road",
        "addressCity": "Lahore",
        "addressState": "Punjab",
        "addressZip": "54000",
        "password": SECRET_HASH,
    }


@pytest.fixture
def book(library):
    return library.catalog.create({"bookName": "Dune", "totalCopies": 2})


@pytest.fixture
def borrower():
    return {"userId": "user-1", "name": "Bilal Ahmed", "phone": "0300-7654321", "email": "bilal@example.com"}


@pytest.fixture
def secret():
    return SECRET


@pytest.fixture
def now():
    return FIXED_NOW
