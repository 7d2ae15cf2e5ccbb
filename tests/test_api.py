import pytest
from fastapi.testclient import TestClient

from database import MemoryStore
from library import LibrarySystem
from main import app, get_library


ADMIN = {"X-User-Id": "admin-1", "X-Is-Admin": "true"}
MEMBER = {"X-User-Id": "acct-1"}

APPLICATION = {
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
    "password": "open-sesame",
}


@pytest.fixture
def library():
    return LibrarySystem(store=MemoryStore())


@pytest.fixture
def client(library):
    app.dependency_overrides[get_library] = lambda: library
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def create_book(client, copies=1):
    response = client.post("/api/books", headers=ADMIN, json={"bookName": "Dune", "totalCopies": copies})
    assert response.status_code == 201
    return response.json()


def test_root(client):
    assert client.get("/").status_code == 200


def test_submit_application(client):
    response = client.post("/api/library-card-applications", json=APPLICATION)

    assert response.status_code == 201
    body = response.json()
    assert body["cardNumber"] == "CS-123-11"
    assert body["status"] == "pending"
    assert body["class"] == "Class 11"
    assert body["studentId"].startswith("GCMN-")
    assert "password" not in body


def test_submit_application_links_caller(client, library):
    client.post("/api/library-card-applications", headers=MEMBER, json=APPLICATION)
    assert library.applications.list()[0].user_id == "acct-1"


def test_submit_application_stores_hash(client, library):
    client.post("/api/library-card-applications", json=APPLICATION)
    stored = library.applications.list()[0].password
    assert stored and stored != "open-sesame"


def test_card_lifecycle(client):
    app_id = client.post("/api/library-card-applications", json=APPLICATION).json()["id"]
    login = {"libraryCardId": "cs-123-11", "password": "open-sesame"}

    pending = client.post("/api/auth/card-login", json=login)
    assert pending.status_code == 401
    assert pending.json()["error"] == "Wait for approval by library"

    approved = client.patch(
        f"/api/library-card-applications/{app_id}/status", headers=ADMIN, json={"status": "approved"}
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    students = client.get("/api/students", headers=ADMIN).json()
    assert [s["cardId"] for s in students] == ["CS-123-11"]

    ok = client.post("/api/auth/card-login", json=login)
    assert ok.status_code == 200
    assert ok.json()["userId"] == f"card-{app_id}"
    assert ok.json()["name"] == "Ayesha Khan"

    wrong = client.post("/api/auth/card-login", json=dict(login, password="nope"))
    assert wrong.status_code == 401
    assert wrong.json()["code"] == "InvalidCredential"


def test_card_login_trims_card_number(client):
    app_id = client.post("/api/library-card-applications", json=APPLICATION).json()["id"]
    client.patch(f"/api/library-card-applications/{app_id}/status", headers=ADMIN, json={"status": "approved"})

    response = client.post("/api/auth/card-login", json={"libraryCardId": "  CS-123-11 ", "password": "open-sesame"})

    assert response.status_code == 200
    assert response.json()["userId"] == f"card-{app_id}"


def test_blank_card_number_is_rejected(client):
    response = client.post("/api/auth/card-login", json={"libraryCardId": "   ", "password": "x"})
    assert response.status_code == 422


def test_card_lookup_trims_path(client):
    client.post("/api/library-card-applications", json=APPLICATION)
    response = client.get("/api/library-cards/%20cs-123-11%20", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["cardNumber"] == "CS-123-11"


def test_unknown_card_looks_like_bad_credentials(client):
    response = client.post("/api/auth/card-login", json={"libraryCardId": "XX-1-XX", "password": "x"})
    assert response.status_code == 401
    assert response.json()["error"] == "Write correct details"


def test_status_change_requires_admin(client):
    app_id = client.post("/api/library-card-applications", json=APPLICATION).json()["id"]
    url = f"/api/library-card-applications/{app_id}/status"

    assert client.patch(url, json={"status": "approved"}).status_code == 401
    assert client.patch(url, headers=MEMBER, json={"status": "approved"}).status_code == 403


def test_terminal_status_flip_is_rejected(client):
    app_id = client.post("/api/library-card-applications", json=APPLICATION).json()["id"]
    url = f"/api/library-card-applications/{app_id}/status"
    client.patch(url, headers=ADMIN, json={"status": "rejected"})

    response = client.patch(url, headers=ADMIN, json={"status": "approved"})

    assert response.status_code == 400
    assert response.json()["code"] == "InvalidStatusTransition"


def test_list_applications_scoped_to_caller(client):
    client.post("/api/library-card-applications", headers=MEMBER, json=APPLICATION)
    client.post("/api/library-card-applications", json=dict(APPLICATION, rollNo="A-124"))

    assert len(client.get("/api/library-card-applications", headers=MEMBER).json()) == 1
    assert len(client.get("/api/library-card-applications", headers=ADMIN).json()) == 2


def test_borrow_and_return(client):
    book = create_book(client, copies=1)

    borrowed = client.post(
        "/api/book-borrows", headers=MEMBER, json={"bookId": book["id"], "borrowerName": "Bilal"}
    )
    assert borrowed.status_code == 201
    loan = borrowed.json()
    assert loan["status"] == "borrowed"
    assert loan["bookTitle"] == "Dune"
    assert loan["borrowerName"] == "Bilal"
    assert loan["returnDate"] is None

    sold_out = client.post("/api/book-borrows", headers=MEMBER, json={"bookId": book["id"]})
    assert sold_out.status_code == 409
    assert sold_out.json()["error"] == "No copies available for borrowing"

    returned = client.patch(f"/api/book-borrows/{loan['id']}/return", headers=ADMIN)
    assert returned.status_code == 200
    assert returned.json()["status"] == "returned"
    assert client.get(f"/api/books/{book['id']}").json()["availableCopies"] == 1

    again = client.patch(f"/api/book-borrows/{loan['id']}/return", headers=ADMIN)
    assert again.status_code == 409
    assert again.json()["code"] == "AlreadyReturned"


def test_card_holder_borrows_under_card_subject(client):
    app_id = client.post("/api/library-card-applications", json=APPLICATION).json()["id"]
    book = create_book(client)

    response = client.post("/api/book-borrows", headers={"X-User-Id": f"card-{app_id}"}, json={"bookId": book["id"]})

    assert response.status_code == 201
    assert response.json()["borrowerName"] == "Ayesha Khan"
    assert response.json()["borrowerEmail"] == "ayesha@example.com"


def test_borrow_requires_caller(client):
    book = create_book(client)
    assert client.post("/api/book-borrows", json={"bookId": book["id"]}).status_code == 401


def test_borrow_missing_book(client):
    response = client.post("/api/book-borrows", headers=MEMBER, json={"bookId": "missing"})
    assert response.status_code == 404


def test_status_override(client):
    book = create_book(client)
    loan = client.post("/api/book-borrows", headers=MEMBER, json={"bookId": book["id"]}).json()

    response = client.patch(
        f"/api/book-borrows/{loan['id']}/status",
        headers=ADMIN,
        json={"status": "returned", "returnDate": "2026-03-01T10:00:00Z"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "returned"
    assert response.json()["returnDate"].startswith("2026-03-01T10:00:00")
    # overrides never touch the counter
    assert client.get(f"/api/books/{book['id']}").json()["availableCopies"] == 0


def test_book_update_cannot_set_available_copies(client):
    book = create_book(client)
    response = client.put(f"/api/books/{book['id']}", headers=ADMIN, json={"availableCopies": 9})
    assert response.status_code == 422


def test_stats(client):
    book = create_book(client, copies=3)
    client.post("/api/book-borrows", headers=MEMBER, json={"bookId": book["id"]})

    stats = client.get("/api/stats", headers=ADMIN).json()

    assert stats["copies"] == 3
    assert stats["available"] == 2
    assert stats["borrowedBooks"] == 1
