import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from errors import (
    AlreadyReturned,
    CardLoginError,
    DuplicateRecord,
    InvalidCredential,
    LibraryError,
    NoCopiesAvailable,
    NotFoundError,
    RepositoryFailure,
    ValidationError,
)
from library import LibrarySystem
from schemas import (
    ApplicationStatusUpdate,
    Book,
    BookBorrow,
    BookCreate,
    BookUpdate,
    BorrowRequest,
    BorrowStatusUpdate,
    CardApplication,
    CardApplicationCreate,
    CardLogin,
    CardLoginRequest,
    CirculationStats,
    Student,
)
from security import hash_secret


logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("library.api")

# first match wins, so subclasses come before their bases
ERROR_STATUS = [
    (NotFoundError, 404),
    (NoCopiesAvailable, 409),
    (AlreadyReturned, 409),
    (ValidationError, 400),
    (CardLoginError, 401),
    (DuplicateRecord, 409),
    (RepositoryFailure, 503),
]


@lru_cache(maxsize=None)
def get_library() -> LibrarySystem:
    return LibrarySystem()


# Caller identity is established upstream; these headers are trusted as given.
@dataclass
class Caller:
    user_id: Optional[str] = None
    is_admin: bool = False


def get_caller(
    x_user_id: Optional[str] = Header(None),
    x_is_admin: Optional[str] = Header(None),
) -> Caller:
    is_admin = (x_is_admin or "").lower() in ("true", "1", "yes")
    return Caller(user_id=x_user_id or None, is_admin=is_admin)


def require_user(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.user_id:
        raise HTTPException(401, "Not authenticated")
    return caller


def require_admin(caller: Caller = Depends(require_user)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(403, "Admin access required")
    return caller


app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content={"error": exc.message, "code": type(exc).__name__})


@app.get("/")
def read_root():
    return {"message": "Library Circulation API is running"}


# Library card applications
@app.post("/api/library-card-applications", status_code=201, response_model=CardApplication)
def submit_application(
    payload: CardApplicationCreate,
    caller: Caller = Depends(get_caller),
    library: LibrarySystem = Depends(get_library),
):
    secret = payload.password
    payload = payload.model_copy(
        update={"user_id": caller.user_id, "password": hash_secret(secret) if secret else None}
    )
    return library.submit_application(payload)


@app.get("/api/library-card-applications", response_model=List[CardApplication])
def list_applications(
    caller: Caller = Depends(require_user),
    library: LibrarySystem = Depends(get_library),
):
    if caller.is_admin:
        return library.applications.list()
    return library.applications.list(user_id=caller.user_id)


@app.get("/api/library-cards/{card_number}", response_model=CardApplication)
def find_application(
    card_number: str,
    caller: Caller = Depends(require_admin),
    library: LibrarySystem = Depends(get_library),
):
    application = library.find_application_by_card_number(card_number.strip())
    if application is None:
        raise HTTPException(404, "Library card not found")
    return application


@app.patch("/api/library-card-applications/{application_id}/status", response_model=CardApplication)
def set_application_status(
    application_id: str,
    payload: ApplicationStatusUpdate,
    caller: Caller = Depends(require_admin),
    library: LibrarySystem = Depends(get_library),
):
    return library.set_application_status(application_id, payload.status)


@app.delete("/api/library-card-applications/{application_id}")
def delete_application(
    application_id: str,
    caller: Caller = Depends(require_admin),
    library: LibrarySystem = Depends(get_library),
):
    library.applications.delete(application_id)
    return {"success": True}


@app.get("/api/students", response_model=List[Student])
def list_students(
    caller: Caller = Depends(require_admin),
    library: LibrarySystem = Depends(get_library),
):
    return library.applications.list_students()


# Card login
@app.post("/api/auth/card-login", response_model=CardLogin)
def card_login(payload: CardLoginRequest, library: LibrarySystem = Depends(get_library)):
    try:
        return library.authorize_card_login(payload.card_number, payload.password)
    except NotFoundError:
        # unknown cards and wrong secrets look the same to the caller
        raise InvalidCredential() from None


# Books Endpoints
@app.get("/api/books", response_model=List[Book])
def list_books(library: LibrarySystem = Depends(get_library)):
    return library.catalog.list()


@app.get("/api/books/{book_id}", response_model=Book)
def get_book(book_id: str, library: LibrarySystem = Depends(get_library)):
    return library.catalog.get(book_id)


@app.post("/api/books", status_code=201, response_model=Book)
def create_book(
    payload: BookCreate,
    caller: Caller = Depends(require_admin),
    library: LibrarySystem = Depends(get_library),
):
    return library.catalog.create(payload)


@app.put("/api/books/{book_id}", response_model=Book)
def update_book(
    book_id: str,
    payload: BookUpdate,
    caller: Caller = Depends(require_admin),
    library: LibrarySystem = Depends(get_library),
):
    return library.catalog.update(book_id, payload)


@app.delete("/api/books/{book_id}")
def delete_book(
    book_id: str,
    caller: Caller = Depends(require_admin),
    library: LibrarySystem = Depends(get_library),
):
    library.catalog.delete(book_id)
    return {"ok": True}


# Loans Endpoints
@app.get("/api/book-borrows", response_model=List[BookBorrow])
def list_borrows(
    status: Optional[str] = None,
    caller: Caller = Depends(require_user),
    library: LibrarySystem = Depends(get_library),
):
    user_id = None if caller.is_admin else caller.user_id
    return library.circulation.list(user_id=user_id, status=status)


@app.post("/api/book-borrows", status_code=201, response_model=BookBorrow)
def borrow_book(
    payload: BorrowRequest,
    caller: Caller = Depends(require_user),
    library: LibrarySystem = Depends(get_library),
):
    borrower = library.borrower_for(
        caller.user_id,
        name=payload.borrower_name,
        phone=payload.borrower_phone,
        email=payload.borrower_email,
    )
    return library.borrow_book(payload.book_id, borrower)


@app.patch("/api/book-borrows/{borrow_id}/return", response_model=BookBorrow)
def return_book(
    borrow_id: str,
    caller: Caller = Depends(require_admin),
    library: LibrarySystem = Depends(get_library),
):
    return library.return_book(borrow_id)


@app.patch("/api/book-borrows/{borrow_id}/status", response_model=BookBorrow)
def set_borrow_status(
    borrow_id: str,
    payload: BorrowStatusUpdate,
    caller: Caller = Depends(require_admin),
    library: LibrarySystem = Depends(get_library),
):
    return library.set_borrow_status(borrow_id, payload.status, payload.return_date)


@app.delete("/api/book-borrows/{borrow_id}")
def delete_borrow(
    borrow_id: str,
    caller: Caller = Depends(require_admin),
    library: LibrarySystem = Depends(get_library),
):
    library.circulation.delete(borrow_id)
    return {"success": True}


# Stats endpoint
@app.get("/api/stats", response_model=CirculationStats)
def stats(
    caller: Caller = Depends(require_admin),
    library: LibrarySystem = Depends(get_library),
):
    return library.stats()


@app.get("/test")
def test_database(library: LibrarySystem = Depends(get_library)):
    response: Dict[str, Any] = {
        "backend": "✅ Running",
        "database": type(library.store).__name__,
        "database_name": settings.database_name if settings.database_url else None,
        "connection_status": "Not Connected",
    }
    try:
        response["stats"] = library.stats().model_dump(by_alias=True)
        response["connection_status"] = "Connected"
    except RepositoryFailure as e:
        response["connection_status"] = f"⚠️  Error: {e.message}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
