"""
Database Schemas for the Library Membership & Circulation system

Each Pydantic model represents a collection in the backing store.
Collection name is the snake_case class name. Stored keys are snake_case;
the wire format uses camelCase aliases (``cardNumber``, ``borrowDate``...).

Collections:
- library_card_application
- student
- book
- book_borrow
"""

from datetime import date, datetime
from typing import Any, Dict, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from errors import ValidationError


APPLICATION_STATUSES = ("pending", "approved", "rejected")
BORROW_STATUSES = ("borrowed", "returned")

ApplicationStatus = Literal["pending", "approved", "rejected"]
BorrowStatus = Literal["borrowed", "returned"]


class Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Record(Schema):
    """Fields every stored record carries."""
    id: str = Field(..., description="Store-assigned identifier")
    created_at: Optional[datetime] = Field(None, description="Creation time (UTC)")
    updated_at: Optional[datetime] = Field(None, description="Last update time (UTC)")


M = TypeVar("M", bound=BaseModel)


def parse(model: Type[M], data: Union[M, Dict[str, Any]]) -> M:
    """Validate raw input into ``model``; failures surface as ``errors.ValidationError``."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(problems or "Invalid input") from e


# Card applications

class CardApplicationCreate(Schema):
    """Applicant-supplied fields. Status and identifiers are assigned on submit."""
    user_id: Optional[str] = Field(None, description="Linked account id, if the applicant is signed in")
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    father_name: Optional[str] = None
    dob: Optional[date] = None
    student_class: str = Field(..., alias="class", min_length=1, description="e.g. Class 11, BSc Part 1")
    field: Optional[str] = Field(None, description="e.g. Computer Science, Humanities")
    roll_no: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    address_street: str
    address_city: str
    address_state: str
    address_zip: str
    password: Optional[str] = Field(None, description="bcrypt hash of the card login secret")


class CardApplication(Record):
    """
    library_card_application collection schema
    """
    user_id: Optional[str] = None
    first_name: str
    last_name: str
    father_name: Optional[str] = None
    dob: Optional[date] = None
    student_class: str = Field(..., alias="class")
    field: Optional[str] = None
    roll_no: str
    email: str
    phone: str
    address_street: Optional[str] = None
    address_city: Optional[str] = None
    address_state: Optional[str] = None
    address_zip: Optional[str] = None
    status: str = Field("pending", description="pending | approved | rejected")
    card_number: Optional[str] = None
    student_id: Optional[str] = None
    issue_date: Optional[date] = None
    valid_through: Optional[date] = None
    password: Optional[str] = Field(None, exclude=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class ApplicationStatusUpdate(Schema):
    status: ApplicationStatus


class CardLoginRequest(Schema):
    card_number: str = Field(..., alias="libraryCardId", min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("card_number", mode="before")
    @classmethod
    def strip_card_number(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class CardLogin(Schema):
    """Successful card login: the session subject plus the approved application."""
    user_id: str = Field(..., description="Session subject id, card-{applicationId}")
    name: str
    application: CardApplication


# Students

class Student(Record):
    """
    student collection schema

    Provisioned when a card application is approved, one per card number.
    """
    user_id: str = Field(..., description="Borrower-linking id")
    card_id: str = Field(..., description="Card number of the originating application")
    name: str
    student_class: Optional[str] = Field(None, alias="class")
    field: Optional[str] = None
    roll_no: Optional[str] = None


# Books

class BookCreate(Schema):
    book_name: str = Field(..., min_length=1)
    short_intro: str = ""
    description: str = ""
    book_image: Optional[str] = Field(None, description="Image URL produced by the file store")
    total_copies: int = Field(1, ge=0, description="Total copies owned")
    available_copies: Optional[int] = Field(None, ge=0, description="Defaults to total_copies")

    @model_validator(mode="after")
    def _copies_within_total(self):
        if self.available_copies is not None and self.available_copies > self.total_copies:
            raise ValueError("availableCopies cannot exceed totalCopies")
        return self


class BookUpdate(Schema):
    """Editable catalog fields. The available count only moves through circulation."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    book_name: Optional[str] = Field(None, min_length=1)
    short_intro: Optional[str] = None
    description: Optional[str] = None
    book_image: Optional[str] = None
    total_copies: Optional[int] = Field(None, ge=0)


class Book(Record):
    """
    book collection schema
    """
    book_name: str
    short_intro: str = ""
    description: str = ""
    book_image: Optional[str] = None
    total_copies: int = Field(0, ge=0)
    available_copies: int = Field(0, ge=0)


# Loans

class Borrower(Schema):
    """Who is borrowing, captured onto the loan at borrow time."""
    user_id: str = Field(..., min_length=1, description="Account id or card-{applicationId}")
    name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None


class BorrowRequest(Schema):
    book_id: str = Field(..., min_length=1)
    borrower_name: Optional[str] = None
    borrower_phone: Optional[str] = None
    borrower_email: Optional[str] = None


class BookBorrow(Record):
    """
    book_borrow collection schema
    """
    user_id: str
    book_id: str
    book_title: str
    borrower_name: str = ""
    borrower_phone: Optional[str] = None
    borrower_email: Optional[str] = None
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: str = Field("borrowed", description="borrowed | returned")


class BorrowStatusUpdate(Schema):
    status: BorrowStatus
    return_date: Optional[datetime] = None


class CirculationStats(Schema):
    books: int
    copies: int
    available: int
    library_cards: int
    students: int
    borrowed_books: int
    returned_books: int
