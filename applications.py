"""
Library card applications.

An application is submitted as ``pending`` with its card number, student id
and validity window already assigned. An admin then moves it once to
``approved`` or ``rejected``. Approving provisions the matching Student
record; re-approving an approved application only repeats that check.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import security
from database import Store
from errors import (
    DuplicateRecord,
    InvalidCredential,
    InvalidStatusTransition,
    NoCredential,
    NotApproved,
    NotFoundError,
    ValidationError,
)
from identifiers import compute_validity_window, generate_card_number, generate_student_id
from schemas import (
    APPLICATION_STATUSES,
    Borrower,
    CardApplication,
    CardApplicationCreate,
    CardLogin,
    Student,
    parse,
)


logger = logging.getLogger("library.applications")

APPLICATIONS = "library_card_application"
STUDENTS = "student"

CARD_SUBJECT_PREFIX = "card-"
TERMINAL_STATUSES = ("approved", "rejected")


def card_subject(application_id: str) -> str:
    """Id used for a card holder in sessions and loans."""
    return f"{CARD_SUBJECT_PREFIX}{application_id}"


def application_id_from_subject(subject: str) -> Optional[str]:
    if subject and subject.startswith(CARD_SUBJECT_PREFIX):
        return subject[len(CARD_SUBJECT_PREFIX):]
    return None


def borrower_from_application(application: CardApplication) -> Borrower:
    return Borrower(
        user_id=card_subject(application.id),
        name=application.full_name,
        phone=application.phone,
        email=application.email,
    )


class ApplicationManager:
    def __init__(
        self,
        store: Store,
        verify_secret: Callable[[str, str], bool] = security.verify_secret,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.applications = store[APPLICATIONS]
        self.students = store[STUDENTS]
        self.students.ensure_unique("card_id")
        self._verify_secret = verify_secret
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def submit(self, data: Union[CardApplicationCreate, Dict[str, Any]]) -> CardApplication:
        payload = parse(CardApplicationCreate, data)

        card_number = generate_card_number(payload.field, payload.roll_no, payload.student_class)
        clash = self.applications.find_one({"card_number": card_number}, ignore_case=True)
        if clash:
            logger.warning("Card number %s already issued to application %s", card_number, clash["id"])

        issue_date, valid_through = compute_validity_window(self._clock())
        doc = payload.model_dump(mode="json")
        doc.update(
            status="pending",
            card_number=card_number,
            student_id=generate_student_id(),
            issue_date=issue_date.isoformat(),
            valid_through=valid_through.isoformat(),
        )
        record = CardApplication.model_validate(self.applications.create(doc))
        logger.info("Application submitted | id=%s card=%s", record.id, record.card_number)
        return record

    def get(self, application_id: str) -> CardApplication:
        doc = self.applications.get(application_id)
        if doc is None:
            raise NotFoundError("Library card application", application_id)
        return CardApplication.model_validate(doc)

    def list(self, user_id: Optional[str] = None) -> List[CardApplication]:
        docs = self.applications.find({"user_id": user_id}) if user_id else self.applications.list()
        return [CardApplication.model_validate(d) for d in docs]

    def delete(self, application_id: str) -> None:
        if not self.applications.delete(application_id):
            raise NotFoundError("Library card application", application_id)
        logger.info("Application deleted | id=%s", application_id)

    def set_status(self, application_id: str, status: str) -> CardApplication:
        """Move an application to ``status``.

        ``pending`` may become either terminal status. A terminal status may
        only be set again to the same value; approving again re-runs student
        provisioning, which is idempotent.

        Raises:
            ValidationError: ``status`` is not a known application status.
            NotFoundError: no application with ``application_id``.
            InvalidStatusTransition: the application already holds the other
                terminal status.
        """
        if status not in APPLICATION_STATUSES:
            raise ValidationError(f"Unknown application status: {status}")

        current = self.get(application_id).status
        if current in TERMINAL_STATUSES and current != status:
            raise InvalidStatusTransition(current, status)

        # the write only lands if nobody changed the status since we read it
        doc = self.applications.update_if(application_id, {"status": current}, {"status": status})
        if doc is None:
            raise InvalidStatusTransition(self.get(application_id).status, status)

        application = CardApplication.model_validate(doc)
        logger.info("Application status set | id=%s %s -> %s", application_id, current, status)
        if status == "approved":
            self.ensure_student(application)
        return application

    def ensure_student(self, application: CardApplication) -> Optional[Student]:
        """Return the Student for the application's card, creating it if missing."""
        if not application.card_number:
            logger.warning("Application %s has no card number; no student provisioned", application.id)
            return None

        existing = self.students.find_one({"card_id": application.card_number})
        if existing:
            return Student.model_validate(existing)

        try:
            doc = self.students.create(
                {
                    "user_id": application.user_id or card_subject(application.id),
                    "card_id": application.card_number,
                    "name": application.full_name,
                    "student_class": application.student_class,
                    "field": application.field,
                    "roll_no": application.roll_no,
                }
            )
        except DuplicateRecord:
            doc = self.students.find_one({"card_id": application.card_number})
            if doc is None:
                raise
            logger.info("Student for card %s was provisioned concurrently", application.card_number)
            return Student.model_validate(doc)

        logger.info("Student provisioned | card=%s application=%s", application.card_number, application.id)
        return Student.model_validate(doc)

    def list_students(self) -> List[Student]:
        return [Student.model_validate(d) for d in self.students.list()]

    def find_by_card_number(self, card_number: str) -> Optional[CardApplication]:
        """Case-insensitive exact match on the stored card number."""
        if not card_number:
            return None
        docs = self.applications.find({"card_number": card_number}, ignore_case=True)
        if not docs:
            return None
        if len(docs) > 1:
            logger.warning("Card number %s matches %d applications; using the oldest", card_number, len(docs))
        return CardApplication.model_validate(docs[0])

    def authorize_card_login(self, card_number: str, secret: str) -> CardLogin:
        """Check a card number and secret.

        The credential is checked before the status, so an unapproved
        applicant only learns the status after proving the secret.
        """
        if not secret:
            raise ValidationError("Password is required for library card login")

        application = self.find_by_card_number(card_number)
        if application is None:
            raise NotFoundError("Library card", card_number)
        if not application.password:
            raise NoCredential()
        if not self._verify_secret(secret, application.password):
            logger.warning("Card login refused for %s: bad credential", application.card_number)
            raise InvalidCredential()

        status = (application.status or "pending").lower()
        if status != "approved":
            logger.warning("Card login refused for %s: status %s", application.card_number, status)
            raise NotApproved(status)

        return CardLogin(
            user_id=card_subject(application.id),
            name=application.full_name,
            application=application,
        )
