"""
Identifier generation for library card applications.

Card numbers are built from the applicant's field, roll number and class:
``{fieldCode}-{rollNo}-{classCode}``. They are deterministic and carry no
uniqueness guarantee; two applicants sharing all three values get the same
number.
"""

import random
import re
from datetime import date, datetime, timezone
from typing import Optional, Tuple

from config import settings


FIELD_CODES = {
    "Computer Science": "CS",
    "Pre-Medical": "PM",
    "Pre-Engineering": "PE",
    "Humanities": "HU",
    "Commerce": "CO",
}

CLASS_CODES = {
    "Class 11": "11",
    "Class 12": "12",
    "ADS I": "AI",
    "ADS II": "AII",
    "BSc Part 1": "BI",
    "BSc Part 2": "BII",
}

UNKNOWN_CODE = "XX"

# one letter and an optional hyphen, e.g. "A-123" or "B45"
ROLL_PREFIX = re.compile(r"^[A-Za-z]-?")


def generate_card_number(field: Optional[str], roll_no: str, student_class: Optional[str]) -> str:
    field_code = FIELD_CODES.get(field, UNKNOWN_CODE) if field else UNKNOWN_CODE
    class_code = CLASS_CODES.get(student_class, UNKNOWN_CODE) if student_class else UNKNOWN_CODE
    clean_roll_no = ROLL_PREFIX.sub("", roll_no or "", count=1)
    return f"{field_code}-{clean_roll_no}-{class_code}"


def generate_student_id(prefix: Optional[str] = None, rng: Optional[random.Random] = None) -> str:
    """Return ``PREFIX-NNNNNN`` with a random zero-padded six digit number."""
    prefix = prefix or settings.student_id_prefix
    number = (rng or random).randrange(1_000_000)
    return f"{prefix}-{number:06d}"


def add_years(day: date, years: int) -> date:
    """Calendar-year arithmetic; Feb 29 rolls over to Mar 1 in non-leap years."""
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        return date(day.year + years, 3, 1)


def compute_validity_window(now: Optional[datetime] = None) -> Tuple[date, date]:
    """Return ``(issue_date, valid_through)`` for a card issued at ``now`` (UTC)."""
    now = now or datetime.now(timezone.utc)
    issue_date = now.date()
    return issue_date, add_years(issue_date, 1)
