import re
from datetime import date, datetime, timezone

import pytest

from identifiers import (
    add_years,
    compute_validity_window,
    generate_card_number,
    generate_student_id,
)


def test_card_number_example():
    assert generate_card_number("Computer Science", "A-123", "Class 11") == "CS-123-11"


def test_card_number_unknown_field_and_class():
    assert generate_card_number(None, "045", "Unknown Track") == "XX-045-XX"


def test_card_number_is_deterministic():
    first = generate_card_number("Humanities", "H-77", "BSc Part 2")
    second = generate_card_number("Humanities", "H-77", "BSc Part 2")
    assert first == second == "HU-77-BII"


@pytest.mark.parametrize(
    "field, code",
    [
        ("Computer Science", "CS"),
        ("Pre-Medical", "PM"),
        ("Pre-Engineering", "PE"),
        ("Humanities", "HU"),
        ("Commerce", "CO"),
        ("Fine Arts", "XX"),
        ("", "XX"),
    ],
)
def test_field_codes(field, code):
    assert generate_card_number(field, "1", "Class 12").startswith(f"{code}-")


@pytest.mark.parametrize(
    "student_class, code",
    [
        ("Class 11", "11"),
        ("Class 12", "12"),
        ("ADS I", "AI"),
        ("ADS II", "AII"),
        ("BSc Part 1", "BI"),
        ("BSc Part 2", "BII"),
        ("class 11", "XX"),
    ],
)
def test_class_codes(student_class, code):
    assert generate_card_number("Commerce", "1", student_class).endswith(f"-{code}")


@pytest.mark.parametrize(
    "roll_no, cleaned",
    [
        ("A-123", "123"),
        ("b45", "45"),
        ("123", "123"),
        ("AB-12", "B-12"),
        ("12-A", "12-A"),
    ],
)
def test_roll_number_prefix_is_stripped_once(roll_no, cleaned):
    assert generate_card_number("Commerce", roll_no, "Class 11") == f"CO-{cleaned}-11"


def test_student_id_format():
    assert re.fullmatch(r"GCMN-\d{6}", generate_student_id())


def test_student_id_is_zero_padded():
    class FixedRandom:
        def randrange(self, stop):
            return 42

    assert generate_student_id(prefix="LIB", rng=FixedRandom()) == "LIB-000042"


def test_validity_window_is_one_calendar_year():
    issue, valid = compute_validity_window(datetime(2026, 3, 10, 23, 59, tzinfo=timezone.utc))
    assert issue == date(2026, 3, 10)
    assert valid == date(2027, 3, 10)


def test_leap_day_rolls_over_to_march():
    assert add_years(date(2024, 2, 29), 1) == date(2025, 3, 1)
    assert add_years(date(2024, 2, 29), 4) == date(2028, 2, 29)
