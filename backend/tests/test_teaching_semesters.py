"""
Academic calendar: current/next semester, parsing and ranges.
"""
from __future__ import annotations

from datetime import date

import pytest

from teaching.semesters import (  # type: ignore
    compare_semesters,
    current_semester,
    format_semester,
    is_current,
    is_future,
    is_past,
    next_semester,
    parse_semester,
    semester,
    semester_range,
)


@pytest.mark.parametrize(
    "today, expected",
    [
        (date(2024, 1, 15), (2023, "fall")),
        (date(2024, 2, 1), (2024, "spring")),
        (date(2024, 5, 31), (2024, "spring")),
        (date(2024, 7, 4), (2024, "summer")),
        (date(2024, 9, 1), (2024, "fall")),
        (date(2024, 12, 31), (2024, "fall")),
    ],
)
def test_current_semester_boundaries(today, expected):
    sem = current_semester(today)
    assert (sem.year, sem.season) == expected


def test_next_semester_wraps_fall_into_spring():
    assert next_semester(semester(2024, "fall")).key == (2025, 1)
    assert next_semester(semester(2024, "spring")).season == "summer"
    assert next_semester(semester(2024, "summer")).season == "fall"


def test_semester_dates_and_display():
    fall = semester(2024, "fall")
    assert fall.start_date == date(2024, 9, 1)
    assert fall.end_date == date(2025, 1, 31)
    assert fall.display == "Fall 2024"
    assert format_semester(2025, "spring") == "Spring 2025"
    with pytest.raises(ValueError):
        semester(2024, "winter")


def test_parse_semester():
    assert parse_semester("  FALL 2024 ").key == (2024, 3)
    for bad in ("Fall", "Winter 2024", "Fall twenty", "Fall 1800"):
        with pytest.raises(ValueError):
            parse_semester(bad)


def test_semester_range_skips_summer_by_default():
    labels = [s.display for s in semester_range(2023, "fall", 2024, "fall")]
    assert labels == ["Fall 2023", "Spring 2024", "Fall 2024"]
    with_summer = semester_range(2024, "spring", 2024, "fall", include_summer=True)
    assert [s.season for s in with_summer] == ["spring", "summer", "fall"]


def test_relative_position():
    today = date(2024, 10, 1)
    assert is_current(semester(2024, "fall"), today)
    assert is_past(semester(2024, "summer"), today)
    assert is_future(semester(2025, "spring"), today)
    assert compare_semesters(semester(2024, "spring"), semester(2024, "fall")) < 0
