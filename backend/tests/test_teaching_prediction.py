"""
Course-offering prediction rules.
"""
from __future__ import annotations

import pytest

from records.models import Course, CourseOffering  # type: ignore
from teaching.prediction import HIGH, LOW, MEDIUM, predict_course_offerings, semesters_since  # type: ignore


def _course(cid, number):
    return Course(id=cid, course_number=number, course_name=f"Course {number}")


def _offerings(cid, pairs):
    return [
        CourseOffering(
            id=f"{cid}-{year}-{season}",
            course_id=cid,
            professor_id="p",
            semester=f"{season.capitalize()} {year}",
            year=year,
            season=season,
        )
        for year, season in pairs
    ]


def _predict(pairs, year, season):
    course = _course("c", "131")
    return predict_course_offerings([course], _offerings("c", pairs), year, season)


def test_semesters_since_counts_half_years():
    assert semesters_since(2023, "fall", 2024, "fall") == 2
    assert semesters_since(2024, "spring", 2024, "fall") == 1
    assert semesters_since(2023, "spring", 2024, "fall") == 3
    assert semesters_since(2024, "fall", 2025, "spring") == 1


def test_every_semester_course_is_high():
    history = [(y, s) for y in (2021, 2022, 2023) for s in ("spring", "fall")]
    [p] = _predict(history, 2024, "spring")
    assert p.confidence == HIGH
    assert p.reason == "Course is typically offered every semester"
    assert p.predicted_semester == "spring 2024"


def test_fall_only_course_is_high_for_fall():
    history = [(y, "fall") for y in (2019, 2020, 2021, 2022, 2023)]
    [p] = _predict(history, 2024, "fall")
    assert p.confidence == HIGH
    assert "only in fall" in p.reason


def test_fall_only_course_in_spring_falls_back_to_frequency():
    history = [(y, "fall") for y in (2019, 2020, 2021, 2022)]
    # Last offered Fall 2022; Spring 2024 is three semesters later.
    [p] = _predict(history, 2024, "spring")
    assert p.confidence == MEDIUM


def test_recently_offered_irregular_course_gets_no_prediction():
    history = [(2020, "fall"), (2021, "spring"), (2022, "spring"), (2023, "fall")]
    assert _predict(history, 2024, "spring") == []


def test_short_history_is_low_after_a_gap():
    assert _predict([(2021, "fall"), (2022, "fall")], 2024, "fall")[0].confidence == LOW
    assert _predict([(2023, "spring"), (2023, "fall")], 2024, "spring") == []
    assert _predict([(2020, "fall")], 2024, "fall") == []


def test_future_offerings_are_ignored():
    history = [(2021, "fall"), (2022, "fall"), (2030, "fall")]
    assert _predict(history, 2024, "fall")[0].confidence == LOW


def test_results_are_ranked_by_confidence_then_number():
    a, b, c = _course("a", "500"), _course("b", "132"), _course("d", "200")
    offerings = (
        _offerings("a", [(y, s) for y in (2021, 2022, 2023) for s in ("spring", "fall")])
        + _offerings("b", [(2020, "fall"), (2021, "fall")])
        + _offerings("d", [(y, "fall") for y in (2019, 2020, 2021, 2022)])
    )
    ranked = predict_course_offerings([b, c, a], offerings, 2024, "fall")
    assert [(p.course_number, p.confidence) for p in ranked] == [("200", HIGH), ("500", HIGH), ("132", LOW)]


def test_invalid_season_is_rejected():
    with pytest.raises(ValueError):
        predict_course_offerings([], [], 2024, "winter")
