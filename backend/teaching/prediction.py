"""
Course-offering prediction: a rule-based classifier over each course's
historical offering seasons.

Rules (per course, history sorted chronologically):
    semesters_since = (target_year - last.year) * 2
                      + (1 if target is fall) - (1 if last was fall)

    >= 4 offerings:
        fall and spring both in > 80% of active years   -> high, every semester
        fall > 80%, spring < 20%, target fall           -> high, fall only
        spring > 80%, fall < 20%, target spring         -> high, spring only
        otherwise, semesters_since >= 2                 -> medium
    >= 2 offerings and semesters_since >= 2             -> low
    anything else                                       -> no prediction
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional

from records.models import Course, CourseOffering

from .semesters import SEASON_ORDER

HIGH = "high"
MEDIUM = "medium"
LOW = "low"


@dataclass(frozen=True)
class PredictedOffering:
    course_id: str
    course_number: str
    course_name: str
    predicted_semester: str
    predicted_year: int
    predicted_season: str
    confidence: str
    reason: str

    def to_dict(self) -> dict:
        return asdict(self)


def semesters_since(last_year: int, last_season: str, target_year: int, target_season: str) -> int:
    return (target_year - last_year) * 2 + (1 if target_season == "fall" else 0) - (1 if last_season == "fall" else 0)


def _classify(history: List[CourseOffering], target_year: int, target_season: str) -> Optional[tuple]:
    last = history[-1]
    gap = semesters_since(last.year, last.season, target_year, target_season)
    if len(history) >= 4:
        active_years = {o.year for o in history}
        fall_ratio = len({o.year for o in history if o.season == "fall"}) / len(active_years)
        spring_ratio = len({o.year for o in history if o.season == "spring"}) / len(active_years)
        if fall_ratio > 0.8 and spring_ratio > 0.8:
            return HIGH, "Course is typically offered every semester"
        if fall_ratio > 0.8 and spring_ratio < 0.2 and target_season == "fall":
            return HIGH, "Course is typically offered only in fall"
        if spring_ratio > 0.8 and fall_ratio < 0.2 and target_season == "spring":
            return HIGH, "Course is typically offered only in spring"
        if gap >= 2:
            return MEDIUM, "Course may be offered based on historical frequency"
        return None
    if len(history) >= 2 and gap >= 2:
        return LOW, "Limited history but may be offered"
    return None


def predict_course_offerings(
    courses: Iterable[Course],
    offerings: Iterable[CourseOffering],
    target_year: int,
    target_season: str,
) -> List[PredictedOffering]:
    if target_season not in SEASON_ORDER:
        raise ValueError("invalid_season")
    by_course: Dict[str, List[CourseOffering]] = defaultdict(list)
    for off in offerings:
        # Only the past informs the prediction.
        if (off.year, SEASON_ORDER.get(off.season, 0)) < (target_year, SEASON_ORDER[target_season]):
            by_course[off.course_id].append(off)

    predictions: List[PredictedOffering] = []
    for course in courses:
        history = sorted(by_course.get(course.id, []), key=lambda o: (o.year, SEASON_ORDER.get(o.season, 0)))
        if not history:
            continue
        verdict = _classify(history, target_year, target_season)
        if verdict is None:
            continue
        confidence, reason = verdict
        predictions.append(
            PredictedOffering(
                course_id=course.id,
                course_number=course.course_number,
                course_name=course.course_name,
                predicted_semester=f"{target_season} {target_year}",
                predicted_year=target_year,
                predicted_season=target_season,
                confidence=confidence,
                reason=reason,
            )
        )
    rank = {HIGH: 0, MEDIUM: 1, LOW: 2}
    predictions.sort(key=lambda p: (rank[p.confidence], p.course_number))
    return predictions


__all__ = ["PredictedOffering", "predict_course_offerings", "semesters_since", "HIGH", "MEDIUM", "LOW"]
