"""
Academic calendar helpers.

Calendar:
    Fall   Sep 1 - Jan 31 (January belongs to the previous year's fall)
    Spring Feb 1 - May 31
    Summer Jun 1 - Aug 31

Ordering within a year is spring < summer < fall.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import List, Optional

SEASON_ORDER = {"spring": 1, "summer": 2, "fall": 3}


@dataclass(frozen=True)
class Semester:
    year: int
    season: str
    start_date: date
    end_date: date

    @property
    def display(self) -> str:
        return format_semester(self.year, self.season)

    @property
    def key(self) -> tuple:
        return (self.year, SEASON_ORDER[self.season])


def season_order(season: str) -> int:
    return SEASON_ORDER.get(season, 0)


def format_semester(year: int, season: str) -> str:
    return f"{season[:1].upper()}{season[1:]} {year}"


def semester(year: int, season: str) -> Semester:
    if season not in SEASON_ORDER:
        raise ValueError(f"Invalid season: {season}. Must be fall, spring, or summer")
    if season == "fall":
        return Semester(year, season, date(year, 9, 1), date(year + 1, 1, 31))
    if season == "spring":
        return Semester(year, season, date(year, 2, 1), date(year, 5, 31))
    return Semester(year, season, date(year, 6, 1), date(year, 8, 31))


def parse_semester(text: str) -> Semester:
    """Parse "Fall 2024" (case-insensitive) into a Semester."""
    parts = (text or "").lower().strip().split()
    if len(parts) != 2:
        raise ValueError('Invalid semester format. Expected "Season Year" (e.g., "Fall 2024")')
    season_str, year_str = parts
    if season_str not in SEASON_ORDER:
        raise ValueError(f"Invalid season: {season_str}. Must be fall, spring, or summer")
    try:
        year = int(year_str)
    except ValueError:
        raise ValueError(f"Invalid year: {year_str}")
    if year < 1900 or year > 2100:
        raise ValueError(f"Invalid year: {year_str}")
    return semester(year, season_str)


def current_semester(today: Optional[date] = None) -> Semester:
    today = today or date.today()
    month = today.month
    if month >= 9 or month == 1:
        return semester(today.year if month >= 9 else today.year - 1, "fall")
    if 2 <= month <= 5:
        return semester(today.year, "spring")
    return semester(today.year, "summer")


def _next_key(year: int, season: str) -> tuple:
    if season == "fall":
        return year + 1, "spring"
    if season == "spring":
        return year, "summer"
    return year, "fall"


def next_semester(current: Optional[Semester] = None) -> Semester:
    cur = current or current_semester()
    return semester(*_next_key(cur.year, cur.season))


def compare_semesters(a: Semester, b: Semester) -> int:
    if a.year != b.year:
        return a.year - b.year
    return season_order(a.season) - season_order(b.season)


def semester_range(
    start_year: int,
    start_season: str,
    end_year: int,
    end_season: str,
    include_summer: bool = False,
) -> List[Semester]:
    result: List[Semester] = []
    year, season = start_year, start_season
    end_key = (end_year, season_order(end_season))
    while (year, season_order(season)) <= end_key:
        if include_summer or season != "summer":
            result.append(semester(year, season))
        year, season = _next_key(year, season)
    return result


def is_past(sem: Semester, today: Optional[date] = None) -> bool:
    return compare_semesters(sem, current_semester(today)) < 0


def is_current(sem: Semester, today: Optional[date] = None) -> bool:
    return compare_semesters(sem, current_semester(today)) == 0


def is_future(sem: Semester, today: Optional[date] = None) -> bool:
    return compare_semesters(sem, current_semester(today)) > 0
