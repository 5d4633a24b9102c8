"""Rules deciding which results may count toward series scoring."""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from .config import SETTINGS
from .models import Race, RaceResult, Registration

TEN_KM_IN_MILES = 6.21

# Lower bounds of the five-year brackets; 80 and over share one bracket.
_BRACKET_STARTS = (20, 25, 30, 35, 40, 45, 50, 55, 60, 65, 70, 75)

_LOWER_BOUND_RE = re.compile(r"(\d+)")


def _build_caps(entries: List[dict]) -> List[Tuple[int, float]]:
    caps = [(int(e["max_age"]), float(e["max_distance_miles"])) for e in entries]
    caps.sort()
    return caps


_DISTANCE_CAPS = _build_caps(SETTINGS["age_group_distance_caps"])


def age_group_for_age(age: int) -> str:
    """Return the bracket for a runner's age on the first race day."""
    if age < 15:
        return "0-14"
    if age < 20:
        return "15-19"
    if age >= 80:
        return "80-99"
    start = max(s for s in _BRACKET_STARTS if s <= age)
    return f"{start}-{start + 4}"


def age_group_lower_bound(age_group: str) -> Optional[int]:
    """Return the youngest age of a bracket label such as ``"15-19"``."""
    match = _LOWER_BOUND_RE.search(age_group or "")
    if not match:
        return None
    return int(match.group(1))


def distance_cap(age_group: str) -> Optional[float]:
    """Return the longest race distance (miles) a bracket may score, or None."""
    lower = age_group_lower_bound(age_group)
    if lower is None:
        return None
    for max_age, cap in _DISTANCE_CAPS:
        if lower <= max_age:
            return cap
    return None


def qualifies_for_age_group(age_group: str, distance_miles: Optional[float]) -> bool:
    """Return whether a race of ``distance_miles`` counts for ``age_group`` scoring.

    A race with unknown distance is treated as zero miles.
    """
    cap = distance_cap(age_group)
    if cap is None:
        return True
    return (distance_miles or 0.0) <= cap


def is_member_on_race_day(registration: Registration, result: RaceResult) -> bool:
    if result.member_on_race_day is not None:
        return bool(result.member_on_race_day)
    return bool(registration.club_member)


def age_group_eligible(registration: Registration, race: Race) -> bool:
    return qualifies_for_age_group(registration.age_group, race.distance_miles)


__all__ = [
    "TEN_KM_IN_MILES",
    "age_group_eligible",
    "age_group_for_age",
    "age_group_lower_bound",
    "distance_cap",
    "is_member_on_race_day",
    "qualifies_for_age_group",
]
