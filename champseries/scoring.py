"""Scoring utilities implementing championship series race points."""

from __future__ import annotations

import math
from typing import Iterable, Optional, Tuple

from .config import SETTINGS, build_lookup
from .models import (
    Category,
    Contender,
    NoRacesError,
    Race,
    RacePoints,
    RaceResult,
    Registration,
)

_PLACE_POINTS, _POINTS_DEFAULT = build_lookup(SETTINGS["points_by_place"], "place", "points")


def _base_points(place: int) -> int:
    """Return the points for the given gender-relative place."""
    return int(_PLACE_POINTS.get(place, _POINTS_DEFAULT))


def points_for_place(place: Optional[int]) -> int:
    """Return points for ``place``; missing or non-positive places score 0."""
    if place is None or place < 1:
        return 0
    return _base_points(place)


def qualifying_races_needed(races_held: int) -> int:
    """Return Q, half the races held in the series rounded up.

    Raises:
        NoRacesError: when no races were held, since every total would be 0.
    """
    if races_held <= 0:
        raise NoRacesError("series has no races; qualifying race count would be 0")
    return int(math.ceil(races_held / 2))


def race_points(result: RaceResult, category: Category) -> int:
    """Return the points ``result`` earns in ``category``.

    The overall category uses the gender place among all finishers and the
    age-group category the gender place within the runner's age group. DNF
    and DQ results score 0 whatever place fields they carry.
    """
    if not result.finished:
        return 0
    if category is Category.OVERALL:
        return points_for_place(result.place_gender)
    return points_for_place(result.place_age_group)


def score_result(result: RaceResult, race: Race, age_group_eligible: bool = True) -> RacePoints:
    """Return the per-category points of one eligible result."""
    return RacePoints(
        race_id=race.race_id,
        race_key=race.sort_key(),
        distance_miles=race.distance_miles,
        elapsed=result.elapsed,
        place=result.place if result.place is not None else result.place_gender,
        finished=result.finished,
        overall_points=race_points(result, Category.OVERALL),
        age_group_points=race_points(result, Category.AGE_GROUP) if age_group_eligible else 0,
        age_group_eligible=age_group_eligible,
    )


def rank_entries(entries: Iterable[RacePoints], category: Category) -> Tuple[RacePoints, ...]:
    """Order entries best first: points descending, then chronologically."""
    return tuple(sorted(entries, key=lambda rp: (-rp.points(category), rp.race_key)))


def build_contender(
    registration: Registration,
    entries: Iterable[RacePoints],
    category: Category,
    qualifying_races: int,
    races_participated: int,
) -> Contender:
    """Return the scoring profile of ``registration`` for ``category``.

    Entries not age-group eligible are left out of the age-group category.
    """
    if category is Category.AGE_GROUP:
        entries = [rp for rp in entries if rp.age_group_eligible]
    return Contender(
        registration=registration,
        category=category,
        qualifying_races_needed=qualifying_races,
        ranked=rank_entries(entries, category),
        races_participated=races_participated,
    )


__all__ = [
    "build_contender",
    "points_for_place",
    "qualifying_races_needed",
    "race_points",
    "rank_entries",
    "score_result",
]
