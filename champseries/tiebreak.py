"""Tiebreak cascade for runners with equal series totals.

Every comparison returns a negative number when ``a`` ranks above ``b``, a
positive number when ``b`` ranks above ``a`` and 0 when the rule leaves the
pair tied. Both contenders must belong to the same category and gender.

T1  head-to-head wins in races both runners finished
T2  next best races beyond the counted Q, one index at a time
T3  total distance of the counted races, more wins
T4  total time of the counted races, less wins
T5  points in the most recent eligible race
"""

from __future__ import annotations

from datetime import timedelta
from typing import Callable, Dict, Tuple

from .models import Contender

Comparison = Callable[[Contender, Contender], int]


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def _finish_places(contender: Contender) -> Dict[str, int]:
    return {
        rp.race_id: rp.place
        for rp in contender.ranked
        if rp.finished and rp.place is not None
    }


def compare_head_to_head(a: Contender, b: Contender) -> int:
    places_a = _finish_places(a)
    places_b = _finish_places(b)
    a_wins = b_wins = 0
    for race_id in places_a.keys() & places_b.keys():
        if places_a[race_id] < places_b[race_id]:
            a_wins += 1
        elif places_b[race_id] < places_a[race_id]:
            b_wins += 1
    return _sign(b_wins - a_wins)


def compare_next_best(a: Contender, b: Contender) -> int:
    category = a.category
    start = a.qualifying_races_needed
    stop = max(len(a.ranked), len(b.ranked))
    for idx in range(start, stop):
        pts_a = a.ranked[idx].points(category) if idx < len(a.ranked) else 0
        pts_b = b.ranked[idx].points(category) if idx < len(b.ranked) else 0
        if pts_a != pts_b:
            return _sign(pts_b - pts_a)
    return 0


def compare_total_distance(a: Contender, b: Contender) -> int:
    return _sign(round(b.total_distance_miles - a.total_distance_miles, 6))


def compare_total_time(a: Contender, b: Contender) -> int:
    time_a = a.total_time
    time_b = b.total_time
    if time_a is None or time_b is None:
        return 0
    return _sign((time_a - time_b) / timedelta(seconds=1))


def compare_most_recent(a: Contender, b: Contender) -> int:
    if not a.ranked or not b.ranked:
        return 0
    latest_a = max(a.ranked, key=lambda rp: rp.race_key)
    latest_b = max(b.ranked, key=lambda rp: rp.race_key)
    return _sign(latest_b.points(b.category) - latest_a.points(a.category))


TIEBREAKERS: Tuple[Tuple[str, Comparison], ...] = (
    ("T1", compare_head_to_head),
    ("T2", compare_next_best),
    ("T3", compare_total_distance),
    ("T4", compare_total_time),
    ("T5", compare_most_recent),
)


def break_tie(a: Contender, b: Contender) -> int:
    """Apply T1-T5 in order; the first rule that separates the pair decides."""
    for _name, rule in TIEBREAKERS:
        outcome = rule(a, b)
        if outcome:
            return outcome
    return 0


def deciding_rule(a: Contender, b: Contender) -> str | None:
    """Return the name of the rule that separates a tied pair, if any."""
    for name, rule in TIEBREAKERS:
        if rule(a, b):
            return name
    return None


def compare_contenders(a: Contender, b: Contender) -> int:
    """Total order for one category/gender partition.

    Higher total points first, then the tiebreak cascade, then ascending
    registration id so fully tied runners still order deterministically.
    """
    if a.total_points != b.total_points:
        return _sign(b.total_points - a.total_points)
    outcome = break_tie(a, b)
    if outcome:
        return outcome
    if a.registration_id == b.registration_id:
        return 0
    return -1 if a.registration_id < b.registration_id else 1


__all__ = [
    "TIEBREAKERS",
    "break_tie",
    "compare_contenders",
    "compare_head_to_head",
    "compare_most_recent",
    "compare_next_best",
    "compare_total_distance",
    "compare_total_time",
    "deciding_rule",
]
