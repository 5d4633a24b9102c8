"""Rank assignment within gender and age-group partitions."""

from __future__ import annotations

import logging
from datetime import datetime
from functools import cmp_to_key
from typing import Dict, Iterable, List

from .models import Contender, SeriesStanding
from .tiebreak import compare_contenders, deciding_rule

logger = logging.getLogger(__name__)


def order_partition(contenders: Iterable[Contender]) -> List[Contender]:
    """Return one gender partition ordered best first.

    Input is pre-sorted by registration id so the stable sort never depends
    on feed order.
    """
    ordered = sorted(contenders, key=lambda c: c.registration_id)
    ordered.sort(key=cmp_to_key(compare_contenders))
    if logger.isEnabledFor(logging.DEBUG):
        _log_ties(ordered)
    return ordered


def _log_ties(ordered: List[Contender]) -> None:
    for above, below in zip(ordered, ordered[1:]):
        if above.total_points != below.total_points:
            continue
        logger.debug(
            "tiebreak category=%s points=%d %s over %s by %s",
            above.category.value, above.total_points, above.registration_id,
            below.registration_id, deciding_rule(above, below) or "registration_id",
        )


def _to_standing(
    contender: Contender, gender_rank: int, age_group_rank: int, calculated_at: datetime
) -> SeriesStanding:
    reg = contender.registration
    counted = contender.counted
    return SeriesStanding(
        registration_id=reg.registration_id,
        runner_id=reg.runner_id,
        category=contender.category,
        gender=reg.gender,
        age_group=reg.age_group,
        qualifying_races_needed=contender.qualifying_races_needed,
        races_participated=contender.races_participated,
        counted_race_ids=tuple(rp.race_id for rp in counted),
        counted_race_points=tuple(rp.points(contender.category) for rp in counted),
        total_points=contender.total_points,
        total_distance_miles=contender.total_distance_miles,
        total_time=contender.total_time,
        overall_rank=gender_rank,
        gender_rank=gender_rank,
        age_group_rank=age_group_rank,
        last_calculated_at=calculated_at,
    )


def assign_ranks(contenders: Iterable[Contender], calculated_at: datetime) -> List[SeriesStanding]:
    """Rank one category's contenders.

    Gender ranks come from sorting each gender partition with the tiebreak
    comparator. Age-group ranks renumber the already ordered gender list
    within each age group, so they agree with the gender ordering.

    Returns:
        New standings ordered by gender, then gender rank.
    """
    by_gender: Dict[str, List[Contender]] = {}
    for contender in contenders:
        by_gender.setdefault(contender.registration.gender, []).append(contender)

    standings: List[SeriesStanding] = []
    for gender in sorted(by_gender):
        ordered = order_partition(by_gender[gender])
        age_group_counts: Dict[str, int] = {}
        for gender_rank, contender in enumerate(ordered, start=1):
            age_group = contender.registration.age_group
            age_group_counts[age_group] = age_group_counts.get(age_group, 0) + 1
            standings.append(
                _to_standing(contender, gender_rank, age_group_counts[age_group], calculated_at)
            )
    return standings


__all__ = ["assign_ranks", "order_partition"]
