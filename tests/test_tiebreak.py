from datetime import date, timedelta

from champseries.models import Category, RacePoints, Registration
from champseries.scoring import build_contender
from champseries.tiebreak import (
    break_tie,
    compare_contenders,
    compare_head_to_head,
    compare_most_recent,
    compare_next_best,
    compare_total_distance,
    compare_total_time,
    deciding_rule,
)


def _rp(race_id, day, points, place=None, distance=3.1, elapsed=timedelta(minutes=20), finished=True):
    return RacePoints(
        race_id=race_id,
        race_key=(date(2025, 1, day), day, race_id),
        distance_miles=distance,
        elapsed=elapsed,
        place=place,
        finished=finished,
        overall_points=points,
        age_group_points=points,
    )


def _contender(reg_id, entries, q=2, category=Category.OVERALL):
    reg = Registration(reg_id, reg_id, "F", "30-34")
    return build_contender(reg, entries, category, q, len(entries))


def test_head_to_head_counts_wins_in_common_races():
    a = _contender("A", [_rp("R1", 1, 10, place=5), _rp("R2", 2, 9, place=30), _rp("R3", 3, 0, place=10)])
    b = _contender("B", [_rp("R1", 1, 9, place=8), _rp("R2", 2, 10, place=20), _rp("R3", 3, 0, place=12)])
    assert compare_head_to_head(a, b) < 0
    assert compare_head_to_head(b, a) > 0


def test_head_to_head_ignores_unfinished_and_unshared_races():
    a = _contender("A", [_rp("R1", 1, 0, place=1, finished=False), _rp("R2", 2, 10, place=1)])
    b = _contender("B", [_rp("R1", 1, 10, place=2), _rp("R3", 3, 10, place=1)])
    assert compare_head_to_head(a, b) == 0


def test_head_to_head_decides_before_later_rules():
    # A beat B in their one common race; B is ahead on T2 and T5.
    a = _contender("A", [_rp("R1", 1, 10, place=3), _rp("R2", 2, 9, place=5)])
    b = _contender(
        "B",
        [_rp("R1", 1, 9, place=4), _rp("R3", 3, 8, place=2), _rp("R4", 4, 10, place=1)],
    )
    assert a.total_points == b.total_points == 19
    assert compare_next_best(a, b) > 0
    assert compare_most_recent(a, b) > 0
    assert deciding_rule(a, b) == "T1"
    assert compare_contenders(a, b) < 0


def test_next_best_walks_past_the_counted_races():
    a = _contender("A", [_rp("R1", 1, 10), _rp("R2", 2, 9), _rp("R3", 3, 5)])
    b = _contender("B", [_rp("R4", 4, 10), _rp("R5", 5, 9), _rp("R6", 6, 3)])
    assert compare_next_best(a, b) < 0
    assert deciding_rule(a, b) == "T2"


def test_next_best_treats_a_missing_race_as_zero():
    fewer = _contender("A", [_rp("R1", 1, 10), _rp("R2", 2, 9)])
    one_point = _contender("B", [_rp("R4", 4, 10), _rp("R5", 5, 9), _rp("R6", 6, 1)])
    zero_point = _contender("C", [_rp("R7", 7, 10), _rp("R8", 8, 9), _rp("R9", 9, 0)])
    assert compare_next_best(fewer, one_point) > 0
    assert compare_next_best(fewer, zero_point) == 0


def test_total_distance_of_counted_races_more_wins():
    a = _contender("A", [_rp("R1", 1, 10, distance=3.1), _rp("R2", 2, 9, distance=6.2)])
    b = _contender("B", [_rp("R3", 3, 10, distance=3.1), _rp("R4", 4, 9, distance=3.1)])
    assert compare_total_distance(a, b) < 0
    assert deciding_rule(a, b) == "T3"


def test_total_distance_counts_missing_distance_as_zero():
    a = _contender("A", [_rp("R1", 1, 10, distance=None), _rp("R2", 2, 9, distance=3.1)])
    b = _contender("B", [_rp("R3", 3, 10, distance=3.1), _rp("R4", 4, 9, distance=3.1)])
    assert compare_total_distance(a, b) > 0


def test_total_time_of_counted_races_less_wins():
    a = _contender("A", [_rp("R1", 1, 10, elapsed=timedelta(minutes=20)), _rp("R2", 2, 9, elapsed=timedelta(minutes=21))])
    b = _contender("B", [_rp("R3", 3, 10, elapsed=timedelta(minutes=20)), _rp("R4", 4, 9, elapsed=timedelta(minutes=22))])
    assert compare_total_time(a, b) < 0
    assert deciding_rule(a, b) == "T4"


def test_total_time_needs_every_counted_time():
    a = _contender("A", [_rp("R1", 1, 10, elapsed=None), _rp("R2", 2, 9)])
    b = _contender("B", [_rp("R3", 3, 10), _rp("R4", 4, 9)])
    assert compare_total_time(a, b) == 0


def test_most_recent_race_points_higher_wins():
    a = _contender("A", [_rp("R1", 1, 10), _rp("R5", 5, 8)])
    b = _contender("B", [_rp("R2", 2, 8), _rp("R4", 4, 10)])
    assert compare_most_recent(a, b) > 0
    assert deciding_rule(a, b) == "T5"
    assert break_tie(a, b) > 0


def test_most_recent_without_results_stays_tied():
    a = _contender("A", [])
    b = _contender("B", [_rp("R1", 1, 10)])
    assert compare_most_recent(a, b) == 0


def test_full_tie_falls_back_to_registration_id():
    entries = [_rp("R1", 1, 10), _rp("R2", 2, 9)]
    a = _contender("A", entries)
    b = _contender("B", entries)
    assert break_tie(a, b) == 0
    assert deciding_rule(a, b) is None
    assert compare_contenders(a, b) < 0
    assert compare_contenders(b, a) > 0


def test_points_decide_before_any_tiebreak():
    a = _contender("A", [_rp("R1", 1, 10, place=9), _rp("R2", 2, 10)])
    b = _contender("B", [_rp("R1", 1, 10, place=1), _rp("R3", 3, 9)])
    assert compare_head_to_head(a, b) > 0
    assert compare_contenders(a, b) < 0
