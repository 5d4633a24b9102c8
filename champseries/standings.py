"""Standings computation for one series/year.

The engine is a pure batch transform: it takes the registration, race and
result feeds of a season and returns a complete replacement snapshot. Bad
records are skipped and reported on the returned run; only a season without
races is fatal.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .eligibility import age_group_eligible, age_group_for_age, is_member_on_race_day
from .models import (
    Category,
    Race,
    RacePoints,
    RaceResult,
    Registration,
    SeriesStanding,
    SkippedRecord,
    StandingsRun,
)
from .ranking import assign_ranks
from .scoring import build_contender, qualifying_races_needed, score_result

logger = logging.getLogger(__name__)

UNKNOWN_RACE = "unknown_race"
UNKNOWN_REGISTRATION = "unknown_registration"
DUPLICATE_RESULT = "duplicate_result"
MALFORMED_RESULT = "malformed_result"
MALFORMED_ROW = "malformed_row"


def parse_duration(value: Any) -> Optional[timedelta]:
    """Return a duration for ``HH:MM:SS``/``MM:SS`` text, seconds or a timedelta.

    Raises:
        ValueError: when ``value`` cannot be read as a duration.
    """
    if value is None or isinstance(value, timedelta):
        return value
    try:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return timedelta(seconds=value)
        text = str(value).strip()
        if not text:
            return None
        parts = text.split(":")
        if len(parts) not in (2, 3):
            raise ValueError(f"Invalid time '{value}'. Expected HH:MM:SS.")
        h = int(parts[0]) if len(parts) == 3 else 0
        m, s = int(parts[-2]), float(parts[-1])
        if m < 0 or s < 0 or h < 0:
            raise ValueError(f"Invalid time '{value}'. Negative component.")
        return timedelta(hours=h, minutes=m, seconds=s)
    except OverflowError as exc:
        raise ValueError(f"Invalid time '{value}'. Out of range.") from exc


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _opt_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _opt_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _required(row: Mapping[str, Any], key: str) -> str:
    value = row.get(key)
    if value is None or value == "":
        raise KeyError(key)
    return str(value)


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y", "t")
    return bool(value)


def registration_from_row(row: Mapping[str, Any], season_year: int) -> Registration:
    """Build a registration from a feed row, deriving age and bracket when absent."""
    age = _opt_int(row.get("age"))
    birth_year = _opt_int(row.get("birth_year"))
    if age is None and birth_year is not None:
        age = int(season_year) - birth_year
    age_group = row.get("age_group") or (age_group_for_age(age) if age is not None else "")
    name = row.get("name")
    if not name and (row.get("first_name") or row.get("last_name")):
        name = " ".join(p for p in (row.get("first_name"), row.get("last_name")) if p)
    club_member = row.get("club_member")
    return Registration(
        registration_id=_required(row, "registration_id"),
        runner_id=str(row.get("runner_id") or row["registration_id"]),
        gender=str(row.get("gender") or "").upper(),
        age_group=str(age_group),
        club_member=True if club_member is None else _flag(club_member),
        age=age,
        birth_year=birth_year,
        bib=(str(row["bib"]) if row.get("bib") is not None else None),
        name=name,
    )


def _race_field(row: Mapping[str, Any], label: str, value: Any, convert) -> Any:
    try:
        return convert(value)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Race %s has unreadable %s %r; treating as unknown", row.get("race_id"), label, value)
        return None


def race_from_row(row: Mapping[str, Any]) -> Race:
    """Build a race from a feed row.

    Only a missing id rejects the row. An unreadable date, order or distance
    is logged and left unknown so the race still counts toward Q.
    """
    return Race(
        race_id=_required(row, "race_id"),
        date=_race_field(row, "date", row.get("date"), _opt_date),
        distance_miles=_race_field(row, "distance", row.get("distance_miles"), _opt_float),
        order=_race_field(row, "order", row.get("order", row.get("race_no")), _opt_int),
        name=row.get("name"),
    )


def result_from_row(row: Mapping[str, Any]) -> RaceResult:
    """Build a result from a feed row.

    Unreadable places or times do not raise; they are recorded as the
    result's ``defect`` so the engine can skip it while counting it as a
    race participated.
    """
    defect = None
    values: Dict[str, Any] = {}
    for key in ("place", "place_gender", "place_age_group"):
        try:
            values[key] = _opt_int(row.get(key))
        except (TypeError, ValueError, OverflowError):
            values[key] = None
            defect = defect or f"unreadable {key} {row.get(key)!r}"
    for key in ("gun_time", "chip_time"):
        try:
            values[key] = parse_duration(row.get(key))
        except (TypeError, ValueError):
            values[key] = None
            defect = defect or f"unreadable {key} {row.get(key)!r}"
    member = row.get("member_on_race_day")
    return RaceResult(
        race_id=str(row.get("race_id")),
        registration_id=str(row.get("registration_id")),
        is_dnf=_flag(row.get("is_dnf")),
        is_dq=_flag(row.get("is_dq")),
        member_on_race_day=None if member is None else _flag(member),
        defect=defect,
        **values,
    )


def result_defect(result: RaceResult) -> Optional[str]:
    """Return why a result cannot be scored, or None when it is well formed."""
    if result.defect:
        return result.defect
    if not result.finished:
        return None
    for key in ("place", "place_gender", "place_age_group"):
        value = getattr(result, key)
        if value is not None and value < 1:
            return f"{key} out of range: {value}"
    if result.place_gender is None:
        return "finished result has no place"
    for key in ("gun_time", "chip_time"):
        value = getattr(result, key)
        if value is not None and value < timedelta():
            return f"negative {key}"
    return None


def _derive_places(
    results: List[RaceResult], registrations: Mapping[str, Registration]
) -> List[RaceResult]:
    """Fill missing gender/age-group places from overall place within each race."""
    by_race: Dict[str, List[RaceResult]] = {}
    for res in results:
        by_race.setdefault(res.race_id, []).append(res)

    derived: Dict[Tuple[str, str], RaceResult] = {}
    for race_id, race_results in by_race.items():
        if all(r.place_gender is not None and r.place_age_group is not None for r in race_results):
            continue
        finishers = sorted(
            (r for r in race_results if r.finished and r.place is not None and not r.defect),
            key=lambda r: r.place,
        )
        gender_seen: Dict[str, int] = {}
        age_group_seen: Dict[Tuple[str, str], int] = {}
        for res in finishers:
            reg = registrations[res.registration_id]
            gender_seen[reg.gender] = gender_seen.get(reg.gender, 0) + 1
            cell = (reg.gender, reg.age_group)
            age_group_seen[cell] = age_group_seen.get(cell, 0) + 1
            updates = {}
            if res.place_gender is None:
                updates["place_gender"] = gender_seen[reg.gender]
            if res.place_age_group is None:
                updates["place_age_group"] = age_group_seen[cell]
            if updates:
                derived[(race_id, res.registration_id)] = replace(res, **updates)
    return [derived.get((r.race_id, r.registration_id), r) for r in results]


def compute_standings(
    series_id: str,
    year: int,
    registrations: Iterable[Registration],
    races: Iterable[Race],
    results: Iterable[RaceResult],
    calculated_at: Optional[datetime] = None,
) -> StandingsRun:
    """Compute the full standings snapshot of one series/year.

    Args:
        series_id: Series identifier, used for reporting only.
        year: Season year.
        registrations: Registration feed for the season.
        races: Every race held in the series/year; its length sets Q.
        results: Result feed; at most one result per (race, registration).
        calculated_at: Timestamp stamped on every standing. Defaults to now.

    Returns:
        A :class:`StandingsRun` with standings for both categories and the
        records that were skipped.

    Raises:
        NoRacesError: when the series/year has no races.
    """
    calculated_at = calculated_at or datetime.now(timezone.utc)
    race_map = {race.race_id: race for race in races}
    qualifying = qualifying_races_needed(len(race_map))
    reg_map = {reg.registration_id: reg for reg in registrations}

    skipped: List[SkippedRecord] = []

    def _skip(kind: str, res: RaceResult, reason: str) -> None:
        logger.warning(
            "Skipping result race=%s registration=%s: %s", res.race_id, res.registration_id, reason
        )
        skipped.append(SkippedRecord(kind, res.race_id, res.registration_id, reason))

    linked: List[RaceResult] = []
    seen = set()
    for res in results:
        if res.race_id not in race_map:
            _skip(UNKNOWN_RACE, res, "result references an unknown race")
            continue
        if res.registration_id not in reg_map:
            _skip(UNKNOWN_REGISTRATION, res, "result references an unknown registration")
            continue
        key = (res.race_id, res.registration_id)
        if key in seen:
            _skip(DUPLICATE_RESULT, res, "second result for the same race and registration")
            continue
        seen.add(key)
        linked.append(res)

    linked = _derive_places(linked, reg_map)

    entries: Dict[str, List[RacePoints]] = {}
    participated: Dict[str, int] = {}
    for res in linked:
        reg = reg_map[res.registration_id]
        race = race_map[res.race_id]
        if not is_member_on_race_day(reg, res):
            continue
        participated[reg.registration_id] = participated.get(reg.registration_id, 0) + 1
        entries.setdefault(reg.registration_id, [])
        defect = result_defect(res)
        if defect:
            _skip(MALFORMED_RESULT, res, defect)
            continue
        entries[reg.registration_id].append(
            score_result(res, race, age_group_eligible=age_group_eligible(reg, race))
        )

    standings: List[SeriesStanding] = []
    for category in Category:
        contenders = [
            build_contender(reg_map[rid], rid_entries, category, qualifying, participated[rid])
            for rid, rid_entries in entries.items()
        ]
        standings.extend(assign_ranks(contenders, calculated_at))

    logger.info(
        "standings_run series=%s year=%s races=%d q=%d standings=%d skipped=%d",
        series_id, year, len(race_map), qualifying, len(standings), len(skipped),
    )
    return StandingsRun(
        series_id=str(series_id),
        year=int(year),
        qualifying_races_needed=qualifying,
        standings=tuple(standings),
        skipped=tuple(skipped),
    )


def compute_from_feeds(
    series_id: str,
    year: int,
    feeds: Mapping[str, List[Mapping[str, Any]]],
    calculated_at: Optional[datetime] = None,
) -> StandingsRun:
    """Normalize datastore row feeds and run :func:`compute_standings`.

    Registration and race rows without an id cannot be referenced and are
    reported as ``malformed_row``.
    """
    skipped: List[SkippedRecord] = []
    registrations: List[Registration] = []
    for row in feeds.get("registrations", []) or []:
        try:
            registrations.append(registration_from_row(row, year))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping registration row %r: %s", row, exc)
            skipped.append(SkippedRecord(MALFORMED_ROW, None, row.get("registration_id"), str(exc)))
    races: List[Race] = []
    for row in feeds.get("races", []) or []:
        try:
            races.append(race_from_row(row))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping race row %r: %s", row, exc)
            skipped.append(SkippedRecord(MALFORMED_ROW, row.get("race_id"), None, str(exc)))
    results = [result_from_row(row) for row in feeds.get("results", []) or []]

    run = compute_standings(series_id, year, registrations, races, results, calculated_at)
    if skipped:
        run = replace(run, skipped=tuple(skipped) + run.skipped)
    return run


__all__ = [
    "DUPLICATE_RESULT",
    "MALFORMED_RESULT",
    "MALFORMED_ROW",
    "UNKNOWN_RACE",
    "UNKNOWN_REGISTRATION",
    "compute_from_feeds",
    "compute_standings",
    "parse_duration",
    "race_from_row",
    "registration_from_row",
    "result_defect",
    "result_from_row",
]
