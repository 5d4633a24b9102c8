"""Records consumed and produced by the standings engine."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Category(str, Enum):
    """Independent scoring tracks of a championship series."""

    OVERALL = "overall"
    AGE_GROUP = "age_group"


class StandingsError(Exception):
    """Raised when the inputs for a series/year cannot be scored at all."""


class NoRacesError(StandingsError):
    """Raised when a series/year has no races, which would make Q zero."""


@dataclass(frozen=True)
class Registration:
    """A runner's enrollment in one series/year."""

    registration_id: str
    runner_id: str
    gender: str
    age_group: str
    club_member: bool = True
    age: Optional[int] = None
    birth_year: Optional[int] = None
    bib: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class Race:
    """One scheduled or held event in a series/year."""

    race_id: str
    date: Optional[date]
    distance_miles: Optional[float]
    order: Optional[int] = None
    name: Optional[str] = None

    def sort_key(self) -> Tuple:
        return (self.date or date.min, self.order if self.order is not None else 0, self.race_id)


@dataclass(frozen=True)
class RaceResult:
    """One registration's finish in one race.

    ``defect`` is set by feed normalization when a value could not be read
    (for example an unparseable time); such a result is skipped for scoring.
    """

    race_id: str
    registration_id: str
    place: Optional[int] = None
    place_gender: Optional[int] = None
    place_age_group: Optional[int] = None
    gun_time: Optional[timedelta] = None
    chip_time: Optional[timedelta] = None
    is_dnf: bool = False
    is_dq: bool = False
    member_on_race_day: Optional[bool] = None
    defect: Optional[str] = None

    @property
    def finished(self) -> bool:
        return not (self.is_dnf or self.is_dq)

    @property
    def elapsed(self) -> Optional[timedelta]:
        return self.gun_time if self.gun_time is not None else self.chip_time


@dataclass(frozen=True)
class RacePoints:
    """Points one result earned, with the race facts the tiebreakers need."""

    race_id: str
    race_key: Tuple
    distance_miles: Optional[float]
    elapsed: Optional[timedelta]
    place: Optional[int]
    finished: bool
    overall_points: int
    age_group_points: int
    age_group_eligible: bool = True

    def points(self, category: Category) -> int:
        if category is Category.OVERALL:
            return self.overall_points
        return self.age_group_points


@dataclass(frozen=True)
class Contender:
    """A registration's scoring profile for one category.

    ``ranked`` holds every eligible entry ordered best first; its first
    ``qualifying_races_needed`` entries are the counted races.
    """

    registration: Registration
    category: Category
    qualifying_races_needed: int
    ranked: Tuple[RacePoints, ...]
    races_participated: int

    @property
    def registration_id(self) -> str:
        return self.registration.registration_id

    @property
    def counted(self) -> Tuple[RacePoints, ...]:
        return self.ranked[: self.qualifying_races_needed]

    @property
    def total_points(self) -> int:
        return sum(rp.points(self.category) for rp in self.counted)

    @property
    def total_distance_miles(self) -> float:
        return sum(rp.distance_miles or 0.0 for rp in self.counted)

    @property
    def total_time(self) -> Optional[timedelta]:
        if any(rp.elapsed is None for rp in self.counted):
            return None
        return sum((rp.elapsed for rp in self.counted), timedelta())


@dataclass(frozen=True)
class SeriesStanding:
    """A registration's computed position for one category in one season."""

    registration_id: str
    runner_id: str
    category: Category
    gender: str
    age_group: str
    qualifying_races_needed: int
    races_participated: int
    counted_race_ids: Tuple[str, ...]
    counted_race_points: Tuple[int, ...]
    total_points: int
    total_distance_miles: float
    total_time: Optional[timedelta]
    overall_rank: int
    gender_rank: int
    age_group_rank: int
    last_calculated_at: datetime

    def to_row(self) -> Dict:
        """Return the flat mapping the datastore writes."""
        return {
            "registration_id": self.registration_id,
            "runner_id": self.runner_id,
            "category": self.category.value,
            "gender": self.gender,
            "age_group": self.age_group,
            "qualifying_races_needed": self.qualifying_races_needed,
            "races_participated": self.races_participated,
            "counted_race_ids": list(self.counted_race_ids),
            "counted_race_points": list(self.counted_race_points),
            "total_points": self.total_points,
            "total_distance_miles": self.total_distance_miles,
            "total_time": self.total_time,
            "overall_rank": self.overall_rank,
            "gender_rank": self.gender_rank,
            "age_group_rank": self.age_group_rank,
            "last_calculated_at": self.last_calculated_at,
        }


@dataclass(frozen=True)
class SkippedRecord:
    kind: str
    race_id: Optional[str]
    registration_id: Optional[str]
    reason: str


@dataclass(frozen=True)
class StandingsRun:
    """Full replacement snapshot produced by one engine invocation."""

    series_id: str
    year: int
    qualifying_races_needed: int
    standings: Tuple[SeriesStanding, ...]
    skipped: Tuple[SkippedRecord, ...] = field(default_factory=tuple)

    def for_category(self, category: Category) -> List[SeriesStanding]:
        return [s for s in self.standings if s.category is category]

    def skipped_counts(self) -> Dict[str, int]:
        return dict(Counter(rec.kind for rec in self.skipped))


__all__ = [
    "Category",
    "Contender",
    "NoRacesError",
    "Race",
    "RacePoints",
    "RaceResult",
    "Registration",
    "SeriesStanding",
    "SkippedRecord",
    "StandingsError",
    "StandingsRun",
]
