"""Domain records for races, rosters, taps and derived projections.

All records are frozen; edits go through ``dataclasses.replace`` so a
projection computed from a set of records can never be changed underneath.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from .types import (
    CategoryDict,
    RaceSummaryDict,
    RiderDict,
    StatePayloadDict,
    TapEventDict,
    TapSource,
)


@dataclass(frozen=True)
class Category:
    id: str
    race_id: str
    name: str
    order: int
    description: str | None = None

    def as_dict(self) -> CategoryDict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "order": self.order,
        }


@dataclass(frozen=True)
class Participant:
    id: str
    race_id: str
    bib: int
    name: str
    category_id: str | None = None
    team: str | None = None
    birth_date: int | None = None
    is_bib_issued: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bib": self.bib,
            "name": self.name,
            "categoryId": self.category_id,
            "team": self.team,
            "birthDate": self.birth_date,
            "isBibIssued": self.is_bib_issued,
        }


@dataclass(frozen=True)
class Race:
    id: str
    name: str
    slug: str | None
    total_laps: int
    tap_cooldown_seconds: int
    created_at: int
    updated_at: int
    started_at: int | None = None

    def summary(self) -> "RaceSummary":
        return RaceSummary(
            id=self.id,
            slug=self.slug,
            name=self.name,
            total_laps=self.total_laps,
            tap_cooldown_seconds=self.tap_cooldown_seconds,
            started_at=self.started_at,
        )


@dataclass(frozen=True)
class RaceDetails:
    """A race with its roster, as returned by the CRUD read paths."""

    race: Race
    categories: tuple[Category, ...]
    participants: tuple[Participant, ...]

    def as_dict(self) -> dict[str, Any]:
        race = self.race
        return {
            "id": race.id,
            "name": race.name,
            "slug": race.slug,
            "totalLaps": race.total_laps,
            "tapCooldownSeconds": race.tap_cooldown_seconds,
            "createdAt": race.created_at,
            "updatedAt": race.updated_at,
            "startedAt": race.started_at,
            "categories": [c.as_dict() for c in self.categories],
            "participants": [p.as_dict() for p in self.participants],
        }


@dataclass(frozen=True)
class TapEvent:
    id: str
    race_id: str
    participant_id: str
    bib: int
    name: str
    category_id: str | None
    category_name: str
    timestamp: int
    source: TapSource = "manual"

    def as_dict(self) -> TapEventDict:
        return {
            "id": self.id,
            "bib": self.bib,
            "name": self.name,
            "category": self.category_name,
            "categoryId": self.category_id,
            "timestamp": self.timestamp,
            "source": self.source,
        }


@dataclass(frozen=True)
class Rider:
    """An issued participant as seen by timing and leaderboard views."""

    bib: int
    name: str
    category: str
    category_id: str | None = None

    def as_dict(self) -> RiderDict:
        return {
            "bib": self.bib,
            "name": self.name,
            "category": self.category,
            "categoryId": self.category_id,
        }


@dataclass(frozen=True)
class RaceSummary:
    id: str
    slug: str | None
    name: str
    total_laps: int
    tap_cooldown_seconds: int
    started_at: int | None

    def as_dict(self) -> RaceSummaryDict:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "totalLaps": self.total_laps,
            "tapCooldownSeconds": self.tap_cooldown_seconds,
            "startedAt": self.started_at,
        }


@dataclass(frozen=True)
class StatePayload:
    race: RaceSummary | None
    categories: tuple[Category, ...]
    riders: tuple[Rider, ...]
    tap_events: tuple[TapEvent, ...]

    @classmethod
    def empty(cls) -> "StatePayload":
        return cls(race=None, categories=(), riders=(), tap_events=())

    def as_dict(self) -> StatePayloadDict:
        return {
            "race": self.race.as_dict() if self.race is not None else None,
            "categories": [c.as_dict() for c in self.categories],
            "riders": [r.as_dict() for r in self.riders],
            "tapEvents": [e.as_dict() for e in self.tap_events],
        }


@dataclass(frozen=True)
class Leader:
    bib: int
    name: str
    laps_completed: int
    laps_remaining: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "bib": self.bib,
            "name": self.name,
            "lapsCompleted": self.laps_completed,
            "lapsRemaining": self.laps_remaining,
        }


@dataclass(frozen=True)
class LapsRemaining:
    race: RaceSummary | None
    leader: Leader | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"race": self.race.as_dict() if self.race else None}
        if self.leader is not None:
            out["leader"] = self.leader.as_dict()
        return out


@dataclass(frozen=True)
class ResultRow:
    position: int
    bib: int
    name: str
    category: str
    laps: int
    last_tap: int | None
    gap: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "bib": self.bib,
            "name": self.name,
            "category": self.category,
            "laps": self.laps,
            "lastTap": self.last_tap,
            "gap": self.gap,
        }


@dataclass(frozen=True)
class PodiumGroup:
    category: str
    riders: tuple[ResultRow, ...]

    def as_dict(self) -> dict[str, Any]:
        return {"category": self.category, "riders": [r.as_dict() for r in self.riders]}


@dataclass(frozen=True)
class ResultsTable:
    rows: tuple[ResultRow, ...]
    podium: tuple[PodiumGroup, ...]

    @property
    def leader(self) -> ResultRow | None:
        return self.rows[0] if self.rows else None

    def as_dict(self) -> dict[str, Any]:
        return {
            "rows": [r.as_dict() for r in self.rows],
            "podium": [g.as_dict() for g in self.podium],
        }


@dataclass(frozen=True)
class PublicRaceSummary:
    race: Race
    participants: int
    categories: int

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.race.summary().as_dict())
        out["createdAt"] = self.race.created_at
        out["participants"] = self.participants
        out["categories"] = self.categories
        return out


TapStatus = Literal["recorded", "needs_confirmation"]


@dataclass(frozen=True)
class TapOutcome:
    """Result of a tap submission.

    ``needs_confirmation`` is a soft signal: nothing was recorded and the
    caller may resubmit with ``confirm=True``.
    """

    status: TapStatus
    bib: int
    event: TapEvent | None = None
    elapsed_ms: int | None = None
    retry_after_seconds: int | None = None

    @property
    def recorded(self) -> bool:
        return self.status == "recorded"

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"status": self.status, "bib": self.bib}
        if self.event is not None:
            out["event"] = self.event.as_dict()
        if self.elapsed_ms is not None:
            out["elapsedMs"] = self.elapsed_ms
        if self.retry_after_seconds is not None:
            out["retryAfterSeconds"] = self.retry_after_seconds
        return out
