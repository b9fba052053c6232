"""Persistence collaborator for the race engine.

``RaceStore`` is the contract the engine needs from storage: race-scoped
CRUD for races, categories and participants, a tap-event table with
bulk update/delete by predicate, the bib-issuance flag, and a transaction
boundary scoped to one race aggregate.

``InMemoryRaceStore`` implements it with per-race tables. A transaction
snapshots the race's tables on entry and puts them back if the block raises,
so cascades (category rename, participant edit, un-issuing) are all or
nothing. Other races are never touched by a rollback.
"""
from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Iterator, Protocol

from .errors import ConflictError
from .models import Category, Participant, Race, TapEvent

logger = logging.getLogger(__name__)

TapPredicate = Callable[[TapEvent], bool]


class RaceStore(Protocol):
    def new_id(self) -> str:
        ...

    def transaction(self, race_id: str) -> Any:
        """Context manager: all writes for ``race_id`` inside it commit or none do."""
        ...

    # races
    def list_races(self) -> list[Race]:
        ...

    def get_race(self, race_id: str) -> Race | None:
        ...

    def find_race_by_slug(self, slug: str) -> Race | None:
        ...

    def slug_exists(self, slug: str, exclude_race_id: str | None = None) -> bool:
        ...

    def insert_race(self, race: Race) -> None:
        ...

    def update_race(self, race: Race) -> None:
        ...

    def delete_race(self, race_id: str) -> bool:
        ...

    # categories
    def list_categories(self, race_id: str) -> list[Category]:
        ...

    def get_category(self, race_id: str, category_id: str) -> Category | None:
        ...

    def insert_category(self, category: Category) -> None:
        ...

    def update_category(self, category: Category) -> None:
        ...

    def delete_category(self, race_id: str, category_id: str) -> bool:
        ...

    # participants
    def list_participants(self, race_id: str) -> list[Participant]:
        ...

    def get_participant(self, race_id: str, participant_id: str) -> Participant | None:
        ...

    def find_participant_by_bib(
        self, race_id: str, bib: int, exclude_id: str | None = None
    ) -> Participant | None:
        ...

    def insert_participant(self, participant: Participant) -> None:
        ...

    def update_participant(self, participant: Participant) -> None:
        ...

    def update_participants(self, race_id: str, predicate: Callable[[Participant], bool], **changes: Any) -> int:
        ...

    def delete_participants(self, race_id: str, participant_ids: Iterable[str]) -> list[Participant]:
        ...

    # bib issuance
    def issued_participant_ids(self, race_id: str, participant_ids: Iterable[str]) -> set[str]:
        ...

    def is_participant_issued(self, race_id: str, participant_id: str) -> bool:
        ...

    def set_participant_issued(self, race_id: str, participant_id: str, issued: bool) -> None:
        ...

    # tap events
    def list_tap_events(self, race_id: str) -> list[TapEvent]:
        ...

    def get_tap_event(self, race_id: str, event_id: str) -> TapEvent | None:
        ...

    def insert_tap_event(self, event: TapEvent) -> None:
        ...

    def delete_tap_event(self, race_id: str, event_id: str) -> bool:
        ...

    def update_tap_events(self, race_id: str, predicate: TapPredicate, **changes: Any) -> int:
        ...

    def delete_tap_events(self, race_id: str, predicate: TapPredicate) -> int:
        ...


@dataclass
class _RaceTables:
    race: Race
    categories: dict[str, Category] = field(default_factory=dict)
    participants: dict[str, Participant] = field(default_factory=dict)
    issued: set[str] = field(default_factory=set)
    taps: dict[str, TapEvent] = field(default_factory=dict)

    def copy(self) -> "_RaceTables":
        # Records are frozen, so copying the containers is a full snapshot.
        return _RaceTables(
            race=self.race,
            categories=dict(self.categories),
            participants=dict(self.participants),
            issued=set(self.issued),
            taps=dict(self.taps),
        )


class InMemoryRaceStore:
    """Process-local ``RaceStore``. Safe to share between threads."""

    def __init__(self) -> None:
        self._tables: dict[str, _RaceTables] = {}
        self._lock = threading.RLock()

    def new_id(self) -> str:
        return str(uuid.uuid4())

    @contextmanager
    def transaction(self, race_id: str) -> Iterator[None]:
        with self._lock:
            tables = self._tables.get(race_id)
            snapshot = tables.copy() if tables is not None else None
        try:
            yield
        except BaseException:
            with self._lock:
                if snapshot is None:
                    self._tables.pop(race_id, None)
                else:
                    self._tables[race_id] = snapshot
            logger.debug(f"Rolled back transaction for race {race_id}")
            raise

    def _race_tables(self, race_id: str) -> _RaceTables | None:
        return self._tables.get(race_id)

    # ---------------------------------------------------------------- races

    def list_races(self) -> list[Race]:
        with self._lock:
            return [t.race for t in self._tables.values()]

    def get_race(self, race_id: str) -> Race | None:
        with self._lock:
            tables = self._race_tables(race_id)
            return tables.race if tables else None

    def find_race_by_slug(self, slug: str) -> Race | None:
        with self._lock:
            for tables in self._tables.values():
                if tables.race.slug == slug:
                    return tables.race
        return None

    def slug_exists(self, slug: str, exclude_race_id: str | None = None) -> bool:
        found = self.find_race_by_slug(slug)
        return found is not None and found.id != exclude_race_id

    def insert_race(self, race: Race) -> None:
        with self._lock:
            if race.id in self._tables:
                raise ConflictError("Гонка с таким идентификатором уже существует")
            if race.slug and self.slug_exists(race.slug):
                raise ConflictError("Слаг уже занят")
            self._tables[race.id] = _RaceTables(race=race)

    def update_race(self, race: Race) -> None:
        with self._lock:
            tables = self._race_tables(race.id)
            if tables is None:
                raise KeyError(race.id)
            if race.slug and self.slug_exists(race.slug, exclude_race_id=race.id):
                raise ConflictError("Слаг уже занят")
            tables.race = race

    def delete_race(self, race_id: str) -> bool:
        with self._lock:
            return self._tables.pop(race_id, None) is not None

    # ----------------------------------------------------------- categories

    def list_categories(self, race_id: str) -> list[Category]:
        with self._lock:
            tables = self._race_tables(race_id)
            return list(tables.categories.values()) if tables else []

    def get_category(self, race_id: str, category_id: str) -> Category | None:
        with self._lock:
            tables = self._race_tables(race_id)
            return tables.categories.get(category_id) if tables else None

    def insert_category(self, category: Category) -> None:
        with self._lock:
            self._require(category.race_id).categories[category.id] = category

    def update_category(self, category: Category) -> None:
        with self._lock:
            tables = self._require(category.race_id)
            if category.id not in tables.categories:
                raise KeyError(category.id)
            tables.categories[category.id] = category

    def delete_category(self, race_id: str, category_id: str) -> bool:
        with self._lock:
            tables = self._race_tables(race_id)
            if tables is None:
                return False
            return tables.categories.pop(category_id, None) is not None

    # --------------------------------------------------------- participants

    def list_participants(self, race_id: str) -> list[Participant]:
        with self._lock:
            tables = self._race_tables(race_id)
            return list(tables.participants.values()) if tables else []

    def get_participant(self, race_id: str, participant_id: str) -> Participant | None:
        with self._lock:
            tables = self._race_tables(race_id)
            return tables.participants.get(participant_id) if tables else None

    def find_participant_by_bib(
        self, race_id: str, bib: int, exclude_id: str | None = None
    ) -> Participant | None:
        with self._lock:
            tables = self._race_tables(race_id)
            if tables is None:
                return None
            for participant in tables.participants.values():
                if participant.bib == bib and participant.id != exclude_id:
                    return participant
        return None

    def insert_participant(self, participant: Participant) -> None:
        with self._lock:
            tables = self._require(participant.race_id)
            if self.find_participant_by_bib(participant.race_id, participant.bib):
                raise ConflictError("Участник с таким номером уже существует")
            tables.participants[participant.id] = participant

    def update_participant(self, participant: Participant) -> None:
        with self._lock:
            tables = self._require(participant.race_id)
            if participant.id not in tables.participants:
                raise KeyError(participant.id)
            if self.find_participant_by_bib(
                participant.race_id, participant.bib, exclude_id=participant.id
            ):
                raise ConflictError("Участник с таким номером уже существует")
            tables.participants[participant.id] = participant

    def update_participants(
        self, race_id: str, predicate: Callable[[Participant], bool], **changes: Any
    ) -> int:
        with self._lock:
            tables = self._race_tables(race_id)
            if tables is None:
                return 0
            touched = 0
            for pid, participant in list(tables.participants.items()):
                if predicate(participant):
                    tables.participants[pid] = replace(participant, **changes)
                    touched += 1
            return touched

    def delete_participants(self, race_id: str, participant_ids: Iterable[str]) -> list[Participant]:
        with self._lock:
            tables = self._race_tables(race_id)
            if tables is None:
                return []
            removed: list[Participant] = []
            for pid in participant_ids:
                participant = tables.participants.pop(pid, None)
                if participant is not None:
                    tables.issued.discard(pid)
                    removed.append(participant)
            return removed

    # -------------------------------------------------------------- issuance

    def issued_participant_ids(self, race_id: str, participant_ids: Iterable[str]) -> set[str]:
        with self._lock:
            tables = self._race_tables(race_id)
            if tables is None:
                return set()
            return {pid for pid in participant_ids if pid in tables.issued}

    def is_participant_issued(self, race_id: str, participant_id: str) -> bool:
        with self._lock:
            tables = self._race_tables(race_id)
            return bool(tables and participant_id in tables.issued)

    def set_participant_issued(self, race_id: str, participant_id: str, issued: bool) -> None:
        with self._lock:
            tables = self._require(race_id)
            if participant_id not in tables.participants:
                raise KeyError(participant_id)
            if issued:
                tables.issued.add(participant_id)
            else:
                tables.issued.discard(participant_id)

    # ------------------------------------------------------------ tap events

    def list_tap_events(self, race_id: str) -> list[TapEvent]:
        with self._lock:
            tables = self._race_tables(race_id)
            return list(tables.taps.values()) if tables else []

    def get_tap_event(self, race_id: str, event_id: str) -> TapEvent | None:
        with self._lock:
            tables = self._race_tables(race_id)
            return tables.taps.get(event_id) if tables else None

    def insert_tap_event(self, event: TapEvent) -> None:
        with self._lock:
            self._require(event.race_id).taps[event.id] = event

    def delete_tap_event(self, race_id: str, event_id: str) -> bool:
        with self._lock:
            tables = self._race_tables(race_id)
            if tables is None:
                return False
            return tables.taps.pop(event_id, None) is not None

    def update_tap_events(self, race_id: str, predicate: TapPredicate, **changes: Any) -> int:
        with self._lock:
            tables = self._race_tables(race_id)
            if tables is None:
                return 0
            touched = 0
            for event_id, event in list(tables.taps.items()):
                if predicate(event):
                    tables.taps[event_id] = replace(event, **changes)
                    touched += 1
            return touched

    def delete_tap_events(self, race_id: str, predicate: TapPredicate) -> int:
        with self._lock:
            tables = self._race_tables(race_id)
            if tables is None:
                return 0
            doomed = [eid for eid, event in tables.taps.items() if predicate(event)]
            for eid in doomed:
                del tables.taps[eid]
            return len(doomed)

    def _require(self, race_id: str) -> _RaceTables:
        tables = self._race_tables(race_id)
        if tables is None:
            raise KeyError(race_id)
        return tables


__all__ = ["InMemoryRaceStore", "RaceStore", "TapPredicate"]
