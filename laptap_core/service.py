"""Race service: the engine's entry points for the transport layer.

Every mutation runs under the race's lock and inside a store transaction.
Events are queued while the transaction is open and delivered once it has
committed, still under the race lock, so subscribers see one race's updates
in the order they were applied and the last state pushed is always the
stored one. Reads take the same lock while copying their inputs out of the
store so a snapshot never mixes taps and roster from different moments.

Architecture:
- ``RaceService`` owns the per-race locks and wires store, ledger, admission
  control and broadcaster together; nothing here is module-global.
- A lock exists only for a race that is stored (or being created) and is
  dropped when the race is deleted.
- Raw input (dicts from HTTP bodies or keyword arguments) is validated by the
  pydantic models in ``validation``; partial updates become tri-state field
  updates there, so ``None``/blank always means "clear" and a missing key
  always means "leave alone".
- ``record_tap`` returns a ``TapOutcome``; a cooldown hit is an outcome, not
  an exception.

Listeners run on the mutating thread while it holds the race lock. They may
call back into the service, but must not wait on another thread that works
on the same race.
"""
from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Iterator, Mapping, Union

from pydantic import BaseModel

from .admission import TapAdmissionControl
from .broadcaster import Broadcaster, Listener, RaceEvent, RaceUpdated, TapCancelled, TapRecorded
from .config import DEFAULT_CONFIG, EngineConfig
from .errors import ConflictError, NotFoundError, ValidationError
from .ledger import Clock, TapLedger, now_ms
from .models import (
    Category,
    LapsRemaining,
    Participant,
    PublicRaceSummary,
    Race,
    RaceDetails,
    ResultsTable,
    StatePayload,
    TapEvent,
    TapOutcome,
)
from .projection import project_laps_remaining, project_state, resolve_category_name
from .ranking import build_results_table, category_display_order
from .store import InMemoryRaceStore, RaceStore
from .updates import Clear, SetTo, resolve
from .validation import (
    CreateCategoryInput,
    CreateParticipantInput,
    CreateRaceInput,
    RecordTapInput,
    RemoveParticipantsInput,
    UpdateCategoryInput,
    UpdateParticipantInput,
    UpdateRaceInput,
    normalize_slug,
    parse_input,
)

logger = logging.getLogger(__name__)

RawInput = Union[Mapping[str, Any], BaseModel, None]
Outbox = list[RaceEvent]

RACE_NOT_FOUND = "Гонка не найдена"
CATEGORY_NOT_FOUND = "Категория не найдена"
PARTICIPANT_NOT_FOUND = "Участник не найден"
DUPLICATE_BIB = "Участник с таким номером уже существует"


class RaceService:
    def __init__(
        self,
        store: RaceStore | None = None,
        broadcaster: Broadcaster | None = None,
        *,
        clock: Clock = now_ms,
        config: EngineConfig = DEFAULT_CONFIG,
    ) -> None:
        self.store: RaceStore = store if store is not None else InMemoryRaceStore()
        self.broadcaster = broadcaster if broadcaster is not None else Broadcaster()
        self.clock = clock
        self.config = config
        self.ledger = TapLedger(self.store, clock=clock, config=config)
        self.admission = TapAdmissionControl(self.store, self.ledger, clock=clock)
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._slug_lock = threading.RLock()

    # ------------------------------------------------------------ plumbing

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.broadcaster.subscribe(listener)

    @property
    def lock_count(self) -> int:
        with self._locks_guard:
            return len(self._locks)

    def _race_lock(self, race_id: str, *, create: bool = False) -> threading.RLock:
        """The race's lock; unknown races raise NotFoundError unless ``create``."""
        with self._locks_guard:
            lock = self._locks.get(race_id)
            if lock is None:
                if not create and self.store.get_race(race_id) is None:
                    raise NotFoundError(RACE_NOT_FOUND)
                lock = self._locks[race_id] = threading.RLock()
            return lock

    def _drop_lock(self, race_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(race_id, None)

    @contextmanager
    def _mutation(self, race_id: str, *, create: bool = False) -> Iterator[Outbox]:
        """Lock + transaction; queued events go out after commit, lock still held."""
        outbox: Outbox = []
        with self._race_lock(race_id, create=create):
            try:
                with self.store.transaction(race_id):
                    yield outbox
            except Exception:
                if create:
                    self._drop_lock(race_id)
                raise
            for event in outbox:
                self.broadcaster.emit(event)

    def _queue_state(self, outbox: Outbox, race_id: str) -> None:
        outbox.append(RaceUpdated(race_id=race_id, state=self._snapshot(race_id)))

    def _require_race(self, race_id: str) -> Race:
        race = self.store.get_race(race_id)
        if race is None:
            raise NotFoundError(RACE_NOT_FOUND)
        return race

    def _require_category(self, race_id: str, category_id: str) -> Category:
        category = self.store.get_category(race_id, category_id)
        if category is None:
            raise NotFoundError(CATEGORY_NOT_FOUND)
        return category

    def _require_participant(self, race_id: str, participant_id: str) -> Participant:
        participant = self.store.get_participant(race_id, participant_id)
        if participant is None:
            raise NotFoundError(PARTICIPANT_NOT_FOUND)
        return participant

    def _touch(self, race: Race) -> Race:
        touched = replace(race, updated_at=self.clock())
        self.store.update_race(touched)
        return touched

    def _with_issue_flags(self, race_id: str, participants: list[Participant]) -> list[Participant]:
        issued = self.store.issued_participant_ids(race_id, [p.id for p in participants])
        return [replace(p, is_bib_issued=p.id in issued) for p in participants]

    def _details(self, race: Race) -> RaceDetails:
        participants = sorted(self.store.list_participants(race.id), key=lambda p: (p.bib, p.id))
        return RaceDetails(
            race=race,
            categories=tuple(category_display_order(self.store.list_categories(race.id))),
            participants=tuple(self._with_issue_flags(race.id, participants)),
        )

    def _snapshot(self, race_id: str) -> StatePayload:
        """Project the race as currently stored; caller holds the race lock."""
        race = self.store.get_race(race_id)
        if race is None:
            return StatePayload.empty()
        participants = self.store.list_participants(race_id)
        return project_state(
            race,
            self.store.list_categories(race_id),
            participants,
            self.store.list_tap_events(race_id),
            self.store.issued_participant_ids(race_id, [p.id for p in participants]),
            self.config,
        )

    def _unique_slug(self, base: str, ignore_race_id: str | None = None) -> str:
        max_length = self.config.slug_max_length
        cleaned = base.strip("-")[:max_length].strip("-")
        if not cleaned:
            cleaned = f"race-{uuid.uuid4().hex[:8]}"
        candidate = cleaned
        attempt = 1
        while self.store.slug_exists(candidate, exclude_race_id=ignore_race_id):
            attempt += 1
            suffix = f"-{attempt}"
            candidate = f"{cleaned[: max(1, max_length - len(suffix))]}{suffix}"
        return candidate

    def _explicit_slug(self, raw: str) -> str:
        normalized = normalize_slug(raw, self.config.slug_max_length)
        if not normalized:
            raise ValidationError("Слаг не может быть пустым")
        return normalized

    # ------------------------------------------------------------- reads

    def _newest_races(self) -> list[Race]:
        return sorted(self.store.list_races(), key=lambda r: r.created_at, reverse=True)

    def list_races(self) -> list[RaceDetails]:
        out = []
        for race in self._newest_races():
            try:
                lock = self._race_lock(race.id)
            except NotFoundError:
                continue
            with lock:
                current = self.store.get_race(race.id)
                if current is not None:
                    out.append(self._details(current))
        return out

    def get_race(self, race_id: str) -> RaceDetails:
        with self._race_lock(race_id):
            return self._details(self._require_race(race_id))

    def _race_id_for_slug(self, slug: str) -> str:
        normalized = normalize_slug(slug)
        race = self.store.find_race_by_slug(normalized) if normalized else None
        if race is None:
            raise NotFoundError(RACE_NOT_FOUND)
        return race.id

    def get_race_by_slug(self, slug: str) -> RaceDetails:
        return self.get_race(self._race_id_for_slug(slug))

    def list_public_summaries(self) -> list[PublicRaceSummary]:
        out = []
        for race in self._newest_races():
            try:
                lock = self._race_lock(race.id)
            except NotFoundError:
                continue
            with lock:
                current = self.store.get_race(race.id)
                if current is None:
                    continue
                out.append(
                    PublicRaceSummary(
                        race=current,
                        participants=len(self.store.list_participants(race.id)),
                        categories=len(self.store.list_categories(race.id)),
                    )
                )
        return out

    def get_state(self, race_id: str) -> StatePayload:
        with self._race_lock(race_id):
            self._require_race(race_id)
            return self._snapshot(race_id)

    def get_state_by_slug(self, slug: str) -> StatePayload:
        return self.get_state(self._race_id_for_slug(slug))

    def get_laps_remaining(self, race_id: str) -> LapsRemaining:
        return project_laps_remaining(self.get_state(race_id), self.config)

    def get_results(self, race_id: str) -> ResultsTable:
        return build_results_table(
            self.get_state(race_id),
            uncategorized_label=self.config.uncategorized_label,
            podium_size=self.config.podium_size,
        )

    # ------------------------------------------------------------- races

    def create_race(self, data: RawInput = None, **fields: Any) -> RaceDetails:
        payload = parse_input(CreateRaceInput, data, **fields)
        race_id = self.store.new_id()
        with self._mutation(race_id, create=True) as outbox:
            with self._slug_lock:
                if payload.slug:
                    slug = self._unique_slug(self._explicit_slug(payload.slug))
                else:
                    slug = self._unique_slug(normalize_slug(payload.name, self.config.slug_max_length))
                now = self.clock()
                race = Race(
                    id=race_id,
                    name=payload.name,
                    slug=slug,
                    total_laps=payload.total_laps,
                    tap_cooldown_seconds=payload.tap_cooldown_seconds,
                    created_at=now,
                    updated_at=now,
                    started_at=None,
                )
                self.store.insert_race(race)
            details = self._details(race)
            self._queue_state(outbox, race_id)
        logger.info(f"Created race {race_id} ({slug})")
        return details

    def update_race(self, race_id: str, data: RawInput = None, **fields: Any) -> RaceDetails:
        payload = parse_input(UpdateRaceInput, data, **fields)
        with self._mutation(race_id) as outbox:
            race = self._require_race(race_id)
            if not payload.has_changes():
                return self._details(race)
            updated = race

            name = payload.field_update("name")
            if isinstance(name, SetTo):
                updated = replace(updated, name=name.value)
            laps = payload.field_update("total_laps")
            if isinstance(laps, SetTo):
                updated = replace(updated, total_laps=laps.value)
            cooldown = payload.field_update("tap_cooldown_seconds")
            if isinstance(cooldown, SetTo):
                updated = replace(updated, tap_cooldown_seconds=cooldown.value)

            with self._slug_lock:
                slug = payload.field_update("slug")
                if isinstance(slug, SetTo):
                    updated = replace(
                        updated,
                        slug=self._unique_slug(self._explicit_slug(slug.value), ignore_race_id=race_id),
                    )
                elif isinstance(slug, Clear):
                    updated = replace(updated, slug=None)

                updated = replace(
                    updated, started_at=resolve(payload.field_update("started_at"), race.started_at)
                )

                if updated == race:
                    return self._details(race)
                updated = replace(updated, updated_at=self.clock())
                self.store.update_race(updated)
            details = self._details(updated)
            self._queue_state(outbox, race_id)
        return details

    def _set_started(self, race_id: str, started: bool) -> RaceDetails:
        with self._mutation(race_id) as outbox:
            race = self._require_race(race_id)
            if (race.started_at is not None) == started:
                return self._details(race)
            now = self.clock()
            race = replace(race, started_at=now if started else None, updated_at=now)
            self.store.update_race(race)
            details = self._details(race)
            self._queue_state(outbox, race_id)
            logger.info(f"Race {race_id} {'started' if started else 'stopped'}")
        return details

    def start_race(self, race_id: str) -> RaceDetails:
        return self._set_started(race_id, True)

    def stop_race(self, race_id: str) -> RaceDetails:
        return self._set_started(race_id, False)

    def delete_race(self, race_id: str) -> None:
        with self._mutation(race_id) as outbox:
            self._require_race(race_id)
            self.store.delete_race(race_id)
            outbox.append(RaceUpdated(race_id=race_id, state=StatePayload.empty()))
        self._drop_lock(race_id)
        self.admission.forget_race(race_id)
        logger.info(f"Deleted race {race_id}")

    # -------------------------------------------------------- categories

    def add_category(self, race_id: str, data: RawInput = None, **fields: Any) -> Category:
        payload = parse_input(CreateCategoryInput, data, **fields)
        with self._mutation(race_id) as outbox:
            self._require_race(race_id)
            order = payload.order
            if order is None:
                existing = [c.order for c in self.store.list_categories(race_id)]
                order = max(existing, default=-1) + 1
            category = Category(
                id=self.store.new_id(),
                race_id=race_id,
                name=payload.name,
                order=order,
                description=payload.description,
            )
            self.store.insert_category(category)
            self._queue_state(outbox, race_id)
        return category

    def update_category(
        self, race_id: str, category_id: str, data: RawInput = None, **fields: Any
    ) -> Category:
        payload = parse_input(UpdateCategoryInput, data, **fields)
        with self._mutation(race_id) as outbox:
            existing = self._require_category(race_id, category_id)
            if not payload.has_changes():
                return existing
            updated = existing
            # a blank name keeps the current one
            name = payload.field_update("name")
            if isinstance(name, SetTo):
                updated = replace(updated, name=name.value)
            updated = replace(
                updated, description=resolve(payload.field_update("description"), existing.description)
            )
            order = payload.field_update("order")
            if isinstance(order, SetTo):
                updated = replace(updated, order=order.value)
            if updated == existing:
                return existing

            self.store.update_category(updated)
            self.ledger.reassign_category(race_id, category_id, updated.name)
            self._queue_state(outbox, race_id)
        return updated

    def remove_category(self, race_id: str, category_id: str) -> Category:
        with self._mutation(race_id) as outbox:
            category = self._require_category(race_id, category_id)
            self.ledger.clear_category(race_id, category_id)
            detached = self.store.update_participants(
                race_id, lambda p: p.category_id == category_id, category_id=None
            )
            self.store.delete_category(race_id, category_id)
            self._queue_state(outbox, race_id)
            logger.debug(f"Removed category {category_id}; {detached} participants uncategorized")
        return category

    # ------------------------------------------------------ participants

    def add_participant(self, race_id: str, data: RawInput = None, **fields: Any) -> Participant:
        payload = parse_input(CreateParticipantInput, data, **fields)
        with self._mutation(race_id) as outbox:
            self._require_race(race_id)
            if payload.category_id:
                self._require_category(race_id, payload.category_id)
            if self.store.find_participant_by_bib(race_id, payload.bib) is not None:
                raise ConflictError(DUPLICATE_BIB)
            participant = Participant(
                id=self.store.new_id(),
                race_id=race_id,
                bib=payload.bib,
                name=payload.name,
                category_id=payload.category_id,
                team=payload.team,
                birth_date=payload.birth_date,
                is_bib_issued=False,
            )
            self.store.insert_participant(participant)
            self._queue_state(outbox, race_id)
        return participant

    def update_participant(
        self, race_id: str, participant_id: str, data: RawInput = None, **fields: Any
    ) -> Participant:
        payload = parse_input(UpdateParticipantInput, data, **fields)
        with self._mutation(race_id) as outbox:
            current = self._require_participant(race_id, participant_id)
            issued = self.store.is_participant_issued(race_id, participant_id)
            if not payload.has_changes():
                return replace(current, is_bib_issued=issued)
            updated = current

            bib = payload.field_update("bib")
            if isinstance(bib, SetTo):
                if self.store.find_participant_by_bib(race_id, bib.value, exclude_id=participant_id):
                    raise ConflictError(DUPLICATE_BIB)
                updated = replace(updated, bib=bib.value)

            # a blank name keeps the current one
            name = payload.field_update("name")
            if isinstance(name, SetTo):
                updated = replace(updated, name=name.value)

            category = payload.field_update("category_id")
            if isinstance(category, SetTo):
                self._require_category(race_id, category.value)
            updated = replace(updated, category_id=resolve(category, current.category_id))
            updated = replace(updated, team=resolve(payload.field_update("team"), current.team))
            updated = replace(
                updated, birth_date=resolve(payload.field_update("birth_date"), current.birth_date)
            )
            if updated == current:
                return replace(current, is_bib_issued=issued)

            self.store.update_participant(updated)
            self.ledger.reassign_participant(
                race_id,
                participant_id,
                bib=updated.bib,
                name=updated.name,
                category_id=updated.category_id,
                category_name=resolve_category_name(
                    self.store.list_categories(race_id),
                    updated.category_id,
                    self.config.uncategorized_label,
                ),
            )
            self._queue_state(outbox, race_id)
        return replace(updated, is_bib_issued=issued)

    def set_participant_issued(self, race_id: str, participant_id: str, issued: bool) -> Participant:
        issued = bool(issued)
        with self._mutation(race_id) as outbox:
            participant = self._require_participant(race_id, participant_id)
            already = self.store.is_participant_issued(race_id, participant_id)
            if already == issued:
                logger.debug(
                    f"Bib status unchanged for participant {participant_id} (race {race_id}), "
                    f"already {'issued' if already else 'not issued'}."
                )
                return replace(participant, is_bib_issued=already)

            logger.debug(
                f"Updating bib status for participant {participant_id} in race {race_id}: "
                f"{'not issued -> issued' if issued else 'issued -> not issued'}."
            )
            if not issued:
                # a withdrawn bib takes its laps with it
                self.ledger.remove_for_participants(race_id, [participant_id])
            self.store.set_participant_issued(race_id, participant_id, issued)
            self._touch(self._require_race(race_id))
            self._queue_state(outbox, race_id)
        return replace(participant, is_bib_issued=issued)

    def remove_participants(self, race_id: str, participant_ids: Any) -> list[Participant]:
        payload = parse_input(RemoveParticipantsInput, {"ids": participant_ids})
        with self._mutation(race_id) as outbox:
            self._require_race(race_id)
            targets = [
                p for pid in payload.ids if (p := self.store.get_participant(race_id, pid)) is not None
            ]
            if not targets:
                return []
            target_ids = [p.id for p in targets]
            self.ledger.remove_for_participants(race_id, target_ids)
            removed = self.store.delete_participants(race_id, target_ids)
            self._queue_state(outbox, race_id)
        return [replace(p, is_bib_issued=False) for p in removed]

    # -------------------------------------------------------------- taps

    def record_tap(
        self,
        race_id: str,
        bib: Any,
        source: str = "manual",
        *,
        confirm: bool = False,
    ) -> TapOutcome:
        payload = parse_input(RecordTapInput, bib=bib, source=source, confirm=confirm)
        with self._mutation(race_id) as outbox:
            race = self._require_race(race_id)
            outcome = self.admission.admit(
                race, payload.bib, payload.source, confirm=payload.confirm
            )
            if not outcome.recorded:
                return outcome
            self._touch(race)
            if outcome.event is not None:
                outbox.append(TapRecorded(race_id=race_id, tap_event=outcome.event))
            self._queue_state(outbox, race_id)
        return outcome

    def cancel_tap(self, race_id: str, event_id: str) -> TapEvent:
        with self._mutation(race_id) as outbox:
            self._require_race(race_id)
            event = self.ledger.cancel(race_id, event_id)
            outbox.append(TapCancelled(race_id=race_id, event_id=event_id))
            self._queue_state(outbox, race_id)
        return event


__all__ = ["RaceService"]
