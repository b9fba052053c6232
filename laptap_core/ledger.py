"""Tap ledger: the per-race record of checkpoint crossings.

The ledger is the source of truth for lap counts. Events are only ever
appended or removed; the one permitted edit is rewriting the denormalized
rider/category fields when the roster changes (the cascade routines below).
History is kept in full, with no cap on the number of events per race.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

from .config import DEFAULT_CONFIG, EngineConfig
from .errors import NotFoundError
from .models import Participant, TapEvent
from .store import RaceStore
from .types import TapSource

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def newest_first(events: Iterable[TapEvent]) -> list[TapEvent]:
    # id as secondary key keeps equal timestamps in a total order
    return sorted(events, key=lambda e: (e.timestamp, e.id), reverse=True)


class TapLedger:
    def __init__(
        self,
        store: RaceStore,
        *,
        clock: Clock = now_ms,
        config: EngineConfig = DEFAULT_CONFIG,
    ) -> None:
        self.store = store
        self.clock = clock
        self.config = config

    def record(
        self, race_id: str, participant: Participant, source: TapSource = "manual"
    ) -> TapEvent:
        """Append one lap for ``participant``, stamped with the current time."""
        category_id: str | None = None
        category_name = self.config.uncategorized_label
        if participant.category_id:
            category = self.store.get_category(race_id, participant.category_id)
            if category is not None:
                category_id = category.id
                category_name = category.name
        event = TapEvent(
            id=self.store.new_id(),
            race_id=race_id,
            participant_id=participant.id,
            bib=participant.bib,
            name=participant.name,
            category_id=category_id,
            category_name=category_name,
            timestamp=self.clock(),
            source="system" if source == "system" else "manual",
        )
        self.store.insert_tap_event(event)
        return event

    def cancel(self, race_id: str, event_id: str) -> TapEvent:
        event = self.store.get_tap_event(race_id, event_id)
        if event is None:
            raise NotFoundError("Отметка не найдена")
        self.store.delete_tap_event(race_id, event_id)
        return event

    def events_for_race(self, race_id: str, *, newest: bool = True) -> list[TapEvent]:
        events = self.store.list_tap_events(race_id)
        if newest:
            return newest_first(events)
        return sorted(events, key=lambda e: (e.timestamp, e.id))

    def last_tap_at(self, race_id: str, bib: int) -> int | None:
        stamps = [e.timestamp for e in self.store.list_tap_events(race_id) if e.bib == bib]
        return max(stamps) if stamps else None

    # ------------------------------------------------------------- cascades

    def reassign_category(self, race_id: str, category_id: str, new_name: str) -> int:
        """Rewrite the category name on every event filed under ``category_id``."""
        touched = self.store.update_tap_events(
            race_id,
            lambda e: e.category_id == category_id and e.category_name != new_name,
            category_name=new_name,
        )
        if touched:
            logger.debug(f"Renamed category {category_id} on {touched} tap events (race {race_id})")
        return touched

    def clear_category(self, race_id: str, category_id: str) -> int:
        """Move every event filed under a removed category to the uncategorized bucket."""
        touched = self.store.update_tap_events(
            race_id,
            lambda e: e.category_id == category_id,
            category_id=None,
            category_name=self.config.uncategorized_label,
        )
        if touched:
            logger.debug(f"Uncategorized {touched} tap events after removing {category_id}")
        return touched

    def reassign_participant(
        self,
        race_id: str,
        participant_id: str,
        bib: int,
        name: str,
        category_id: str | None,
        category_name: str,
    ) -> int:
        target = (bib, name, category_id, category_name)
        touched = self.store.update_tap_events(
            race_id,
            lambda e: e.participant_id == participant_id
            and (e.bib, e.name, e.category_id, e.category_name) != target,
            bib=bib,
            name=name,
            category_id=category_id,
            category_name=category_name,
        )
        if touched:
            logger.debug(f"Rewrote {touched} tap events for participant {participant_id}")
        return touched

    def remove_for_participants(self, race_id: str, participant_ids: Iterable[str]) -> int:
        doomed = set(participant_ids)
        if not doomed:
            return 0
        removed = self.store.delete_tap_events(race_id, lambda e: e.participant_id in doomed)
        if removed:
            logger.debug(f"Removed {removed} tap events for {len(doomed)} participants (race {race_id})")
        return removed


__all__ = ["Clock", "TapLedger", "newest_first", "now_ms"]
