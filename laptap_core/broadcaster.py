"""In-process publish/subscribe hub for race events.

Delivery is synchronous and at most once per listener per event. There is no
replay: a client that reconnects fetches the full state payload again.
A listener that raises is logged and skipped; the others still get the event.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Literal, Union

from .models import StatePayload, TapEvent
from .types import PushBody

logger = logging.getLogger(__name__)

PUSH_STATE = "race:state"
PUSH_TAP_RECORDED = "race:tap-recorded"
PUSH_TAP_CANCELLED = "race:tap-cancelled"


@dataclass(frozen=True)
class TapRecorded:
    race_id: str
    tap_event: TapEvent
    type: Literal["tap-recorded"] = "tap-recorded"


@dataclass(frozen=True)
class TapCancelled:
    race_id: str
    event_id: str
    type: Literal["tap-cancelled"] = "tap-cancelled"


@dataclass(frozen=True)
class RaceUpdated:
    race_id: str
    state: StatePayload
    type: Literal["race-updated"] = "race-updated"


RaceEvent = Union[TapRecorded, TapCancelled, RaceUpdated]
Listener = Callable[[RaceEvent], None]


def to_push_message(event: RaceEvent) -> tuple[str, PushBody]:
    """Channel name and body the transport emits for ``event``."""
    if isinstance(event, TapRecorded):
        return PUSH_TAP_RECORDED, {"raceId": event.race_id, "event": event.tap_event.as_dict()}
    if isinstance(event, TapCancelled):
        return PUSH_TAP_CANCELLED, {"raceId": event.race_id, "eventId": event.event_id}
    if isinstance(event, RaceUpdated):
        return PUSH_STATE, {"raceId": event.race_id, "state": event.state.as_dict()}
    raise TypeError(f"unknown race event: {event!r}")


class Broadcaster:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    pass

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def emit(self, event: RaceEvent) -> int:
        """Deliver ``event`` to every current listener; returns how many succeeded."""
        with self._lock:
            listeners = list(self._listeners)
        delivered = 0
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Listener failed on {event.type} for race {event.race_id}")
                continue
            delivered += 1
        return delivered

    def tap_recorded(self, race_id: str, tap_event: TapEvent) -> int:
        return self.emit(TapRecorded(race_id=race_id, tap_event=tap_event))

    def tap_cancelled(self, race_id: str, event_id: str) -> int:
        return self.emit(TapCancelled(race_id=race_id, event_id=event_id))

    def race_updated(self, race_id: str, state: StatePayload) -> int:
        return self.emit(RaceUpdated(race_id=race_id, state=state))


__all__ = [
    "Broadcaster",
    "Listener",
    "PUSH_STATE",
    "PUSH_TAP_CANCELLED",
    "PUSH_TAP_RECORDED",
    "RaceEvent",
    "RaceUpdated",
    "TapCancelled",
    "TapRecorded",
    "to_push_message",
]
