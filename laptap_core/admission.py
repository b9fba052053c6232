"""Tap admission: the gate in front of ``TapLedger.record``.

Checks, in order:
1. the bib belongs to a participant of the race (else NotFoundError);
2. the bib has been issued (else ConflictError, nothing is recorded);
3. the race cooldown: a repeat tap for the same bib inside the window gets a
   ``needs_confirmation`` outcome instead of being recorded. Resubmitting
   with ``confirm=True`` skips the check.

The cooldown window is measured from the later of the bib's last recorded
tap and its last attempt still in flight, so two operators submitting the
same bib at once both see the window.
"""
from __future__ import annotations

import logging
import math
import threading

from .errors import ConflictError, NotFoundError
from .ledger import Clock, TapLedger, now_ms
from .models import Race, TapOutcome
from .store import RaceStore
from .types import TapSource

logger = logging.getLogger(__name__)


class TapAdmissionControl:
    def __init__(self, store: RaceStore, ledger: TapLedger, *, clock: Clock = now_ms) -> None:
        self.store = store
        self.ledger = ledger
        self.clock = clock
        self._attempts: dict[tuple[str, int], int] = {}
        self._lock = threading.Lock()

    def last_attempt_at(self, race_id: str, bib: int) -> int | None:
        with self._lock:
            return self._attempts.get((race_id, bib))

    def forget_race(self, race_id: str) -> None:
        with self._lock:
            for key in [k for k in self._attempts if k[0] == race_id]:
                del self._attempts[key]

    def cooldown_check(self, race: Race, bib: int) -> TapOutcome | None:
        """``needs_confirmation`` outcome if ``bib`` is inside the cooldown window."""
        cooldown_ms = race.tap_cooldown_seconds * 1000
        if cooldown_ms <= 0:
            return None
        last_recorded = self.ledger.last_tap_at(race.id, bib)
        last_attempt = self.last_attempt_at(race.id, bib)
        if last_attempt is not None and last_recorded is not None and last_recorded >= last_attempt:
            # the attempt landed; the recorded tap now carries the window
            with self._lock:
                self._attempts.pop((race.id, bib), None)
            last_attempt = None
        stamps = [s for s in (last_recorded, last_attempt) if s is not None]
        if not stamps:
            return None
        elapsed = self.clock() - max(stamps)
        if elapsed >= cooldown_ms:
            return None
        return TapOutcome(
            status="needs_confirmation",
            bib=bib,
            elapsed_ms=max(elapsed, 0),
            retry_after_seconds=max(0, math.ceil((cooldown_ms - elapsed) / 1000)),
        )

    def admit(
        self,
        race: Race,
        bib: int,
        source: TapSource = "manual",
        *,
        confirm: bool = False,
    ) -> TapOutcome:
        participant = self.store.find_participant_by_bib(race.id, bib)
        if participant is None:
            raise NotFoundError("Гонщик с таким номером не найден")
        if not self.store.is_participant_issued(race.id, participant.id):
            raise ConflictError("Для этого гонщика номер ещё не выдан")

        if not confirm:
            pending = self.cooldown_check(race, bib)
            if pending is not None:
                logger.info(
                    f"Tap for bib {bib} in race {race.id} needs confirmation "
                    f"({pending.elapsed_ms} ms since last tap)"
                )
                return pending

        key = (race.id, bib)
        with self._lock:
            previous = self._attempts.get(key)
            self._attempts[key] = self.clock()
        try:
            event = self.ledger.record(race.id, participant, source)
        except Exception:
            with self._lock:
                if previous is None:
                    self._attempts.pop(key, None)
                else:
                    self._attempts[key] = previous
            raise
        return TapOutcome(status="recorded", bib=bib, event=event)


__all__ = ["TapAdmissionControl"]
