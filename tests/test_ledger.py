from __future__ import annotations

import pytest

from laptap_core import (
    Category,
    InMemoryRaceStore,
    NotFoundError,
    Participant,
    Race,
    TapLedger,
)


class _Clock:
    def __init__(self, start: int = 1_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 10
        return self.now


def _setup(race_id: str = "r1"):
    store = InMemoryRaceStore()
    store.insert_race(
        Race(
            id=race_id,
            name="Cup",
            slug=f"cup-{race_id}",
            total_laps=10,
            tap_cooldown_seconds=0,
            created_at=0,
            updated_at=0,
        )
    )
    store.insert_category(Category(id="c1", race_id=race_id, name="Open", order=0))
    rider = Participant(id="p1", race_id=race_id, bib=7, name="Ann", category_id="c1")
    other = Participant(id="p2", race_id=race_id, bib=8, name="Bob")
    store.insert_participant(rider)
    store.insert_participant(other)
    return store, TapLedger(store, clock=_Clock()), rider, other


def test_record_denormalizes_rider_and_category():
    store, ledger, rider, other = _setup()
    first = ledger.record("r1", rider)
    second = ledger.record("r1", other, source="system")

    assert (first.bib, first.name, first.category_id, first.category_name) == (7, "Ann", "c1", "Open")
    assert first.source == "manual"
    assert second.category_id is None
    assert second.category_name == "Без категории"
    assert second.source == "system"
    assert second.timestamp > first.timestamp
    assert len(store.list_tap_events("r1")) == 2


def test_cancel_removes_exactly_one_event():
    store, ledger, rider, other = _setup()
    events = [ledger.record("r1", rider) for _ in range(3)]
    ledger.record("r1", other)

    ledger.cancel("r1", events[1].id)
    bibs = [e.bib for e in store.list_tap_events("r1")]
    assert bibs.count(7) == 2
    assert bibs.count(8) == 1


def test_cancel_rejects_missing_or_foreign_event():
    store, ledger, rider, _ = _setup()
    event = ledger.record("r1", rider)
    with pytest.raises(NotFoundError):
        ledger.cancel("r1", "nope")
    with pytest.raises(NotFoundError):
        ledger.cancel("other-race", event.id)
    assert len(store.list_tap_events("r1")) == 1


def test_reassign_category_renames_without_adding_or_removing():
    store, ledger, rider, other = _setup()
    ledger.record("r1", rider)
    ledger.record("r1", rider)
    ledger.record("r1", other)

    assert ledger.reassign_category("r1", "c1", "Elite") == 2
    assert ledger.reassign_category("r1", "c1", "Elite") == 0
    events = store.list_tap_events("r1")
    assert len(events) == 3
    assert sorted(e.category_name for e in events) == ["Elite", "Elite", "Без категории"]


def test_clear_category_moves_events_to_uncategorized():
    store, ledger, rider, _ = _setup()
    ledger.record("r1", rider)
    assert ledger.clear_category("r1", "c1") == 1
    event = store.list_tap_events("r1")[0]
    assert event.category_id is None
    assert event.category_name == "Без категории"


def test_reassign_participant_rewrites_only_that_participant():
    store, ledger, rider, other = _setup()
    ledger.record("r1", rider)
    ledger.record("r1", other)

    touched = ledger.reassign_participant(
        "r1", "p1", bib=70, name="Anna", category_id=None, category_name="Без категории"
    )
    assert touched == 1
    by_participant = {e.participant_id: e for e in store.list_tap_events("r1")}
    assert by_participant["p1"].bib == 70
    assert by_participant["p1"].name == "Anna"
    assert by_participant["p2"].bib == 8
    # nothing left to rewrite
    assert ledger.reassign_participant(
        "r1", "p1", bib=70, name="Anna", category_id=None, category_name="Без категории"
    ) == 0


def test_remove_for_participants_cascades():
    store, ledger, rider, other = _setup()
    ledger.record("r1", rider)
    ledger.record("r1", rider)
    ledger.record("r1", other)
    assert ledger.remove_for_participants("r1", ["p1"]) == 2
    assert ledger.remove_for_participants("r1", []) == 0
    assert [e.bib for e in store.list_tap_events("r1")] == [8]


def test_last_tap_and_ordering():
    _, ledger, rider, other = _setup()
    a = ledger.record("r1", rider)
    b = ledger.record("r1", other)
    c = ledger.record("r1", rider)
    assert ledger.last_tap_at("r1", 7) == c.timestamp
    assert ledger.last_tap_at("r1", 99) is None
    assert [e.id for e in ledger.events_for_race("r1")] == [c.id, b.id, a.id]
    assert [e.id for e in ledger.events_for_race("r1", newest=False)] == [a.id, b.id, c.id]


def test_transaction_rolls_back_cascade_on_failure():
    store, ledger, rider, _ = _setup()
    ledger.record("r1", rider)

    with pytest.raises(RuntimeError):
        with store.transaction("r1"):
            ledger.reassign_category("r1", "c1", "Elite")
            store.update_category(Category(id="c1", race_id="r1", name="Elite", order=0))
            raise RuntimeError("storage went away")

    assert store.get_category("r1", "c1").name == "Open"
    assert store.list_tap_events("r1")[0].category_name == "Open"
