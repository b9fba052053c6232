from __future__ import annotations

import threading

import pytest

from laptap_core import Broadcaster, InMemoryRaceStore, NotFoundError, RaceService, ValidationError


def _service() -> RaceService:
    return RaceService(InMemoryRaceStore(), Broadcaster(), clock=lambda: 5_000)


def _race_with_riders(service: RaceService, name: str, bibs) -> str:
    race = service.create_race(name=name, totalLaps=100).race
    for bib in bibs:
        participant = service.add_participant(race.id, bib=bib, name=f"Rider {bib}")
        service.set_participant_issued(race.id, participant.id, True)
    return race.id


def _run_all(workers) -> list[BaseException]:
    errors: list[BaseException] = []
    barrier = threading.Barrier(len(workers))

    def run(work):
        barrier.wait()
        try:
            work()
        except BaseException as exc:
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(work,)) for work in workers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return errors


def test_concurrent_taps_on_one_race_are_all_recorded_in_order():
    service = _service()
    race_id = _race_with_riders(service, "Crowded", [1, 2, 3, 4])
    tap_counts = []
    service.subscribe(
        lambda event: tap_counts.append(len(event.state.tap_events))
        if event.type == "race-updated"
        else None
    )

    total = 40
    errors = _run_all(
        [lambda bib=1 + i % 4: service.record_tap(race_id, bib, confirm=True) for i in range(total)]
    )

    assert errors == []
    assert len(service.get_state(race_id).tap_events) == total
    assert {row.bib: row.laps for row in service.get_results(race_id).rows} == {1: 10, 2: 10, 3: 10, 4: 10}
    # every pushed snapshot includes the taps before it
    assert tap_counts == list(range(1, total + 1))


def test_races_mutated_in_parallel_stay_independent():
    service = _service()
    first = _race_with_riders(service, "First", [1, 2])
    second = _race_with_riders(service, "Second", [1, 3])

    workers = []
    for i in range(20):
        workers.append(lambda bib=1 + i % 2: service.record_tap(first, bib, confirm=True))
        workers.append(lambda bib=(1, 3)[i % 2]: service.record_tap(second, bib, confirm=True))
    errors = _run_all(workers)

    assert errors == []
    first_taps = service.get_state(first).tap_events
    second_taps = service.get_state(second).tap_events
    assert len(first_taps) == len(second_taps) == 20
    assert {e.bib for e in first_taps} == {1, 2}
    assert {e.bib for e in second_taps} == {1, 3}
    assert {e.race_id for e in first_taps} == {first}


def test_last_pushed_state_is_the_stored_state():
    service = _service()
    race_id = _race_with_riders(service, "Contended", [1, 2])
    tap_counts = []
    contender: dict[str, threading.Thread] = {}

    def listener(event):
        if event.type != "race-updated":
            return
        tap_counts.append(len(event.state.tap_events))
        if "thread" not in contender:
            # a second operator taps while the first update is being pushed
            thread = threading.Thread(target=service.record_tap, args=(race_id, 2))
            contender["thread"] = thread
            thread.start()
            thread.join(timeout=0.2)

    service.subscribe(listener)
    service.record_tap(race_id, 1)
    contender["thread"].join(timeout=5)

    assert len(service.get_state(race_id).tap_events) == 2
    assert tap_counts == [1, 2]


def test_lock_table_only_tracks_stored_races():
    service = _service()
    for i in range(1000):
        with pytest.raises(NotFoundError):
            service.get_state(f"ghost-{i}")
    with pytest.raises(NotFoundError):
        service.record_tap("ghost", 1)
    with pytest.raises(NotFoundError):
        service.cancel_tap("ghost", "e1")
    with pytest.raises(NotFoundError):
        service.get_laps_remaining("ghost")
    assert service.lock_count == 0

    race_id = _race_with_riders(service, "Short lived", [1])
    assert service.lock_count == 1
    service.delete_race(race_id)
    assert service.lock_count == 0
    assert service.list_public_summaries() == []
    assert service.lock_count == 0


def test_failed_create_leaves_no_lock():
    service = _service()
    with pytest.raises(ValidationError):
        service.create_race(name="Cup", totalLaps=3, slug="!!!")
    assert service.lock_count == 0
    assert service.list_races() == []
