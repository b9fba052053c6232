from __future__ import annotations

from laptap_core import (
    Category,
    ResultRow,
    Rider,
    TapEvent,
    compute_results,
    format_gap,
    group_podiums,
)


def _tap(bib: int, timestamp: int, n: int = 0) -> TapEvent:
    return TapEvent(
        id=f"e-{bib}-{timestamp}-{n}",
        race_id="r1",
        participant_id=f"p{bib}",
        bib=bib,
        name=f"Rider {bib}",
        category_id=None,
        category_name="Без категории",
        timestamp=timestamp,
    )


def _row(bib: int, laps: int, last_tap: int | None, category: str = "Open") -> ResultRow:
    return ResultRow(
        position=0, bib=bib, name=f"Rider {bib}", category=category, laps=laps, last_tap=last_tap, gap="—"
    )


def _by_bib(rows):
    return {row.bib: row for row in rows}


def test_laps_equal_tap_count_per_bib():
    riders = [Rider(bib=b, name=f"Rider {b}", category="Open") for b in (3, 8, 11)]
    taps = [_tap(3, 100), _tap(8, 110), _tap(3, 200), _tap(3, 300), _tap(8, 320), _tap(99, 50)]
    rows = compute_results(riders, taps)
    by_bib = _by_bib(rows)
    assert by_bib[3].laps == 3
    assert by_bib[8].laps == 2
    assert by_bib[11].laps == 0
    assert by_bib[11].last_tap is None
    assert by_bib[3].last_tap == 300
    # taps for bibs outside the roster never produce rows
    assert 99 not in by_bib
    assert [row.position for row in rows] == [1, 2, 3]


def test_zero_lap_riders_sort_by_bib_regardless_of_input_order():
    forward = [Rider(bib=b, name=f"R{b}", category="Open") for b in (5, 2, 9, 1)]
    backward = list(reversed(forward))
    assert [r.bib for r in compute_results(forward, [])] == [1, 2, 5, 9]
    assert [r.bib for r in compute_results(backward, [])] == [1, 2, 5, 9]
    assert all(r.gap == "—" for r in compute_results(forward, []))


def test_lap_tie_goes_to_earlier_last_tap():
    riders = [
        Rider(bib=1, name="One", category="Open"),
        Rider(bib=2, name="Two", category="Open"),
    ]
    taps = [_tap(1, 200), _tap(1, 500), _tap(2, 150), _tap(2, 400)]
    rows = compute_results(riders, taps)
    assert [r.bib for r in rows] == [2, 1]
    assert rows[0].gap == "+0с"
    assert rows[1].gap == "+0.10с"


def test_riders_with_taps_rank_ahead_of_riders_without():
    riders = [Rider(bib=b, name=f"R{b}", category="Open") for b in (1, 2, 3)]
    rows = compute_results(riders, [_tap(3, 1000)])
    assert [r.bib for r in rows] == [3, 1, 2]
    assert rows[1].gap == "-1 круг"


def test_gap_switches_to_one_decimal_at_ten_seconds():
    leader = _row(1, 4, 1_000)
    assert format_gap(leader, _row(2, 4, 1_000 + 9_990)) == "+9.99с"
    assert format_gap(leader, _row(2, 4, 1_000 + 10_000)) == "+10.0с"
    assert format_gap(leader, _row(2, 4, 1_000 + 12_340)) == "+12.3с"
    assert format_gap(leader, _row(2, 4, 1_000 + 1)) == "+0.00с"


def test_gap_in_laps_uses_russian_plural_forms():
    leader = _row(1, 30, 5_000)
    assert format_gap(leader, _row(2, 29, 6_000)) == "-1 круг"
    assert format_gap(leader, _row(2, 28, 6_000)) == "-2 круга"
    assert format_gap(leader, _row(2, 26, 6_000)) == "-4 круга"
    assert format_gap(leader, _row(2, 25, 6_000)) == "-5 кругов"
    assert format_gap(leader, _row(2, 9, 6_000)) == "-21 кругов"


def test_gap_defaults():
    assert format_gap(None, _row(1, 0, None)) == "—"
    assert format_gap(_row(1, 0, None), _row(2, 0, None)) == "—"
    # same lap but missing a tap time on one side
    assert format_gap(_row(1, 2, 100), _row(2, 2, None)) == "+0с"
    assert format_gap(_row(1, 2, 500), _row(2, 2, 400)) == "+0с"


def test_pluralization_hook_is_injectable():
    riders = [Rider(bib=1, name="A", category="Open"), Rider(bib=2, name="B", category="Open")]
    taps = [_tap(1, 100), _tap(1, 200), _tap(1, 300)]
    rows = compute_results(riders, taps, pluralize=lambda n: "lap" if n == 1 else "laps")
    assert rows[1].gap == "-3 laps"


def test_podiums_follow_category_order_then_unknown_alphabetically():
    categories = [
        Category(id="c-w", race_id="r1", name="Women", order=1),
        Category(id="c-m", race_id="r1", name="Men", order=0),
    ]
    riders = [
        Rider(bib=1, name="A", category="Men", category_id="c-m"),
        Rider(bib=2, name="B", category="Men", category_id="c-m"),
        Rider(bib=3, name="C", category="Men", category_id="c-m"),
        Rider(bib=4, name="D", category="Men", category_id="c-m"),
        Rider(bib=5, name="E", category="Women", category_id="c-w"),
        Rider(bib=6, name="F", category="Без категории"),
        Rider(bib=7, name="G", category="Ветераны"),
    ]
    taps = [
        _tap(4, 100), _tap(4, 200),
        _tap(3, 110), _tap(3, 210),
        _tap(1, 150),
        _tap(5, 120), _tap(5, 220),
        _tap(6, 130),
    ]
    rows = compute_results(riders, taps)
    podium = group_podiums(rows, categories)

    assert [group.category for group in podium] == ["Men", "Women", "Без категории", "Ветераны"]
    men = podium[0]
    assert [r.bib for r in men.riders] == [4, 3, 1]
    assert [r.bib for r in podium[1].riders] == [5]


def test_no_podium_before_first_lap():
    categories = [Category(id="c1", race_id="r1", name="Open", order=0)]
    riders = [Rider(bib=b, name=f"R{b}", category="Open", category_id="c1") for b in (1, 2)]
    rows = compute_results(riders, [])
    assert group_podiums(rows, categories) == ()


def test_podium_size_is_configurable():
    riders = [Rider(bib=b, name=f"R{b}", category="Open") for b in range(1, 7)]
    taps = [_tap(b, 100 + b) for b in range(1, 7)]
    rows = compute_results(riders, taps)
    podium = group_podiums(rows, [], podium_size=5)
    assert [r.bib for r in podium[0].riders] == [1, 2, 3, 4, 5]
