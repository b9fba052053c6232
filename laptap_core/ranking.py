"""Lap-race ranking engine (lap count comparator + gap strings + podiums).

Single source of truth for the leaderboard and results table:
- Comparator: more laps first; on equal laps the earlier last tap wins,
  riders without any tap go after riders with one; bib ascending settles
  everything else, so the order never depends on input order.
- Gap: whole laps behind the leader, or seconds behind on the same lap.
- Podiums: top riders per category, in category display order.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from .config import UNCATEGORIZED_LABEL
from .models import Category, PodiumGroup, ResultRow, ResultsTable, Rider, StatePayload, TapEvent

NO_GAP = "—"
ZERO_GAP = "+0с"


class LapPluralizer(Protocol):
    def __call__(self, count: int) -> str:
        ...


def russian_laps(count: int) -> str:
    # Matches the leaderboard wording: only 1 is singular, 2-4 paucal.
    if count == 1:
        return "круг"
    if count < 5:
        return "круга"
    return "кругов"


@dataclass
class _Tally:
    laps: int = 0
    last_tap: int | None = None


def tally_laps(tap_events: Iterable[TapEvent]) -> dict[int, _Tally]:
    tallies: dict[int, _Tally] = {}
    for event in tap_events:
        tally = tallies.setdefault(event.bib, _Tally())
        tally.laps += 1
        if tally.last_tap is None or event.timestamp > tally.last_tap:
            tally.last_tap = event.timestamp
    return tallies


def result_sort_key(row: ResultRow) -> tuple[int, int, int, int]:
    return (
        -row.laps,
        0 if row.last_tap is not None else 1,
        row.last_tap if row.last_tap is not None else 0,
        row.bib,
    )


def format_gap(
    leader: ResultRow | None,
    row: ResultRow,
    pluralize: LapPluralizer = russian_laps,
) -> str:
    """Deficit of ``row`` to ``leader`` as a display string.

    Examples:
        - leader on 0 laps -> "—"
        - two laps down -> "-2 круга"
        - same lap, 0.1 s later -> "+0.10с"
        - same lap, 12.34 s later -> "+12.3с"
    """
    if leader is None or leader.laps == 0:
        return NO_GAP

    lap_delta = leader.laps - row.laps
    if lap_delta > 0:
        return f"-{lap_delta} {pluralize(lap_delta)}"

    if leader.last_tap is None or row.last_tap is None:
        return ZERO_GAP

    delta_ms = row.last_tap - leader.last_tap
    if delta_ms <= 0:
        return ZERO_GAP

    seconds = delta_ms / 1000
    formatted = f"{seconds:.1f}" if seconds >= 10 else f"{seconds:.2f}"
    return f"+{formatted}с"


def compute_results(
    riders: Sequence[Rider],
    tap_events: Iterable[TapEvent],
    pluralize: LapPluralizer = russian_laps,
) -> tuple[ResultRow, ...]:
    """
    Rank every rider, including those without a single tap.

    Args:
      riders: issued riders; taps for bibs outside this list are ignored.
      tap_events: the race's tap history, in any order.
      pluralize: lap-count wording used in gap strings.
    """
    tallies = tally_laps(tap_events)
    unranked: list[ResultRow] = []
    for rider in riders:
        tally = tallies.get(rider.bib) or _Tally()
        unranked.append(
            ResultRow(
                position=0,
                bib=rider.bib,
                name=rider.name,
                category=rider.category,
                laps=tally.laps,
                last_tap=tally.last_tap,
                gap=NO_GAP,
            )
        )

    unranked.sort(key=result_sort_key)
    leader = unranked[0] if unranked else None
    return tuple(
        ResultRow(
            position=index + 1,
            bib=row.bib,
            name=row.name,
            category=row.category,
            laps=row.laps,
            last_tap=row.last_tap,
            gap=format_gap(leader, row, pluralize),
        )
        for index, row in enumerate(unranked)
    )


def category_display_order(categories: Iterable[Category]) -> list[Category]:
    return sorted(categories, key=lambda c: (c.order, c.name))


def group_podiums(
    rows: Sequence[ResultRow],
    categories: Iterable[Category],
    *,
    uncategorized_label: str = UNCATEGORIZED_LABEL,
    podium_size: int = 3,
) -> tuple[PodiumGroup, ...]:
    """Top ``podium_size`` riders per category.

    Buckets follow the categories' display order; names that are not in the
    category list (the uncategorized bucket, stale names) come last,
    alphabetically. A race whose leader has no laps yet has no podium.
    """
    if not rows:
        return ()
    leader = min(rows, key=result_sort_key)
    if leader.laps == 0:
        return ()

    buckets: dict[str, list[ResultRow]] = {}
    for row in rows:
        buckets.setdefault(row.category or uncategorized_label, []).append(row)

    known = [c.name for c in category_display_order(categories)]
    known_set = set(known)
    extra = sorted((name for name in buckets if name not in known_set), key=lambda n: (n.casefold(), n))

    groups: list[PodiumGroup] = []
    seen: set[str] = set()
    for name in [*known, *extra]:
        if name in seen or name not in buckets:
            continue
        seen.add(name)
        top = sorted(buckets[name], key=result_sort_key)[: max(1, podium_size)]
        groups.append(PodiumGroup(category=name, riders=tuple(top)))
    return tuple(groups)


def build_results_table(
    state: StatePayload,
    *,
    uncategorized_label: str = UNCATEGORIZED_LABEL,
    podium_size: int = 3,
    pluralize: LapPluralizer = russian_laps,
) -> ResultsTable:
    rows = compute_results(state.riders, state.tap_events, pluralize)
    podium = group_podiums(
        rows,
        state.categories,
        uncategorized_label=uncategorized_label,
        podium_size=podium_size,
    )
    return ResultsTable(rows=rows, podium=podium)


__all__ = [
    "LapPluralizer",
    "NO_GAP",
    "ZERO_GAP",
    "build_results_table",
    "category_display_order",
    "compute_results",
    "format_gap",
    "group_podiums",
    "result_sort_key",
    "russian_laps",
    "tally_laps",
]
