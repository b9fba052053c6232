"""Race state projection (pure, no store access).

``project_state`` builds the one snapshot that is both returned to readers
and broadcast to subscribers; it only reads its arguments, and equal inputs
always yield an equal payload.

``project_laps_remaining`` is the heads-up "laps to go" view. Its leader is
the first rider (in roster order) holding the highest lap count; it does not
look at tap times, unlike ``ranking.compute_results``. A lap tie therefore
can name a different leader here than position 1 on the results table. That
difference is kept on purpose: the display only needs a lap count.
"""
from __future__ import annotations

from typing import AbstractSet, Iterable, Sequence

from .config import DEFAULT_CONFIG, EngineConfig
from .ledger import newest_first
from .models import (
    Category,
    Leader,
    LapsRemaining,
    Participant,
    Race,
    Rider,
    StatePayload,
    TapEvent,
)
from .ranking import category_display_order


def resolve_category_name(
    categories: Iterable[Category],
    category_id: str | None,
    uncategorized_label: str = DEFAULT_CONFIG.uncategorized_label,
) -> str:
    if not category_id:
        return uncategorized_label
    for category in categories:
        if category.id == category_id:
            return category.name
    return uncategorized_label


def project_riders(
    categories: Sequence[Category],
    participants: Iterable[Participant],
    issued_ids: AbstractSet[str],
    uncategorized_label: str = DEFAULT_CONFIG.uncategorized_label,
) -> tuple[Rider, ...]:
    """Issued participants only, by bib; unissued ones stay off timing views."""
    riders = []
    for participant in sorted(participants, key=lambda p: (p.bib, p.id)):
        if participant.id not in issued_ids:
            continue
        riders.append(
            Rider(
                bib=participant.bib,
                name=participant.name,
                category=resolve_category_name(
                    categories, participant.category_id, uncategorized_label
                ),
                category_id=participant.category_id,
            )
        )
    return tuple(riders)


def project_state(
    race: Race | None,
    categories: Iterable[Category],
    participants: Iterable[Participant],
    tap_events: Iterable[TapEvent],
    issued_ids: AbstractSet[str],
    config: EngineConfig = DEFAULT_CONFIG,
) -> StatePayload:
    if race is None:
        return StatePayload.empty()
    ordered_categories = tuple(category_display_order(categories))
    riders = project_riders(
        ordered_categories, participants, issued_ids, config.uncategorized_label
    )
    return StatePayload(
        race=race.summary(),
        categories=ordered_categories,
        riders=riders,
        tap_events=tuple(newest_first(tap_events)),
    )


def project_laps_remaining(
    state: StatePayload, config: EngineConfig = DEFAULT_CONFIG
) -> LapsRemaining:
    lap_counts: dict[int, int] = {}
    for event in state.tap_events:
        lap_counts[event.bib] = lap_counts.get(event.bib, 0) + 1

    leader: Rider | None = None
    leader_laps = -1
    for rider in state.riders:
        laps = lap_counts.get(rider.bib, 0)
        # strict ">" keeps the first-seen rider on ties
        if laps > leader_laps:
            leader = rider
            leader_laps = laps

    if leader is None:
        return LapsRemaining(race=state.race)

    total_laps = state.race.total_laps if state.race is not None else 0
    return LapsRemaining(
        race=state.race,
        leader=Leader(
            bib=leader.bib,
            name=leader.name or config.rider_fallback_name(leader.bib),
            laps_completed=leader_laps,
            laps_remaining=max(total_laps - leader_laps, 0),
        ),
    )


__all__ = [
    "project_laps_remaining",
    "project_riders",
    "project_state",
    "resolve_category_name",
]
