"""Wire shapes of the state payload and push messages.

These mirror what ``as_dict()`` on the models produces and what the transport
sends to clients. Keys are camelCase because browsers consume them directly.
"""
from __future__ import annotations

from typing import List, Literal, Optional, TypedDict, Union

TapSource = Literal["manual", "system"]


class RaceSummaryDict(TypedDict):
    id: str
    slug: Optional[str]
    name: str
    totalLaps: int
    tapCooldownSeconds: int
    startedAt: Optional[int]  # epoch ms, None until the race is started


class CategoryDict(TypedDict, total=False):
    id: str
    name: str
    description: Optional[str]
    order: int


class RiderDict(TypedDict, total=False):
    bib: int
    name: str
    category: str  # resolved name, falls back to the uncategorized label
    categoryId: Optional[str]


class TapEventDict(TypedDict, total=False):
    id: str
    bib: int
    name: str
    category: str
    categoryId: Optional[str]
    timestamp: int
    source: TapSource


class StatePayloadDict(TypedDict):
    race: Optional[RaceSummaryDict]
    categories: List[CategoryDict]
    riders: List[RiderDict]
    tapEvents: List[TapEventDict]


class TapRecordedMessage(TypedDict):
    raceId: str
    event: TapEventDict


class TapCancelledMessage(TypedDict):
    raceId: str
    eventId: str


class RaceStateMessage(TypedDict):
    raceId: str
    state: StatePayloadDict


PushBody = Union[TapRecordedMessage, TapCancelledMessage, RaceStateMessage]
