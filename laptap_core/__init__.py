from .admission import TapAdmissionControl
from .broadcaster import (
    Broadcaster,
    RaceEvent,
    RaceUpdated,
    TapCancelled,
    TapRecorded,
    to_push_message,
)
from .config import DEFAULT_CONFIG, EngineConfig, UNCATEGORIZED_LABEL
from .errors import ConflictError, NotFoundError, RaceError, ValidationError
from .ledger import TapLedger, now_ms
from .models import (
    Category,
    LapsRemaining,
    Leader,
    Participant,
    PodiumGroup,
    PublicRaceSummary,
    Race,
    RaceDetails,
    RaceSummary,
    ResultRow,
    ResultsTable,
    Rider,
    StatePayload,
    TapEvent,
    TapOutcome,
)
from .projection import project_laps_remaining, project_state
from .ranking import (
    build_results_table,
    compute_results,
    format_gap,
    group_podiums,
    russian_laps,
)
from .service import RaceService
from .store import InMemoryRaceStore, RaceStore
from .updates import CLEAR, UNCHANGED, Clear, SetTo, Unchanged, field_update_from
from .validation import InputSanitizer, normalize_slug

__all__ = [
    "Broadcaster",
    "CLEAR",
    "Category",
    "Clear",
    "ConflictError",
    "DEFAULT_CONFIG",
    "EngineConfig",
    "InMemoryRaceStore",
    "InputSanitizer",
    "LapsRemaining",
    "Leader",
    "NotFoundError",
    "Participant",
    "PodiumGroup",
    "PublicRaceSummary",
    "Race",
    "RaceDetails",
    "RaceError",
    "RaceEvent",
    "RaceService",
    "RaceStore",
    "RaceSummary",
    "RaceUpdated",
    "ResultRow",
    "ResultsTable",
    "Rider",
    "SetTo",
    "StatePayload",
    "TapAdmissionControl",
    "TapCancelled",
    "TapEvent",
    "TapLedger",
    "TapOutcome",
    "TapRecorded",
    "UNCATEGORIZED_LABEL",
    "UNCHANGED",
    "Unchanged",
    "ValidationError",
    "build_results_table",
    "compute_results",
    "field_update_from",
    "format_gap",
    "group_podiums",
    "normalize_slug",
    "now_ms",
    "project_laps_remaining",
    "project_state",
    "russian_laps",
    "to_push_message",
]
