"""Error taxonomy for the race engine.

Every rejection is raised where it is detected and carries a human-readable
reason. Transport layers map ``status_code`` onto their own responses.
"""
from __future__ import annotations


class RaceError(Exception):
    """Base class for all locally detected engine failures."""

    kind: str = "error"
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "message": self.message, "statusCode": self.status_code}


class NotFoundError(RaceError):
    """Race, category, participant or tap event is absent (or in another race)."""

    kind = "not_found"
    status_code = 404


class ValidationError(RaceError):
    """Malformed input: bib, laps, cooldown, name, slug, timestamps."""

    kind = "validation"
    status_code = 400


class ConflictError(RaceError):
    """State conflict: duplicate bib, or tapping a bib that was never issued."""

    kind = "conflict"
    status_code = 409


__all__ = ["RaceError", "NotFoundError", "ValidationError", "ConflictError"]
