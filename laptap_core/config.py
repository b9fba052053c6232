"""Engine tunables."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

UNCATEGORIZED_LABEL = "Без категории"


class EngineConfig(BaseModel):
    """Display labels and limits shared by projection, ranking and the service."""

    model_config = ConfigDict(frozen=True)

    uncategorized_label: str = Field(
        UNCATEGORIZED_LABEL, min_length=1, description="Bucket name for riders without a category"
    )
    unknown_rider_name: str = Field(
        "Гонщик #{bib}", description="Leader name fallback, formatted with the bib"
    )
    podium_size: int = Field(3, ge=1, le=50, description="Riders per category podium")
    slug_max_length: int = Field(60, ge=8, le=200)

    def rider_fallback_name(self, bib: int) -> str:
        return self.unknown_rider_name.format(bib=bib)


DEFAULT_CONFIG = EngineConfig()

__all__ = ["DEFAULT_CONFIG", "EngineConfig", "UNCATEGORIZED_LABEL"]
