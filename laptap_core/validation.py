"""
Input validation schemas using Pydantic v2
Validates every mutating engine operation before it touches the store
"""

import logging
import math
import re
import unicodedata
from datetime import date, datetime, timezone
from typing import Any, List, Literal, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError
from .updates import FieldUpdate, field_update_from

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class InputLimits:
    """Upper bounds for free-form input"""

    RACE_NAME_MAX = 200
    SLUG_INPUT_MAX = 100
    CATEGORY_NAME_MAX = 100
    DESCRIPTION_MAX = 500
    PARTICIPANT_NAME_MAX = 255
    TEAM_MAX = 255
    MAX_LAPS = 10000
    MAX_COOLDOWN_SECONDS = 86400
    MAX_BIB = 1_000_000


class InputSanitizer:
    """Utility class for input sanitization"""

    _CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

    @staticmethod
    def sanitize_string(value: Any, max_length: int = 255) -> str:
        """Sanitize string input"""
        if not isinstance(value, str):
            value = str(value)

        # Remove null bytes and other control characters
        value = InputSanitizer._CONTROL_CHARS.sub("", value)

        # Strip whitespace
        value = value.strip()

        # Limit length
        return value[:max_length].strip()

    @staticmethod
    def sanitize_optional(value: Any, max_length: int = 255) -> Optional[str]:
        """Sanitize a nullable string; blank collapses to None"""
        if value is None:
            return None
        cleaned = InputSanitizer.sanitize_string(value, max_length)
        return cleaned or None


def normalize_slug(value: Optional[str], max_length: Optional[int] = None) -> str:
    """Turn arbitrary text into a URL-safe slug.

    Examples:
        - "Spring Cup 2024" -> "spring-cup-2024"
        - "  --Ночная гонка!-- " -> "ночная-гонка"
        - "" -> ""
    """
    if not value:
        return ""
    normalized = unicodedata.normalize("NFKD", value).lower()
    normalized = re.sub(r"[\W_]+", "-", normalized)
    normalized = re.sub(r"-+", "-", normalized).strip("-")
    if max_length is not None:
        normalized = normalized[:max_length].strip("-")
    return normalized


def _to_epoch_ms(value: Any, message: str) -> int:
    if isinstance(value, bool):
        raise ValueError(message)
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValueError(message)
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, date):
        return _to_epoch_ms(datetime(value.year, value.month, value.day), message)
    if isinstance(value, str):
        stripped = value.strip()
        try:
            return int(stripped, 10)
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(stripped.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError(message)
        return _to_epoch_ms(parsed, message)
    raise ValueError(message)


class _Input(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class _UpdateInput(_Input):
    """Partial update: only the keys the caller sent are applied."""

    def field_update(self, name: str) -> FieldUpdate[Any]:
        sent = {key: getattr(self, key) for key in self.model_fields_set}
        return field_update_from(sent, name)

    def has_changes(self) -> bool:
        return bool(self.model_fields_set)


def _require_name(value: Any, message: str, max_length: int) -> str:
    if value is None:
        raise ValueError(message)
    cleaned = InputSanitizer.sanitize_string(value, max_length)
    if not cleaned:
        raise ValueError(message)
    return cleaned


def _check_laps(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValueError("Количество кругов должно быть больше нуля")
    laps = int(value)
    if laps <= 0 or laps > InputLimits.MAX_LAPS:
        raise ValueError("Количество кругов должно быть больше нуля")
    return laps


def _check_cooldown(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValueError("Кулдаун отметок должен быть неотрицательным")
    seconds = int(value)
    if seconds < 0 or seconds > InputLimits.MAX_COOLDOWN_SECONDS:
        raise ValueError("Кулдаун отметок должен быть неотрицательным")
    return seconds


def _check_bib(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("Стартовый номер должен быть положительным числом")
    if isinstance(value, str):
        try:
            value = int(value.strip(), 10)
        except ValueError:
            raise ValueError("Стартовый номер должен быть положительным числом")
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValueError("Стартовый номер должен быть положительным числом")
    bib = int(value)
    if bib <= 0 or bib > InputLimits.MAX_BIB:
        raise ValueError("Стартовый номер должен быть положительным числом")
    return bib


# ==================== RACE ====================


class CreateRaceInput(_Input):
    name: str
    total_laps: int
    slug: Optional[str] = Field(None, description="Explicit slug; derived from name when blank")
    tap_cooldown_seconds: int = 0

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> str:
        return _require_name(v, "Название гонки обязательно", InputLimits.RACE_NAME_MAX)

    @field_validator("total_laps", mode="before")
    @classmethod
    def validate_total_laps(cls, v: Any) -> int:
        return _check_laps(v)

    @field_validator("tap_cooldown_seconds", mode="before")
    @classmethod
    def validate_cooldown(cls, v: Any) -> int:
        if v is None:
            return 0
        return _check_cooldown(v)

    @field_validator("slug", mode="before")
    @classmethod
    def validate_slug(cls, v: Any) -> Optional[str]:
        return InputSanitizer.sanitize_optional(v, InputLimits.SLUG_INPUT_MAX)


class UpdateRaceInput(_UpdateInput):
    name: Optional[str] = None
    total_laps: Optional[int] = None
    tap_cooldown_seconds: Optional[int] = None
    slug: Optional[str] = None
    started_at: Optional[int] = None

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> str:
        return _require_name(v, "Название гонки обязательно", InputLimits.RACE_NAME_MAX)

    @field_validator("total_laps", mode="before")
    @classmethod
    def validate_total_laps(cls, v: Any) -> int:
        return _check_laps(v)

    @field_validator("tap_cooldown_seconds", mode="before")
    @classmethod
    def validate_cooldown(cls, v: Any) -> int:
        return _check_cooldown(v)

    @field_validator("slug", mode="before")
    @classmethod
    def validate_slug(cls, v: Any) -> Optional[str]:
        return InputSanitizer.sanitize_optional(v, InputLimits.SLUG_INPUT_MAX)

    @field_validator("started_at", mode="before")
    @classmethod
    def validate_started_at(cls, v: Any) -> Optional[int]:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return _to_epoch_ms(v, "Некорректное время старта гонки")


# ==================== CATEGORY ====================


class CreateCategoryInput(_Input):
    name: str
    description: Optional[str] = None
    order: Optional[int] = Field(None, ge=0, description="Defaults to max(order) + 1")

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> str:
        return _require_name(v, "Имя категории обязательно", InputLimits.CATEGORY_NAME_MAX)

    @field_validator("description", mode="before")
    @classmethod
    def validate_description(cls, v: Any) -> Optional[str]:
        return InputSanitizer.sanitize_optional(v, InputLimits.DESCRIPTION_MAX)


class UpdateCategoryInput(_UpdateInput):
    name: Optional[str] = None
    description: Optional[str] = None
    order: Optional[int] = Field(None, ge=0)

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> Optional[str]:
        # blank keeps the stored name
        return InputSanitizer.sanitize_optional(v, InputLimits.CATEGORY_NAME_MAX)

    @field_validator("description", mode="before")
    @classmethod
    def validate_description(cls, v: Any) -> Optional[str]:
        return InputSanitizer.sanitize_optional(v, InputLimits.DESCRIPTION_MAX)


# ==================== PARTICIPANT ====================


class CreateParticipantInput(_Input):
    bib: int
    name: str
    category_id: Optional[str] = None
    team: Optional[str] = None
    birth_date: Optional[int] = None

    @field_validator("bib", mode="before")
    @classmethod
    def validate_bib(cls, v: Any) -> int:
        return _check_bib(v)

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> str:
        return _require_name(v, "Имя участника обязательно", InputLimits.PARTICIPANT_NAME_MAX)

    @field_validator("category_id", mode="before")
    @classmethod
    def validate_category_id(cls, v: Any) -> Optional[str]:
        return InputSanitizer.sanitize_optional(v, 64)

    @field_validator("team", mode="before")
    @classmethod
    def validate_team(cls, v: Any) -> Optional[str]:
        return InputSanitizer.sanitize_optional(v, InputLimits.TEAM_MAX)

    @field_validator("birth_date", mode="before")
    @classmethod
    def validate_birth_date(cls, v: Any) -> Optional[int]:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return _to_epoch_ms(v, "Некорректная дата рождения")


class UpdateParticipantInput(_UpdateInput):
    bib: Optional[int] = None
    name: Optional[str] = None
    category_id: Optional[str] = None
    team: Optional[str] = None
    birth_date: Optional[int] = None

    @field_validator("bib", mode="before")
    @classmethod
    def validate_bib(cls, v: Any) -> int:
        return _check_bib(v)

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> Optional[str]:
        # blank keeps the stored name
        return InputSanitizer.sanitize_optional(v, InputLimits.PARTICIPANT_NAME_MAX)

    @field_validator("team", mode="before")
    @classmethod
    def validate_team(cls, v: Any) -> Optional[str]:
        return InputSanitizer.sanitize_optional(v, InputLimits.TEAM_MAX)

    @field_validator("birth_date", mode="before")
    @classmethod
    def validate_birth_date(cls, v: Any) -> Optional[int]:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return _to_epoch_ms(v, "Некорректная дата рождения")


class RemoveParticipantsInput(_Input):
    ids: List[str]

    @field_validator("ids", mode="before")
    @classmethod
    def validate_ids(cls, v: Any) -> List[str]:
        if not isinstance(v, (list, tuple, set)):
            raise ValueError("Не переданы участники для удаления")
        unique: List[str] = []
        for item in v:
            if not isinstance(item, str) or not item.strip():
                continue
            if item.strip() not in unique:
                unique.append(item.strip())
        if not unique:
            raise ValueError("Не переданы участники для удаления")
        return unique


# ==================== TAPS ====================


class RecordTapInput(_Input):
    bib: int
    source: Literal["manual", "system"] = "manual"
    confirm: bool = False

    @field_validator("bib", mode="before")
    @classmethod
    def validate_bib(cls, v: Any) -> int:
        if isinstance(v, bool):
            raise ValueError("Некорректный номер гонщика")
        if isinstance(v, str):
            try:
                v = int(v.strip(), 10)
            except ValueError:
                raise ValueError("Некорректный номер гонщика")
        if not isinstance(v, (int, float)) or not math.isfinite(v):
            raise ValueError("Некорректный номер гонщика")
        return int(v)

    @field_validator("source", mode="before")
    @classmethod
    def validate_source(cls, v: Any) -> str:
        # Anything other than an explicit "system" is an operator tap.
        return "system" if v == "system" else "manual"


def parse_input(
    model: Type[ModelT], data: Union[ModelT, Mapping[str, Any], None] = None, **kwargs: Any
) -> ModelT:
    """
    Validate raw input against ``model``

    Returns:
        ModelT: Validated input object

    Raises:
        ValidationError: carrying the first failure's message
    """
    if isinstance(data, model) and not kwargs:
        return data
    raw: dict[str, Any] = {}
    if isinstance(data, BaseModel):
        raw.update(data.model_dump(exclude_unset=True))
    elif data is not None:
        raw.update(data)
    raw.update(kwargs)
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        logger.warning(f"{model.__name__} validation failed: {e}")
        first = e.errors()[0]
        ctx_error = (first.get("ctx") or {}).get("error")
        if first.get("type") == "value_error" and ctx_error is not None:
            message = str(ctx_error)
        else:
            location = ".".join(str(part) for part in first.get("loc", ()))
            message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
        raise ValidationError(message) from e


# ==================== EXPORT ====================

__all__ = [
    "CreateCategoryInput",
    "CreateParticipantInput",
    "CreateRaceInput",
    "InputLimits",
    "InputSanitizer",
    "RecordTapInput",
    "RemoveParticipantsInput",
    "UpdateCategoryInput",
    "UpdateParticipantInput",
    "UpdateRaceInput",
    "normalize_slug",
    "parse_input",
]
