"""Avatar skin configuration stored on the profile."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from skillquest.progression.errors import StoreError, ValidationError


class SkinConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    schema_version: Literal[1] = 1
    body_color: str = Field(min_length=1, max_length=32)
    hair_style: str = Field(min_length=1, max_length=64)
    hair_color: str = Field(min_length=1, max_length=32)
    outfit: str = Field(min_length=1, max_length=64)
    accessory: str | None = Field(default=None, max_length=64)


def parse_skin(value: SkinConfig | dict[str, Any]) -> SkinConfig:
    """Validate caller input into a SkinConfig, raising the engine's ValidationError."""
    if isinstance(value, SkinConfig):
        return value
    try:
        return SkinConfig.model_validate(value)
    except PydanticValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "config" for err in exc.errors())
        raise ValidationError(f"invalid skin config: {fields}") from exc


def load_stored_skin(value: dict[str, Any] | None) -> SkinConfig | None:
    if value is None:
        return None
    try:
        return SkinConfig.model_validate(value)
    except PydanticValidationError as exc:
        raise StoreError("stored skin config is malformed") from exc
