"""Base model and timestamp helpers.

Every camelCase document model inherits from :class:`VsmBaseModel`
which provides:

* ``alias_generator=to_camel`` so camelCase keys from the translator,
  the solver and the state record map to snake_case fields.
* A ``model_validator(mode="before")`` that drops ``None`` and empty
  string values so the field default is used.
* A ``raw`` dict that captures the original mapping.

Timestamps in the state record are persisted as ISO-8601 strings; the
:data:`UtcTimestamp` annotated type accepts those as well as epoch
seconds/milliseconds and datetimes, and always yields an aware UTC
datetime.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_timestamp(value: Any) -> datetime | None:
    """Convert an ISO string, epoch number (s or ms) or datetime to an aware UTC datetime.

    Returns ``None`` when the value is ``None`` or empty.  Raises
    :class:`ValueError` for unparseable strings.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        parsed = datetime.fromtimestamp(ts, tz=UTC)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """Render *value* the way timestamps are stored in the state record."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


UtcTimestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces stored timestamps to aware UTC datetimes."""


class VsmBaseModel(BaseModel):
    """Base for camelCase document models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original mapping."""

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_values(cls, values: Any) -> Any:
        """Drop ``None``/empty-string values and stash the raw mapping."""
        if not isinstance(values, dict):
            return values
        cleaned = {key: value for key, value in values.items() if value is not None and value != ""}
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned
