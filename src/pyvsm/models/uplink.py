"""Validated inbound uplink event.

Every integration converts what it receives into an :class:`Uplink`
before handing it to the service.  Validation failures are reported as
:class:`pyvsm.exceptions.VsmValidationError`.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, StrictBytes, StrictInt, StrictStr, field_validator


class Uplink(BaseModel):
    """A raw uplink as delivered by the network server integration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    device_id: StrictStr = Field(..., description="Device identifier (DevEUI)")
    port: StrictInt = Field(..., ge=0, le=255)
    payload: StrictBytes
    received_at: datetime | None = Field(default=None, description="Network server receive time")
    latitude: float | None = Field(default=None, description="Observer (gateway) latitude")
    longitude: float | None = Field(default=None, description="Observer (gateway) longitude")
    max_size: int | None = Field(default=None, description="Largest downlink payload the network accepts")

    @field_validator("device_id")
    @classmethod
    def _normalize_device_id(cls, value: str) -> str:
        device_id = value.strip()
        if not device_id:
            raise ValueError("device_id must be non-empty")
        return device_id

    @field_validator("received_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
