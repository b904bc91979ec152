"""Almanac image model."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AlmanacObject(BaseModel):
    """A fetched almanac image, hex encoded.

    Parameters
    ----------
    almanac_image : str
        Uncompressed image as lowercase hex.
    almanac_compressed : str or None
        Codec-compressed image as hex.  Only present when it was verified
        to round-trip and is strictly smaller than the original.
    fetched_at : datetime
        When the image was downloaded.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    almanac_image: str
    almanac_compressed: str | None = None
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("almanac_image", "almanac_compressed")
    @classmethod
    def _check_hex(cls, value: str | None) -> str | None:
        if value is None:
            return value
        bytes.fromhex(value)
        return value.lower()

    @property
    def is_compressed(self) -> bool:
        return self.almanac_compressed is not None

    @property
    def selected_image(self) -> str:
        """Image to transmit: the compressed form when available."""
        return self.almanac_compressed if self.almanac_compressed is not None else self.almanac_image

    @property
    def image_size(self) -> int:
        return len(self.almanac_image) // 2
