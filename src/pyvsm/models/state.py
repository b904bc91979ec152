"""Typed views over the persisted device state record.

The record itself stays a plain nested mapping (it also carries whatever
the translator produces); these models give the rules typed access to
the blocks they read.  Writes go back as camelCase patches.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pyvsm.models._base import UtcTimestamp, VsmBaseModel

_BlockT = TypeVar("_BlockT", bound=VsmBaseModel)


class GnssState(VsmBaseModel):
    """``gnss`` block: assistance position and almanac bookkeeping."""

    assistance_latitude: float | None = None
    assistance_longitude: float | None = None
    last_assistance_update_attempt: UtcTimestamp = None
    almanac_timestamp: UtcTimestamp = None
    last_almanac_download_attempt: UtcTimestamp = None


class VsmState(VsmBaseModel):
    """``vsm`` block: rule-set checksum reported by the device and translator version."""

    rules_crc32: int | str | None = None
    translator_version: str | None = None


class EncodedData(VsmBaseModel):
    """``encodedData`` block: the last raw uplink."""

    port: int | None = None
    hex_encoded: str | None = None
    timestamp: UtcTimestamp = None
    max_size: int | None = None


def read_block(record: Mapping[str, Any], key: str, model: type[_BlockT]) -> _BlockT | None:
    """Parse the single block *key* of *record*.

    Returns ``None`` when the block is missing or not a mapping.  Only this
    block is validated, so malformed values elsewhere in the record are not
    seen.
    """
    block = record.get(key)
    if not isinstance(block, dict):
        return None
    return model.model_validate(block)
