"""Downlink frame and frame tag registry."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class FrameTag(enum.IntEnum):
    """First byte of every downlink payload."""

    STATUS_REQUEST = 0x00
    ASSISTANCE_POSITION = 0x01
    ALMANAC_BEGIN = 0x02
    ALMANAC_SEGMENT = 0x03
    ALMANAC_END = 0x04
    ALMANAC_END_COMPRESSED = 0x05
    CLOCK_DELTA = 0x08


@dataclass(frozen=True)
class DownlinkFrame:
    """One downlink, built and discarded per send."""

    port: int
    payload: bytes
    confirmed: bool = False

    @property
    def tag(self) -> FrameTag | None:
        if not self.payload:
            return None
        return FrameTag(self.payload[0])
