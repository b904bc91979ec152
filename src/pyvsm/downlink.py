"""Downlink frame builders and chunked almanac delivery.

Payload layouts (all integers big-endian):

=====  ====  ===========================================================
Tag    Port  Payload
=====  ====  ===========================================================
0x00   15    ``00`` - ask the device to report its rule-set checksum
0x01   21    ``01 LAT16 LNG16`` - assistance position
0x02   21    ``02 <chunk>`` - begin almanac
0x03   21    ``03 <chunk>`` - almanac segment
0x04   21    ``04 <chunk>`` - end of uncompressed almanac
0x05   21    ``05 <chunk>`` - end of compressed almanac
0x08   21    ``08 <int32 seconds>`` - clock correction
=====  ====  ===========================================================

Almanac frames carry no sequence number.  They are sent one at a time,
each confirmed and spaced by a pacing delay, which makes in-order
arrival likely but does not guarantee it.
"""

from __future__ import annotations

import asyncio
import logging
import struct
from typing import Protocol

from pyvsm._constants import (
    COMMAND_PORT,
    DEFAULT_PACING_DELAY_S,
    FRAME_OVERHEAD,
    MIN_FRAME_BUDGET,
    STATUS_PORT,
)
from pyvsm.exceptions import ProtocolAbort
from pyvsm.models.almanac import AlmanacObject
from pyvsm.models.downlink import DownlinkFrame, FrameTag

_logger = logging.getLogger(__name__)


class Downlinker(Protocol):
    """Downlink send boundary.

    ``send`` returns once the network side has accepted the frame and
    raises on failure.
    """

    async def send(self, device_id: str, port: int, payload: bytes, confirmed: bool) -> None: ...


async def send_frame(downlinker: Downlinker, device_id: str, frame: DownlinkFrame) -> None:
    await downlinker.send(device_id, frame.port, frame.payload, frame.confirmed)


# ------------------------------------------------------------------
# Single-frame builders
# ------------------------------------------------------------------


def status_request_frame() -> DownlinkFrame:
    return DownlinkFrame(port=STATUS_PORT, payload=bytes([FrameTag.STATUS_REQUEST]))


def clock_delta_frame(delta_seconds: int) -> DownlinkFrame:
    """Clock correction by *delta_seconds* (signed 32-bit).

    Raises :class:`struct.error` when the delta does not fit.
    """
    return DownlinkFrame(port=COMMAND_PORT, payload=struct.pack(">Bi", FrameTag.CLOCK_DELTA, delta_seconds))


def encode_assistance_position(latitude: float, longitude: float) -> tuple[int, int]:
    """Scale a position to the two 16-bit words sent to the device."""
    lat16 = round(2048 * latitude / 90) & 0xFFFF
    lng16 = round(2048 * longitude / 180) & 0xFFFF
    return lat16, lng16


def assistance_position_frame(latitude: float, longitude: float) -> DownlinkFrame:
    lat16, lng16 = encode_assistance_position(latitude, longitude)
    return DownlinkFrame(
        port=COMMAND_PORT,
        payload=struct.pack(">BHH", FrameTag.ASSISTANCE_POSITION, lat16, lng16),
    )


# ------------------------------------------------------------------
# Chunked almanac delivery
# ------------------------------------------------------------------


def frame_budget(max_payload_size: int) -> int:
    """Almanac bytes per frame once MAC command headroom is reserved.

    Raises
    ------
    ProtocolAbort
        If the remaining budget is below the useful minimum.
    """
    budget = max_payload_size - FRAME_OVERHEAD
    if budget < MIN_FRAME_BUDGET:
        raise ProtocolAbort(
            f"Frame budget {budget} bytes (max payload {max_payload_size}) is too small for an almanac download"
        )
    return budget


def chunk_almanac(almanac: AlmanacObject, max_payload_size: int) -> list[DownlinkFrame]:
    """Split the selected almanac image into tagged, confirmed frames.

    The first frame is tagged ``0x02``, the last ``0x05`` (compressed) or
    ``0x04`` (uncompressed), and every frame in between ``0x03``.  An image
    that fits in a single chunk is sent as a ``0x02`` frame carrying the
    data followed by a tag-only end frame, so the device always sees both
    markers.
    """
    budget = frame_budget(max_payload_size)
    image_hex = almanac.selected_image
    step = 2 * budget
    chunks = [image_hex[i : i + step] for i in range(0, len(image_hex), step)]
    if not chunks:
        return []

    end_tag = FrameTag.ALMANAC_END_COMPRESSED if almanac.is_compressed else FrameTag.ALMANAC_END
    if len(chunks) == 1:
        tagged = [(FrameTag.ALMANAC_BEGIN, chunks[0]), (end_tag, "")]
    else:
        tagged = [(FrameTag.ALMANAC_BEGIN, chunks[0])]
        tagged.extend((FrameTag.ALMANAC_SEGMENT, chunk) for chunk in chunks[1:-1])
        tagged.append((end_tag, chunks[-1]))

    return [
        DownlinkFrame(port=COMMAND_PORT, payload=bytes([tag]) + bytes.fromhex(chunk), confirmed=True)
        for tag, chunk in tagged
    ]


async def deliver_almanac(
    downlinker: Downlinker,
    device_id: str,
    almanac: AlmanacObject,
    max_payload_size: int,
    *,
    pacing_delay: float = DEFAULT_PACING_DELAY_S,
) -> int:
    """Send all almanac frames in order.

    Returns
    -------
    int
        Number of frames sent.

    Raises
    ------
    ProtocolAbort
        If the frame budget is too small (nothing is sent) or a send
        fails; frames after the failed one are dropped.
    """
    frames = chunk_almanac(almanac, max_payload_size)
    kind = "Compressed" if almanac.is_compressed else "Full"
    _logger.info(
        "%s almanac for %s: %d bytes in %d downlinks",
        kind,
        device_id,
        len(almanac.selected_image) // 2,
        len(frames),
    )

    for index, frame in enumerate(frames):
        if index and pacing_delay > 0:
            await asyncio.sleep(pacing_delay)
        try:
            await send_frame(downlinker, device_id, frame)
        except Exception as exc:
            raise ProtocolAbort(
                f"Almanac downlink {index + 1} of {len(frames)} to {device_id} failed: {exc}",
                device_id=device_id,
                frames_sent=index,
            ) from exc
        _logger.debug("%s almanac downlink %d of %d enqueued for %s", kind, index + 1, len(frames), device_id)

    return len(frames)
