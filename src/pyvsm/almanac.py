"""Almanac fetch-and-validate cache.

A single slot holds the last almanac downloaded from the solver service.
It is served from memory until ``ttl`` seconds have passed since the
successful fetch; upstream content changes do not invalidate it.

On every fetch the image is also run through :mod:`pyvsm.codec`.  The
compressed form is only kept when it decodes back to the exact original
bytes *and* is strictly smaller; otherwise devices receive the plain
image.  Codec problems never turn a successful fetch into a failure.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pyvsm import codec
from pyvsm._constants import ALMANAC_PATH, DEFAULT_ALMANAC_CACHE_TTL_S, SOLVER_BASE_URL
from pyvsm._transport import Transport
from pyvsm.exceptions import CodecIntegrityError, VsmUpstreamError
from pyvsm.models.almanac import AlmanacObject

_logger = logging.getLogger(__name__)


def compress_verified(image: bytes) -> bytes:
    """Compress *image* and prove the result is usable.

    Raises
    ------
    CodecIntegrityError
        If the compressed form is not smaller or does not round-trip.
    """
    compressed = codec.encode(image)
    if len(compressed) >= len(image):
        raise CodecIntegrityError(
            f"Compressed length {len(compressed)} is not smaller than original {len(image)}"
        )
    if codec.decode(compressed, len(image)) != image:
        raise CodecIntegrityError("Decompression generated a different image")
    return compressed


def build_almanac(image: bytes, *, fetched_at: datetime | None = None) -> AlmanacObject:
    """Wrap a raw almanac image, attaching the compressed form when it verifies."""
    compressed_hex: str | None = None
    try:
        compressed = compress_verified(image)
    except CodecIntegrityError as exc:
        _logger.warning("Almanac compression omitted: %s", exc)
    else:
        compressed_hex = compressed.hex()
        _logger.info("Almanac compressed to %d bytes, original %d bytes", len(compressed), len(image))

    return AlmanacObject(
        almanac_image=image.hex(),
        almanac_compressed=compressed_hex,
        fetched_at=fetched_at or datetime.now(UTC),
    )


def _extract_image(response: Any) -> bytes | None:
    result = response.get("result") if isinstance(response, dict) else None
    encoded = result.get("almanac_image") if isinstance(result, dict) else None
    if not isinstance(encoded, str) or not encoded:
        return None
    try:
        image = base64.b64decode(encoded)
    except (binascii.Error, ValueError):
        _logger.warning("Almanac image is not valid base64")
        return None
    return image or None


class AlmanacCache:
    """Single-slot almanac cache with TTL and single-flight fetching.

    Parameters
    ----------
    transport : Transport
        HTTP transport used for the almanac GET.
    api_key : str or None
        Authorization header value.  Without it nothing is fetched.
    base_url : str
        Almanac service base URL.
    ttl : float
        Seconds a successful fetch is served from memory.
    clock : callable
        Monotonic clock in seconds; injectable for tests.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        api_key: str | None,
        base_url: str = SOLVER_BASE_URL,
        ttl: float = DEFAULT_ALMANAC_CACHE_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}{ALMANAC_PATH}"
        self._ttl = ttl
        self._clock = clock
        self._entry: AlmanacObject | None = None
        self._stored_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def age(self) -> float | None:
        """Seconds since the cached almanac was fetched, or ``None`` when empty."""
        if self._stored_at is None:
            return None
        return self._clock() - self._stored_at

    def _fresh(self) -> AlmanacObject | None:
        age = self.age
        if self._entry is not None and age is not None and age < self._ttl:
            return self._entry
        return None

    def invalidate(self) -> None:
        """Drop the cached almanac; the next load fetches again."""
        self._entry = None
        self._stored_at = None

    async def load(self) -> AlmanacObject | None:
        """Return the cached almanac, fetching it on a miss.

        Returns ``None`` when the fetch fails; the cache is left untouched
        in that case.
        """
        cached = self._fresh()
        if cached is not None:
            return cached

        async with self._lock:
            # Another caller may have filled the slot while we waited.
            cached = self._fresh()
            if cached is not None:
                return cached
            return await self._fetch()

    async def _fetch(self) -> AlmanacObject | None:
        if not self._api_key:
            _logger.debug("No API key configured; almanac not fetched")
            return None

        try:
            response = await self._transport.get_json(self._url, api_key=self._api_key)
        except VsmUpstreamError as exc:
            _logger.warning("Almanac fetch failed: %s", exc)
            return None

        image = _extract_image(response)
        if image is None:
            _logger.warning("Bad almanac data from %s", self._url)
            return None

        almanac = build_almanac(image)
        self._entry = almanac
        self._stored_at = self._clock()
        _logger.info(
            "Almanac added to cache: %d bytes, compressed=%s",
            almanac.image_size,
            almanac.is_compressed,
        )
        return almanac
