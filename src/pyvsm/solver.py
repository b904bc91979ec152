"""Position solver gateway for a LoRa Cloud compatible service.

Endpoints:
  - /api/v1/solve/loraWifi (WiFi scans)
  - /api/v1/solve/gnss_lora_edge_singleframe (GNSS scans)
  - /api/v1/almanac/full (via :class:`pyvsm.almanac.AlmanacCache`)
"""

from __future__ import annotations

import copy
import enum
import logging
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import ValidationError

from pyvsm._constants import GNSS_SOLVE_PATH, SOLVER_BASE_URL, WIFI_SOLVE_PATH
from pyvsm._transport import Transport
from pyvsm.almanac import AlmanacCache
from pyvsm.exceptions import VsmUpstreamError
from pyvsm.models.almanac import AlmanacObject
from pyvsm.models.solve import SolveResponse
from pyvsm.models.update import Update

_logger = logging.getLogger(__name__)

#: Keys stripped from every request body before it is posted.
_STRIPPED_KEYS = ("msgtype", "timestamp")

#: Minimum number of access points the WiFi solver can work with.
MIN_WIFI_ACCESS_POINTS = 2

# Gateway reception records merged into WiFi requests that carry none.
# Network metadata from mobile gateways is rarely precise enough to be
# useful, so a fixed reference set is sent instead.
FALLBACK_GATEWAY_RECEPTIONS: tuple[dict[str, Any], ...] = (
    {
        "gatewayId": "00-00-E4-77-6B-00-1A-5D",
        "antennaId": 0,
        "rssi": -86.0,
        "snr": 15.0,
        "toa": 10000,
        "antennaLocation": {"latitude": 46.98886, "longitude": 6.91287, "altitude": 513},
    },
    {
        "gatewayId": "00-00-E4-77-6B-00-1A-5D",
        "antennaId": 1,
        "rssi": -87.0,
        "snr": 15.0,
        "toa": 5000,
        "antennaLocation": {"latitude": 46.98886, "longitude": 6.91287, "altitude": 513},
    },
    {
        "gatewayId": "00-00-E4-77-6B-00-1A-97",
        "antennaId": 0,
        "rssi": -89.0,
        "snr": 15.0,
        "toa": 8000,
        "antennaLocation": {"latitude": 46.983753, "longitude": 6.906008, "altitude": 479},
    },
    {
        "gatewayId": "00-00-E4-77-6B-00-1A-97",
        "antennaId": 1,
        "rssi": -89.0,
        "snr": 10.0,
        "toa": 20000,
        "antennaLocation": {"latitude": 46.983753, "longitude": 6.906008, "altitude": 479},
    },
)


class SolveKind(enum.StrEnum):
    WIFI = "wifi"
    GNSS = "gnss"


class Solver(Protocol):
    """Position solving and almanac source used by the rule pipeline."""

    async def solve(self, update: Update) -> SolveResponse | None: ...

    async def load_almanac(self) -> AlmanacObject | None: ...


def is_wifi_algorithm(algorithm_type: str | None) -> bool:
    return algorithm_type is not None and algorithm_type.lower().startswith("wifi")


def build_solve_request(update: Update) -> tuple[SolveKind, dict[str, Any]]:
    """Select the endpoint and build a request body from *update*.

    The body is a deep copy of the scan fragment with bookkeeping keys
    removed; the update itself is never modified.
    """
    if update.has_wifi_scan:
        kind = SolveKind.WIFI
        source = update.wifi
    else:
        kind = SolveKind.GNSS
        source = update.gnss_scan

    body: dict[str, Any] = copy.deepcopy(source) if isinstance(source, dict) else {}
    for key in _STRIPPED_KEYS:
        body.pop(key, None)

    if kind is SolveKind.WIFI and "lorawan" not in body:
        body["lorawan"] = copy.deepcopy(list(FALLBACK_GATEWAY_RECEPTIONS))
    return kind, body


class PositionSolver:
    """Gateway to the position solving service.

    Every call is a single attempt: upstream failures are logged and
    reported as ``None``.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        api_key: str | None,
        almanac_cache: AlmanacCache,
        base_url: str = SOLVER_BASE_URL,
    ) -> None:
        self._transport = transport
        self._api_key = api_key
        self._almanac_cache = almanac_cache
        base = base_url.rstrip("/")
        self._endpoints = {
            SolveKind.WIFI: f"{base}{WIFI_SOLVE_PATH}",
            SolveKind.GNSS: f"{base}{GNSS_SOLVE_PATH}",
        }

    async def load_almanac(self) -> AlmanacObject | None:
        return await self._almanac_cache.load()

    async def solve(self, update: Update) -> SolveResponse | None:
        """Solve the WiFi or GNSS scan carried by *update*.

        Returns
        -------
        SolveResponse or None
            The solver response (possibly a locally synthesized error
            response), or ``None`` when the request failed or no API key
            is configured.
        """
        if not self._api_key:
            return None

        kind, body = build_solve_request(update)

        if kind is SolveKind.WIFI:
            access_points = body.get("wifiAccessPoints")
            count = len(access_points) if isinstance(access_points, list) else 0
            if count < MIN_WIFI_ACCESS_POINTS:
                _logger.warning("Too few access points to solve position (%d)", count)
                return SolveResponse.error(f"Too few access points to solve position ({count or 'none'})")

        endpoint = self._endpoints[kind]
        try:
            raw = await self._transport.post_json(endpoint, body, api_key=self._api_key)
        except VsmUpstreamError as exc:
            _logger.warning("Solver request failed: %s %s", endpoint, exc)
            return None

        try:
            response = SolveResponse.model_validate(raw)
        except ValidationError:
            _logger.warning("Unexpected solver response from %s", endpoint, exc_info=True)
            return None

        result = response.result
        if kind is SolveKind.WIFI and result is not None and not is_wifi_algorithm(result.algorithm_type):
            return SolveResponse.error(f"Got wrong type of response: {result.algorithm_type}")

        # Upstream timestamps are not trusted; stamp the solve time.
        if result is not None and result.latitude is not None:
            response = response.model_copy(
                update={"result": result.model_copy(update={"position_timestamp": datetime.now(UTC)})}
            )
        return response
