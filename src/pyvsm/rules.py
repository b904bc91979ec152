"""Rule pipeline run on every uplink.

Six rules run strictly in order.  Each may send downlinks and may return
a patch; a patch is merged into the working state right away, so later
rules see it.  A rule that raises is logged and skipped with the state
left as it was; the remaining rules still run.

1. Checksum presence - ask for the rule-set CRC when it is unknown.
2. Clock drift - correct the device clock when it drifted too far.
3. Position solve - solve WiFi/GNSS scans and merge the result.
4. Assistance backstop - send an assistance position when none is stored.
5. Almanac freshness - start a background almanac download when stale.
6. Version stamp - record the translator version.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pyvsm._constants import (
    ALMANAC_DOWNLOAD_INTERVAL,
    ASSISTANCE_INTERVAL,
    ASSISTANCE_THRESHOLD_DEG,
    DEFAULT_CLOCK_DRIFT_THRESHOLD_S,
    DEFAULT_PACING_DELAY_S,
    MAX_ALMANAC_AGE,
)
from pyvsm._tasks import TaskSupervisor
from pyvsm.downlink import (
    Downlinker,
    assistance_position_frame,
    clock_delta_frame,
    deliver_almanac,
    frame_budget,
    send_frame,
    status_request_frame,
)
from pyvsm.exceptions import ProtocolAbort
from pyvsm.models._base import format_timestamp
from pyvsm.models.state import EncodedData, GnssState, VsmState, read_block
from pyvsm.models.update import GnssFragment, Update
from pyvsm.solver import Solver
from pyvsm.state.merge import merge_state

_logger = logging.getLogger(__name__)

RulePatch = dict[str, Any] | None


@dataclass(frozen=True)
class RuleContext:
    """Inputs shared by all rules for one uplink."""

    device_id: str
    raw_update: Mapping[str, Any]
    now: datetime
    observer_lat: float | None = None
    observer_lng: float | None = None

    @functools.cached_property
    def update(self) -> Update:
        # Parsed on first use so a malformed fragment only fails the rules that read it.
        return Update.model_validate(dict(self.raw_update))


def needs_assistance_update(gnss: GnssState, latitude: float, longitude: float) -> bool:
    """Whether the stored assistance position is missing or too far from the observer."""
    if gnss.assistance_latitude is None or gnss.assistance_longitude is None:
        return True
    return (
        abs(latitude - gnss.assistance_latitude) > ASSISTANCE_THRESHOLD_DEG
        or abs(longitude - gnss.assistance_longitude) > ASSISTANCE_THRESHOLD_DEG
    )


class RulePipeline:
    """Evaluate the uplink rules for one device state.

    Parameters
    ----------
    downlinker : Downlinker
        Sends downlink frames.
    solver : Solver or None
        Position solver and almanac source.  Without one, rules 3 and 5
        only do their bookkeeping.
    tasks : TaskSupervisor or None
        Supervisor for background almanac downloads.
    translator_version : str
        Version stamped into ``vsm.translatorVersion``.
    solve_positions : bool
        Disable to skip position solving.
    clock_drift_threshold : float
        Absolute drift in seconds from which the clock is corrected.
    default_max_payload_size : int or None
        Almanac frame size when the state has no ``encodedData.maxSize``.
    pacing_delay : float
        Seconds between almanac frames.
    """

    def __init__(
        self,
        downlinker: Downlinker,
        *,
        solver: Solver | None = None,
        tasks: TaskSupervisor | None = None,
        translator_version: str = "",
        solve_positions: bool = True,
        clock_drift_threshold: float = DEFAULT_CLOCK_DRIFT_THRESHOLD_S,
        default_max_payload_size: int | None = None,
        pacing_delay: float = DEFAULT_PACING_DELAY_S,
    ) -> None:
        self._downlinker = downlinker
        self._solver = solver
        self._tasks = tasks if tasks is not None else TaskSupervisor()
        self._translator_version = translator_version
        self._solve_positions = solve_positions
        self._clock_drift_threshold = clock_drift_threshold
        self._default_max_payload_size = default_max_payload_size
        self._pacing_delay = pacing_delay
        self._rules: tuple[tuple[str, Callable[[RuleContext, dict[str, Any]], Awaitable[RulePatch]]], ...] = (
            ("checksum_presence", self._request_rules_checksum),
            ("clock_drift", self._correct_clock_drift),
            ("position_solve", self._solve_position),
            ("assistance_backstop", self._assistance_backstop),
            ("almanac_freshness", self._refresh_almanac),
            ("version_stamp", self._stamp_version),
        )

    @property
    def tasks(self) -> TaskSupervisor:
        return self._tasks

    async def apply(
        self,
        device_id: str,
        state: Mapping[str, Any],
        update: Update | Mapping[str, Any] | None,
        *,
        now: datetime,
        observer_lat: float | None = None,
        observer_lng: float | None = None,
    ) -> dict[str, Any]:
        """Run all rules and return the next state.

        *state* is not modified.
        """
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        if isinstance(update, Update):
            raw_update: Mapping[str, Any] = update.raw
        else:
            raw_update = update or {}

        ctx = RuleContext(
            device_id=device_id,
            raw_update=raw_update,
            now=now,
            observer_lat=observer_lat,
            observer_lng=observer_lng,
        )
        if isinstance(update, Update):
            ctx.__dict__["update"] = update

        current = merge_state(state, None)
        for name, rule in self._rules:
            try:
                patch = await rule(ctx, current)
            except Exception:
                _logger.warning("Rule %s failed for %s", name, device_id, exc_info=True)
                continue
            if patch:
                current = merge_state(current, patch)
        return current

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    async def _request_rules_checksum(self, ctx: RuleContext, state: dict[str, Any]) -> RulePatch:
        vsm = read_block(state, "vsm", VsmState)
        if vsm is not None and vsm.rules_crc32 is not None:
            return None
        _logger.info("Requesting rule-set checksum from %s", ctx.device_id)
        await send_frame(self._downlinker, ctx.device_id, status_request_frame())
        return None

    async def _correct_clock_drift(self, ctx: RuleContext, state: dict[str, Any]) -> RulePatch:
        gnss = read_block(ctx.raw_update, "gnss", GnssFragment)
        if gnss is None or gnss.device_time is None or gnss.device_time_timestamp is None:
            return None

        drift = (gnss.device_time_timestamp - gnss.device_time).total_seconds()
        _logger.debug("Device time offset for %s: %.3fs", ctx.device_id, drift)
        if abs(drift) < self._clock_drift_threshold:
            return None

        delta = round(drift)
        _logger.info("Updating device time for %s by %ds", ctx.device_id, delta)
        await send_frame(self._downlinker, ctx.device_id, clock_delta_frame(delta))
        return None

    async def _solve_position(self, ctx: RuleContext, state: dict[str, Any]) -> RulePatch:
        update = ctx.update
        if not (update.has_wifi_scan or update.has_gnss_scan):
            return None
        if not self._solve_positions or self._solver is None:
            return None

        _logger.info("New positioning data from %s", ctx.device_id)
        response = await self._solver.solve(update)
        if response is None or response.result is None:
            if response is not None and response.errors:
                _logger.warning("Position not solved for %s: %s", ctx.device_id, response.errors)
            return None

        patch = response.result.to_patch()
        if response.warnings:
            patch["warnings"] = list(response.warnings)
        if response.errors:
            patch["errors"] = list(response.errors)

        assistance = await self._send_assistance_position(ctx, state)
        return merge_state(patch, assistance)

    async def _assistance_backstop(self, ctx: RuleContext, state: dict[str, Any]) -> RulePatch:
        gnss = read_block(state, "gnss", GnssState)
        if gnss is None or gnss.assistance_latitude is not None:
            return None
        return await self._send_assistance_position(ctx, state)

    async def _refresh_almanac(self, ctx: RuleContext, state: dict[str, Any]) -> RulePatch:
        gnss = read_block(state, "gnss", GnssState)
        if gnss is None or gnss.almanac_timestamp is None:
            return None
        if ctx.now - gnss.almanac_timestamp < MAX_ALMANAC_AGE:
            return None
        last_attempt = gnss.last_almanac_download_attempt
        if last_attempt is not None and ctx.now - last_attempt < ALMANAC_DOWNLOAD_INTERVAL:
            return None

        patch: RulePatch = {"gnss": {"lastAlmanacDownloadAttempt": format_timestamp(ctx.now)}}
        if self._solver is None:
            _logger.debug("No almanac source; skipping almanac download for %s", ctx.device_id)
            return patch

        encoded = read_block(state, "encodedData", EncodedData)
        max_size = encoded.max_size if encoded is not None else None
        if max_size is None:
            max_size = self._default_max_payload_size
        _logger.info("Almanac for %s is stale; starting download", ctx.device_id)
        self._tasks.spawn(
            self._download_almanac(self._solver, ctx.device_id, max_size),
            name=f"almanac:{ctx.device_id}",
        )
        return patch

    async def _stamp_version(self, ctx: RuleContext, state: dict[str, Any]) -> RulePatch:
        return {"vsm": {"translatorVersion": self._translator_version}}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _send_assistance_position(self, ctx: RuleContext, state: dict[str, Any]) -> RulePatch:
        """Send the observer position as assistance position when it is due.

        Returns the bookkeeping patch when a downlink was attempted.
        """
        latitude, longitude = ctx.observer_lat, ctx.observer_lng
        gnss = read_block(state, "gnss", GnssState)
        if latitude is None or longitude is None or gnss is None:
            return None

        last_attempt = gnss.last_assistance_update_attempt
        if last_attempt is not None and ctx.now - last_attempt < ASSISTANCE_INTERVAL:
            return None
        if not needs_assistance_update(gnss, latitude, longitude):
            return None

        frame = assistance_position_frame(latitude, longitude)
        _logger.info("Sending assistance position %.4f,%.4f to %s", latitude, longitude, ctx.device_id)
        try:
            await send_frame(self._downlinker, ctx.device_id, frame)
        except Exception:
            # The attempt still counts; the rate limit applies either way.
            _logger.warning("Assistance position downlink to %s failed", ctx.device_id, exc_info=True)
        return {"gnss": {"lastAssistanceUpdateAttempt": format_timestamp(ctx.now)}}

    async def _download_almanac(self, solver: Solver, device_id: str, max_payload_size: int | None) -> int:
        if max_payload_size is None:
            raise ProtocolAbort(f"Unknown downlink size for {device_id}", device_id=device_id)
        frame_budget(max_payload_size)

        almanac = await solver.load_almanac()
        if almanac is None:
            _logger.warning("No almanac available for %s", device_id)
            return 0
        return await deliver_almanac(
            self._downlinker,
            device_id,
            almanac,
            max_payload_size,
            pacing_delay=self._pacing_delay,
        )
