"""Uplink service: validate, translate, run the rules, store, publish."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from pyvsm._constants import VSM_DEVEUI_PREFIX
from pyvsm._tasks import TaskSupervisor
from pyvsm._transport import HttpTransport
from pyvsm.almanac import AlmanacCache
from pyvsm.config import VsmConfig
from pyvsm.downlink import Downlinker
from pyvsm.exceptions import DeviceNotFoundError, VsmValidationError
from pyvsm.models._base import format_timestamp
from pyvsm.models.uplink import Uplink
from pyvsm.publishers import Decorator, IdentityDecorator, LogPublisher, Publisher
from pyvsm.rules import RulePipeline
from pyvsm.solver import PositionSolver, Solver
from pyvsm.state.merge import merge_state
from pyvsm.state.store import MemoryStateStore, StateStore

_logger = logging.getLogger(__name__)

_DEVEUI_LENGTH = 16


@dataclass(frozen=True)
class TranslationResult:
    """What the translator produced for one record.

    ``result`` is the update merged into the state (``None`` means there
    is nothing new, e.g. a pure history upload); ``timeseries`` holds
    historical measurements decoded from the same uplink.
    """

    result: dict[str, Any] | None
    timeseries: list[Any] | None = None


class Translator(Protocol):
    """Decodes the raw uplink carried in ``record["encodedData"]``."""

    @property
    def version(self) -> str: ...

    def translate(self, record: dict[str, Any]) -> TranslationResult: ...


class SeriesProcessor(Protocol):
    """Receives historical measurements decoded from an uplink."""

    async def on_time_series(self, device_id: str, timeseries: list[Any], record: dict[str, Any]) -> None: ...


def is_vsm_device(device_id: str) -> bool:
    """Whether *device_id* is a DevEUI in the VSM range."""
    return len(device_id) == _DEVEUI_LENGTH and device_id.upper().startswith(VSM_DEVEUI_PREFIX)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UplinkService:
    """Process uplinks one at a time for any number of devices.

    Usage::

        service = UplinkService.from_config(config, http_session, downlinker, translator=translator)
        next_state = await service.handle_uplink(uplink)
    """

    def __init__(
        self,
        config: VsmConfig,
        *,
        translator: Translator,
        store: StateStore,
        downlinker: Downlinker,
        solver: Solver | None = None,
        publisher: Publisher | None = None,
        decorator: Decorator | None = None,
        series_processor: SeriesProcessor | None = None,
        tasks: TaskSupervisor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._translator = translator
        self._store = store
        self._publisher = publisher or LogPublisher()
        self._decorator = decorator or IdentityDecorator()
        self._series_processor = series_processor
        self._tasks = tasks or TaskSupervisor()
        self._clock = clock or _utcnow
        self._pipeline = RulePipeline(
            downlinker,
            solver=solver,
            tasks=self._tasks,
            translator_version=translator.version,
            solve_positions=config.solve_positions,
            clock_drift_threshold=config.clock_drift_threshold,
            default_max_payload_size=config.default_max_payload_size,
            pacing_delay=config.almanac_pacing_delay,
        )

    @classmethod
    def from_config(
        cls,
        config: VsmConfig,
        http_session: aiohttp.ClientSession,
        downlinker: Downlinker,
        *,
        translator: Translator,
        store: StateStore | None = None,
        **kwargs: Any,
    ) -> UplinkService:
        """Wire the default solver and almanac cache over *http_session*."""
        transport = HttpTransport(http_session, timeout=config.http_timeout)
        almanac_cache = AlmanacCache(
            transport,
            api_key=config.api_key,
            base_url=config.solver_base_url,
            ttl=config.almanac_cache_ttl,
        )
        solver = PositionSolver(
            transport,
            api_key=config.api_key,
            almanac_cache=almanac_cache,
            base_url=config.solver_base_url,
        )
        return cls(
            config,
            translator=translator,
            store=store if store is not None else MemoryStateStore(),
            downlinker=downlinker,
            solver=solver,
            **kwargs,
        )

    @property
    def tasks(self) -> TaskSupervisor:
        return self._tasks

    @property
    def pipeline(self) -> RulePipeline:
        return self._pipeline

    # ------------------------------------------------------------------
    # Uplink handling
    # ------------------------------------------------------------------

    def submit(self, event: Uplink | Mapping[str, Any]) -> None:
        """Handle *event* in the background (used by the MQTT runtime)."""
        device_id = event.device_id if isinstance(event, Uplink) else str(event.get("device_id", "?"))
        self._tasks.spawn(self.handle_uplink(event), name=f"uplink:{device_id}")

    async def handle_uplink(self, event: Uplink | Mapping[str, Any]) -> dict[str, Any] | None:
        """Process one uplink.

        Returns
        -------
        dict or None
            The stored next state, or ``None`` when the uplink was ignored
            or the translator had nothing new.

        Raises
        ------
        VsmValidationError
            If *event* is malformed.  Nothing is stored.
        """
        uplink = self._validate(event)
        device_id = uplink.device_id

        if self._config.only_vsm_devices and not is_vsm_device(device_id):
            _logger.debug("Ignoring unrecognized device %s", device_id)
            return None

        now = uplink.received_at
        if now is None or self._config.distrust_network_time:
            now = self._clock()

        _logger.info(
            "Uplink: device=%s port=%d payload=%s time=%s lat=%s lng=%s",
            device_id,
            uplink.port,
            uplink.payload.hex(),
            format_timestamp(now),
            uplink.latitude,
            uplink.longitude,
        )

        try:
            previous = await self._store.fetch(device_id)
        except DeviceNotFoundError:
            _logger.debug("No previous data for device %s", device_id)
            previous = {}

        encoded: dict[str, Any] = {
            "port": uplink.port,
            "hexEncoded": uplink.payload.hex(),
            "timestamp": format_timestamp(now),
        }
        if uplink.max_size is not None:
            encoded["maxSize"] = uplink.max_size
        record = {**previous, "encodedData": encoded}

        result = await self._translate(device_id, record)
        if result is None:
            _logger.warning("No new results from translator for %s", device_id)
            return None

        next_state = merge_state(record, result)
        next_state = await self._pipeline.apply(
            device_id,
            next_state,
            result,
            now=now,
            observer_lat=uplink.latitude,
            observer_lng=uplink.longitude,
        )

        await self._store.put(device_id, next_state, result)
        await self._publish(device_id, next_state)
        return next_state

    async def aclose(self) -> None:
        """Cancel background work (almanac deliveries, submitted uplinks)."""
        await self._tasks.cancel_all()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(event: Uplink | Mapping[str, Any]) -> Uplink:
        if isinstance(event, Uplink):
            return event
        try:
            return Uplink.model_validate(dict(event))
        except (ValidationError, TypeError, ValueError) as exc:
            device_id = event.get("device_id") if isinstance(event, Mapping) else None
            _logger.warning("Rejected uplink event for %s: %s", device_id, exc)
            raise VsmValidationError(
                f"Invalid uplink event: {exc}",
                device_id=device_id if isinstance(device_id, str) else None,
            ) from exc

    async def _translate(self, device_id: str, record: dict[str, Any]) -> dict[str, Any] | None:
        try:
            translated = self._translator.translate(record)
        except Exception as exc:
            _logger.warning("Failed translation for %s: %s", device_id, exc, exc_info=True)
            await self._store.put_error(device_id, exc)
            return {}

        timeseries = translated.timeseries
        if timeseries:
            if self._series_processor is None:
                _logger.debug("Ignoring %d historical measurements for %s", len(timeseries), device_id)
            else:
                _logger.info("Invoking series processor with %d measurements for %s", len(timeseries), device_id)
                try:
                    await self._series_processor.on_time_series(device_id, list(timeseries), record)
                except Exception:
                    _logger.warning("Series processor failed for %s", device_id, exc_info=True)
        return translated.result

    async def _publish(self, device_id: str, state: dict[str, Any]) -> None:
        try:
            decorated = self._decorator.decorate(state, device_id)
            await self._publisher.publish(device_id, decorated)
        except Exception:
            _logger.warning("Publishing failed for %s", device_id, exc_info=True)
