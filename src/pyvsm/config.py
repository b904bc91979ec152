"""Service configuration for pyvsm."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any

from pyvsm._constants import (
    DEFAULT_ALMANAC_CACHE_TTL_S,
    DEFAULT_CLOCK_DRIFT_THRESHOLD_S,
    DEFAULT_PACING_DELAY_S,
    SOLVER_BASE_URL,
)
from pyvsm.exceptions import VsmConfigError

#: Substring in ``publish_topic`` replaced by the device id.
PUBLISH_TOPIC_PLACEHOLDER = "deveui"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env: Mapping[str, str], key: str, cast: type) -> Any:
    raw = env.get(key)
    if raw is None:
        return None
    try:
        return cast(raw)
    except ValueError as exc:
        raise VsmConfigError(f"{key} must be a {cast.__name__}, got {raw!r}") from exc


@dataclasses.dataclass(frozen=True)
class VsmConfig:
    """Service configuration.

    Parameters
    ----------
    api_key : str or None
        Authorization header value for the position solver and the
        almanac source.  Without a key no solve or almanac request is made.
    solver_base_url : str
        Base URL of the LoRa Cloud compatible solver service.
    solve_positions : bool
        Submit WiFi/GNSS scans for position solving.
    clock_drift_threshold : float
        Absolute device clock drift, in seconds, from which a clock
        correction downlink is sent.
    almanac_cache_ttl : float
        Seconds a fetched almanac is served from memory.
    almanac_pacing_delay : float
        Seconds between consecutive almanac frames.
    default_max_payload_size : int or None
        Downlink size used when the device state carries no
        ``encodedData.maxSize``.  ``None`` skips almanac delivery in that
        case.
    distrust_network_time : bool
        Ignore the network server's receive time and use the local clock.
    only_vsm_devices : bool
        Drop uplinks from DevEUIs outside the VSM range.
    http_timeout : float
        Total timeout in seconds for each solver/almanac request.
    mqtt_host : str or None
        Broker host for the MQTT integration.
    mqtt_port : int
        Broker port.
    mqtt_username, mqtt_password : str or None
        Broker credentials.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    uplink_topic : str
        Uplink topic template; ``{device_id}`` is replaced per device or
        by ``+`` for a wildcard subscription.
    downlink_topic : str
        Downlink topic template; ``{device_id}`` is replaced.
    publish_topic : str or None
        Topic template for publishing merged device state.  Must contain
        ``deveui``, which is replaced by the device id.
    """

    api_key: str | None = None
    solver_base_url: str = SOLVER_BASE_URL
    solve_positions: bool = True
    clock_drift_threshold: float = DEFAULT_CLOCK_DRIFT_THRESHOLD_S
    almanac_cache_ttl: float = DEFAULT_ALMANAC_CACHE_TTL_S
    almanac_pacing_delay: float = DEFAULT_PACING_DELAY_S
    default_max_payload_size: int | None = None
    distrust_network_time: bool = False
    only_vsm_devices: bool = False
    http_timeout: float = 30.0
    mqtt_host: str | None = None
    mqtt_port: int = 1883
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_keepalive: int = 60
    uplink_topic: str = "mqtt/munin/{device_id}/uplink"
    downlink_topic: str = "mqtt/munin/{device_id}/downlink"
    publish_topic: str | None = None

    def __post_init__(self) -> None:
        if self.clock_drift_threshold < 0:
            raise VsmConfigError("clock_drift_threshold must be non-negative")
        if self.almanac_cache_ttl < 0:
            raise VsmConfigError("almanac_cache_ttl must be non-negative")
        if self.almanac_pacing_delay < 0:
            raise VsmConfigError("almanac_pacing_delay must be non-negative")
        if self.publish_topic is not None and PUBLISH_TOPIC_PLACEHOLDER not in self.publish_topic:
            raise VsmConfigError(f"publish_topic must contain the substitution string {PUBLISH_TOPIC_PLACEHOLDER!r}")

    @classmethod
    def from_env(cls, **overrides: Any) -> VsmConfig:
        """Create configuration from environment variables.

        Reads ``VSM_API_KEY`` and the optional ``VSM_*`` variables below.
        Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        VsmConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "VSM_API_KEY": "api_key",
            "VSM_SOLVER_BASE_URL": "solver_base_url",
            "VSM_MQTT_HOST": "mqtt_host",
            "VSM_MQTT_USERNAME": "mqtt_username",
            "VSM_MQTT_PASSWORD": "mqtt_password",
            "VSM_UPLINK_TOPIC": "uplink_topic",
            "VSM_DOWNLINK_TOPIC": "downlink_topic",
            "VSM_PUBLISH_TOPIC": "publish_topic",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type]] = {
            "VSM_CLOCK_DRIFT_THRESHOLD": ("clock_drift_threshold", float),
            "VSM_ALMANAC_CACHE_TTL": ("almanac_cache_ttl", float),
            "VSM_ALMANAC_PACING_DELAY": ("almanac_pacing_delay", float),
            "VSM_DEFAULT_MAX_PAYLOAD_SIZE": ("default_max_payload_size", int),
            "VSM_HTTP_TIMEOUT": ("http_timeout", float),
            "VSM_MQTT_PORT": ("mqtt_port", int),
            "VSM_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            if field_name in overrides:
                continue
            parsed = _env_number(env, env_key, cast)
            if parsed is not None:
                config_kwargs[field_name] = parsed

        _ENV_BOOL_MAP: dict[str, tuple[str, bool]] = {
            "VSM_SOLVE_POSITIONS": ("solve_positions", True),
            "VSM_DISTRUST_NETWORK_TIME": ("distrust_network_time", False),
            "VSM_ONLY_VSM_DEVICES": ("only_vsm_devices", False),
        }
        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
