from __future__ import annotations

import pytest

from pyvsm.config import VsmConfig
from pyvsm.exceptions import VsmConfigError

_ENV_KEYS = (
    "VSM_API_KEY",
    "VSM_SOLVER_BASE_URL",
    "VSM_CLOCK_DRIFT_THRESHOLD",
    "VSM_DEFAULT_MAX_PAYLOAD_SIZE",
    "VSM_SOLVE_POSITIONS",
    "VSM_DISTRUST_NETWORK_TIME",
    "VSM_ONLY_VSM_DEVICES",
    "VSM_MQTT_PORT",
    "VSM_PUBLISH_TOPIC",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults() -> None:
    config = VsmConfig()

    assert config.api_key is None
    assert config.solver_base_url == "https://lw.traxmate.io"
    assert config.solve_positions is True
    assert config.clock_drift_threshold == 5.0
    assert config.almanac_cache_ttl == 86400.0
    assert config.default_max_payload_size is None


def test_from_env_reads_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VSM_API_KEY", "secret")
    monkeypatch.setenv("VSM_CLOCK_DRIFT_THRESHOLD", "2.5")
    monkeypatch.setenv("VSM_DEFAULT_MAX_PAYLOAD_SIZE", "51")
    monkeypatch.setenv("VSM_SOLVE_POSITIONS", "no")
    monkeypatch.setenv("VSM_DISTRUST_NETWORK_TIME", "1")
    monkeypatch.setenv("VSM_MQTT_PORT", "8883")
    monkeypatch.setenv("VSM_PUBLISH_TOPIC", "out/deveui/state")

    config = VsmConfig.from_env()

    assert config.api_key == "secret"
    assert config.clock_drift_threshold == 2.5
    assert config.default_max_payload_size == 51
    assert config.solve_positions is False
    assert config.distrust_network_time is True
    assert config.only_vsm_devices is False
    assert config.mqtt_port == 8883
    assert config.publish_topic == "out/deveui/state"


def test_overrides_win_over_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VSM_API_KEY", "from-env")
    monkeypatch.setenv("VSM_CLOCK_DRIFT_THRESHOLD", "not-a-number")

    config = VsmConfig.from_env(api_key="explicit", clock_drift_threshold=9.0)

    assert config.api_key == "explicit"
    assert config.clock_drift_threshold == 9.0


def test_invalid_number_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VSM_MQTT_PORT", "eighty")

    with pytest.raises(VsmConfigError, match="VSM_MQTT_PORT"):
        VsmConfig.from_env()


def test_unknown_bool_falls_back_to_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VSM_SOLVE_POSITIONS", "maybe")

    assert VsmConfig.from_env().solve_positions is True


@pytest.mark.parametrize(
    "kwargs",
    [
        {"clock_drift_threshold": -1.0},
        {"almanac_cache_ttl": -1.0},
        {"almanac_pacing_delay": -0.5},
        {"publish_topic": "out/device/state"},
    ],
)
def test_invalid_values_rejected(kwargs: dict) -> None:
    with pytest.raises(VsmConfigError):
        VsmConfig(**kwargs)
