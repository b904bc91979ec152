from __future__ import annotations

import json
import logging
from typing import Any

import pytest

from pyvsm.exceptions import VsmConfigError
from pyvsm.publishers import IdentityDecorator, LogPublisher, MqttPublisher, ThingParkDecorator, publish_topic_for


def test_identity_decorator_copies_state() -> None:
    state = {"gnss": {"x": 1}}

    decorated = IdentityDecorator().decorate(state, "DEV")
    decorated["gnss"]["x"] = 2

    assert state == {"gnss": {"x": 1}}


def test_thingpark_decorator_builds_location() -> None:
    state = {
        "output": {"temperature": 4.5},
        "latitude": 46.5,
        "longitude": 6.9,
        "accuracy": 30,
        "algorithmType": "Wifi",
        "numberOfGatewaysUsed": 2,
        "warnings": ["a", "b"],
        "errors": [],
        "positionTimestamp": "2026-03-01T12:00:00Z",
    }

    decorated = ThingParkDecorator().decorate(state, "DEV")

    location = decorated["DevEUI_uplink"]["location"]
    assert decorated["DevEUI_uplink"]["DevEUI"] == "DEV"
    assert location["temperature"] == 4.5
    assert location["loc_latitude"] == 46.5
    assert location["loc_longitude"] == 6.9
    assert location["loc_accuracy"] == 30
    assert location["loc_altitude"] is None
    assert location["loc_algorithm"] == "Wifi"
    assert location["loc_gatewaysUsed"] == 2
    assert "loc_gatewaysReceived" not in location
    assert location["loc_warning"] == "a | b"
    assert "loc_error" not in location
    assert location["loc_timestamp"] == "2026-03-01T12:00:00Z"
    assert state["output"] == {"temperature": 4.5}


def test_thingpark_decorator_without_position() -> None:
    location = ThingParkDecorator().decorate({"latitude": "46.5"}, "DEV")["DevEUI_uplink"]["location"]

    assert location["loc_latitude"] is None
    assert location["loc_timestamp"] is None


def test_publish_topic_substitution() -> None:
    assert publish_topic_for("vsm/deveui/state", "ABC") == "vsm/ABC/state"
    with pytest.raises(VsmConfigError):
        publish_topic_for("vsm/device/state", "ABC")


@pytest.mark.asyncio
async def test_log_publisher_logs_json(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="pyvsm.publishers"):
        await LogPublisher().publish("DEV", {"latitude": 1.0})

    assert "DEV" in caplog.text
    assert '"latitude": 1.0' in caplog.text


class _FakeInfo:
    rc = 0


class _FakeClient:
    def __init__(self) -> None:
        self.published: list[tuple[str, Any]] = []

    def publish(self, topic: str, payload: Any = None, qos: int = 0) -> _FakeInfo:
        self.published.append((topic, payload))
        return _FakeInfo()


@pytest.mark.asyncio
async def test_mqtt_publisher_publishes_json_on_device_topic() -> None:
    client = _FakeClient()
    publisher = MqttPublisher("vsm/deveui/state", host="localhost", client=client)  # type: ignore[arg-type]

    await publisher.publish("ABC", {"latitude": 1.0})

    topic, payload = client.published[0]
    assert topic == "vsm/ABC/state"
    assert json.loads(payload) == {"latitude": 1.0}


@pytest.mark.asyncio
async def test_mqtt_publisher_not_started_drops_output() -> None:
    publisher = MqttPublisher("vsm/deveui/state", host="localhost")

    await publisher.publish("ABC", {"latitude": 1.0})


def test_mqtt_publisher_requires_placeholder() -> None:
    with pytest.raises(VsmConfigError):
        MqttPublisher("vsm/state", host="localhost")
