from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import Any

import pytest

from pyvsm._mqtt import (
    MqttDownlinker,
    MqttRuntime,
    build_downlink_message,
    parse_thingpark_frame,
    uplink_topics,
)
from pyvsm.exceptions import VsmUpstreamError, VsmValidationError
from pyvsm.models.uplink import Uplink


def _message(frame: dict[str, Any], wrapper: str | None = "DevEUI_uplink") -> bytes:
    body = {wrapper: frame} if wrapper else frame
    return json.dumps(body).encode("utf-8")


class TestParseThingParkFrame:
    def test_uplink_frame(self) -> None:
        uplink = parse_thingpark_frame(
            _message(
                {
                    "DevEUI": "70b3d52c00000001",
                    "FPort": "2",
                    "payload_hex": "0a0B",
                    "Time": "2026-03-01T12:00:00.000+00:00",
                }
            )
        )

        assert uplink is not None
        assert uplink.device_id == "70B3D52C00000001"
        assert uplink.port == 2
        assert uplink.payload == b"\x0a\x0b"
        assert uplink.received_at == datetime(2026, 3, 1, 12, tzinfo=UTC)
        assert uplink.max_size == 40

    def test_join_notification_defaults(self) -> None:
        uplink = parse_thingpark_frame(_message({"DevEUI": "ABC"}, wrapper="DevEUI_notification"))

        assert uplink is not None
        assert uplink.port == 0
        assert uplink.payload == b""
        assert uplink.received_at is None

    def test_bare_frame_and_bad_time(self) -> None:
        uplink = parse_thingpark_frame(_message({"DevEUI": "ABC", "FPort": 1, "Time": "garbage"}, wrapper=None))

        assert uplink is not None
        assert uplink.port == 1
        assert uplink.received_at is None

    def test_missing_deveui_is_skipped(self) -> None:
        assert parse_thingpark_frame(_message({"FPort": 1})) is None

    def test_custom_max_size(self) -> None:
        uplink = parse_thingpark_frame(_message({"DevEUI": "ABC"}), default_max_size=51)

        assert uplink is not None
        assert uplink.max_size == 51

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"[1, 2]",
            _message({"DevEUI": "ABC", "payload_hex": "zz"}),
            _message({"DevEUI": "ABC", "FPort": "x"}),
            _message({"DevEUI": "ABC", "FPort": 999}),
        ],
    )
    def test_malformed(self, payload: bytes) -> None:
        with pytest.raises(VsmValidationError):
            parse_thingpark_frame(payload)


def test_uplink_topics() -> None:
    template = "mqtt/munin/{device_id}/uplink"

    assert uplink_topics(template) == ["mqtt/munin/+/uplink"]
    assert uplink_topics(template, ["abc", "def"]) == ["mqtt/munin/ABC/uplink", "mqtt/munin/DEF/uplink"]


def test_build_downlink_message() -> None:
    assert build_downlink_message("DEV", 21, b"\x02\xff", True) == {
        "DevEUI_downlink": {"DevEUI": "DEV", "FPort": 21, "payload_hex": "02ff", "Confirmed": 1}
    }


@pytest.mark.asyncio
async def test_runtime_hands_parsed_uplinks_to_loop() -> None:
    received: list[Uplink] = []
    runtime = MqttRuntime(loop=asyncio.get_running_loop(), on_uplink=received.append)

    runtime.handle_message("mqtt/munin/ABC/uplink", _message({"DevEUI": "abc", "FPort": 3}))
    runtime.handle_message("mqtt/munin/ABC/uplink", b"not json")
    runtime.handle_message("mqtt/munin/ABC/uplink", _message({"FPort": 3}))
    await asyncio.sleep(0)

    assert [(uplink.device_id, uplink.port) for uplink in received] == [("ABC", 3)]


class _FakeMessageInfo:
    def __init__(self, *, rc: int = 0, published: bool = True) -> None:
        self.rc = rc
        self._published = published
        self.waited_with: float | None = None

    def wait_for_publish(self, timeout: float | None = None) -> None:
        self.waited_with = timeout

    def is_published(self) -> bool:
        return self._published


class _FakeClient:
    def __init__(self, info: _FakeMessageInfo) -> None:
        self.info = info
        self.published: list[tuple[str, str, int]] = []

    def publish(self, topic: str, payload: str, qos: int = 0) -> _FakeMessageInfo:
        self.published.append((topic, payload, qos))
        return self.info


@pytest.mark.asyncio
async def test_downlinker_publishes_qos1_and_waits_for_ack() -> None:
    info = _FakeMessageInfo()
    client = _FakeClient(info)
    downlinker = MqttDownlinker(lambda: client, topic_template="mqtt/munin/{device_id}/downlink", publish_timeout=2.0)

    await downlinker.send("ABC", 15, b"\x00", False)

    topic, payload, qos = client.published[0]
    assert topic == "mqtt/munin/ABC/downlink"
    assert qos == 1
    assert json.loads(payload)["DevEUI_downlink"]["payload_hex"] == "00"
    assert info.waited_with == 2.0


@pytest.mark.asyncio
async def test_downlinker_raises_when_not_acknowledged() -> None:
    client = _FakeClient(_FakeMessageInfo(published=False))
    downlinker = MqttDownlinker(lambda: client, topic_template="t/{device_id}")

    with pytest.raises(VsmUpstreamError):
        await downlinker.send("ABC", 21, b"\x08\x00\x00\x00\x01", False)


@pytest.mark.asyncio
async def test_downlinker_raises_on_publish_error() -> None:
    client = _FakeClient(_FakeMessageInfo(rc=4))
    downlinker = MqttDownlinker(lambda: client, topic_template="t/{device_id}")

    with pytest.raises(VsmUpstreamError):
        await downlinker.send("ABC", 21, b"\x01", False)


@pytest.mark.asyncio
async def test_downlinker_raises_when_not_connected() -> None:
    downlinker = MqttDownlinker(lambda: None, topic_template="t/{device_id}")

    with pytest.raises(VsmUpstreamError):
        await downlinker.send("ABC", 21, b"\x01", False)
