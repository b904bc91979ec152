"""Internal MQTT integration: ThingPark frame parsing, runtime and downlinks."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from typing import Any, cast

import paho.mqtt.client as mqtt
from pydantic import ValidationError

from pyvsm._constants import THINGPARK_MAX_PAYLOAD_SIZE
from pyvsm.exceptions import VsmUpstreamError, VsmValidationError
from pyvsm.models._base import parse_timestamp
from pyvsm.models.uplink import Uplink

_WILDCARD = "+"


def parse_thingpark_frame(
    payload: bytes | str,
    *,
    default_max_size: int = THINGPARK_MAX_PAYLOAD_SIZE,
) -> Uplink | None:
    """Convert a ThingPark JSON message into an :class:`Uplink`.

    Accepts ``{"DevEUI_uplink": {...}}``, ``{"DevEUI_notification": {...}}``
    or the bare frame.  Join notifications carry no ``FPort`` and no
    ``payload_hex``; they become port 0 with an empty payload.  A missing
    or unparseable ``Time`` leaves ``received_at`` unset.

    Returns
    -------
    Uplink or None
        ``None`` when the frame carries no ``DevEUI``.

    Raises
    ------
    VsmValidationError
        If the message is not a JSON object or a field is malformed.
    """
    text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
    try:
        message = json.loads(text)
    except json.JSONDecodeError as exc:
        raise VsmValidationError(f"MQTT payload is not JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise VsmValidationError("MQTT payload is not a JSON object")

    frame = message.get("DevEUI_uplink") or message.get("DevEUI_notification") or message
    if not isinstance(frame, dict):
        raise VsmValidationError("ThingPark frame is not a JSON object")

    device_id = str(frame.get("DevEUI") or "").strip().upper()
    if not device_id:
        return None

    try:
        port = int(frame["FPort"]) if frame.get("FPort") else 0
        data = bytes.fromhex(str(frame.get("payload_hex") or ""))
    except ValueError as exc:
        raise VsmValidationError(f"Malformed ThingPark frame: {exc}", device_id=device_id) from exc

    received_at = None
    if frame.get("Time"):
        try:
            received_at = parse_timestamp(frame["Time"])
        except (TypeError, ValueError):
            received_at = None

    try:
        return Uplink(
            device_id=device_id,
            port=port,
            payload=data,
            received_at=received_at,
            max_size=default_max_size,
        )
    except ValidationError as exc:
        raise VsmValidationError(f"Invalid uplink: {exc}", device_id=device_id) from exc


def uplink_topics(template: str, device_ids: Iterable[str] | None = None) -> list[str]:
    """Subscription topics: one per device, or a single wildcard topic."""
    devices = [device_id.upper() for device_id in device_ids or () if device_id]
    if not devices:
        return [template.format(device_id=_WILDCARD)]
    return [template.format(device_id=device_id) for device_id in devices]


def build_downlink_message(device_id: str, port: int, payload: bytes, confirmed: bool) -> dict[str, Any]:
    return {
        "DevEUI_downlink": {
            "DevEUI": device_id,
            "FPort": port,
            "payload_hex": payload.hex(),
            "Confirmed": 1 if confirmed else 0,
        }
    }


class MqttRuntime:
    """Threaded paho-mqtt runtime that emits parsed uplinks onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_uplink: Callable[[Uplink], None],
        keepalive: int = 60,
        default_max_size: int = THINGPARK_MAX_PAYLOAD_SIZE,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_uplink = on_uplink
        self._keepalive = keepalive
        self._default_max_size = default_max_size
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topics: list[str] = []

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    @property
    def client(self) -> mqtt.Client | None:
        return self._client

    def handle_message(self, topic: str, payload: bytes) -> None:
        """Parse one message and hand the uplink to the loop.

        Runs on paho's network thread; failures are logged and dropped.
        """
        self._logger.debug("Received PUBLISH topic=%s bytes=%d", topic, len(payload))
        try:
            uplink = parse_thingpark_frame(payload, default_max_size=self._default_max_size)
        except VsmValidationError as exc:
            self._logger.warning("Dropping MQTT message on %s: %s", topic, exc)
            return
        if uplink is None:
            self._logger.warning("Missing DevEUI in frame on %s, skipping", topic)
            return
        self._loop.call_soon_threadsafe(self._on_uplink, uplink)

    def start(
        self,
        host: str,
        port: int,
        topics: list[str],
        *,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        """Connect and subscribe to *topics*."""
        self.stop()
        self._logger.debug("MQTT runtime start requested host=%s port=%s topics=%s", host, port, topics)

        client = mqtt.Client(callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2)
        client.enable_logger(self._logger)
        if username:
            client.username_pw_set(username, password)

        self._topics = list(topics)

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.info("MQTT connected to %s:%s", host, port)
            for topic in self._topics:
                self._logger.debug("MQTT subscribing topic=%s", topic)
                c.subscribe(topic, qos=1)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self.handle_message(msg.topic, msg.payload)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(host, port, keepalive=self._keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topics = []

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")


class MqttDownlinker:
    """Sends downlinks as ``DevEUI_downlink`` JSON on the device's downlink topic.

    ``send`` returns once the broker acknowledged the QoS 1 publish.
    """

    def __init__(
        self,
        client_factory: Callable[[], mqtt.Client | None],
        *,
        topic_template: str,
        publish_timeout: float = 10.0,
    ) -> None:
        self._client_factory = client_factory
        self._topic_template = topic_template
        self._publish_timeout = publish_timeout

    async def send(self, device_id: str, port: int, payload: bytes, confirmed: bool) -> None:
        topic = self._topic_template.format(device_id=device_id)
        client = self._client_factory()
        if client is None:
            raise VsmUpstreamError("MQTT not connected", endpoint=topic)

        message = build_downlink_message(device_id, port, payload, confirmed)
        info = client.publish(topic, json.dumps(message), qos=1)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise VsmUpstreamError(f"MQTT publish failed: {mqtt.error_string(info.rc)}", endpoint=topic)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, info.wait_for_publish, self._publish_timeout)
        except (RuntimeError, ValueError) as exc:
            raise VsmUpstreamError(f"MQTT publish failed: {exc}", endpoint=topic) from exc
        if not info.is_published():
            raise VsmUpstreamError(f"MQTT publish not acknowledged within {self._publish_timeout}s", endpoint=topic)
