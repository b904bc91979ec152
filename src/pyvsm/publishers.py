"""Output side of the service: decorators shape state, publishers ship it."""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt

from pyvsm.config import PUBLISH_TOPIC_PLACEHOLDER
from pyvsm.exceptions import VsmConfigError

_logger = logging.getLogger(__name__)


class Decorator(Protocol):
    """Turns a merged device state into the object that gets published."""

    def decorate(self, state: Mapping[str, Any], device_id: str) -> dict[str, Any]: ...


class Publisher(Protocol):
    """Ships a decorated object for one device."""

    async def publish(self, device_id: str, obj: Mapping[str, Any]) -> None: ...


class IdentityDecorator:
    """Publishes the merged state as-is."""

    def decorate(self, state: Mapping[str, Any], device_id: str) -> dict[str, Any]:
        return copy.deepcopy(dict(state))


def _number(value: Any) -> float | int | None:
    if isinstance(value, bool):
        return None
    return value if isinstance(value, (int, float)) else None


class ThingParkDecorator:
    """Wraps the position fields in a ThingPark ``DevEUI_uplink`` frame.

    The translator's ``output`` block, when present, is the base of the
    ``location`` object; solver fields are added as ``loc_*`` keys.
    """

    def decorate(self, state: Mapping[str, Any], device_id: str) -> dict[str, Any]:
        output = state.get("output")
        location: dict[str, Any] = copy.deepcopy(output) if isinstance(output, dict) else {}

        location["loc_latitude"] = _number(state.get("latitude"))
        location["loc_longitude"] = _number(state.get("longitude"))
        location["loc_accuracy"] = _number(state.get("accuracy"))
        location["loc_altitude"] = _number(state.get("altitude"))

        if state.get("algorithmType"):
            location["loc_algorithm"] = state["algorithmType"]
        for source, target in (
            ("numberOfGatewaysReceived", "loc_gatewaysReceived"),
            ("numberOfGatewaysUsed", "loc_gatewaysUsed"),
        ):
            value = _number(state.get(source))
            if value is not None:
                location[target] = value

        warnings = state.get("warnings")
        if isinstance(warnings, list) and warnings:
            location["loc_warning"] = " | ".join(str(w) for w in warnings)
        errors = state.get("errors")
        if isinstance(errors, list) and errors:
            location["loc_error"] = " | ".join(str(e) for e in errors)

        location["loc_timestamp"] = state.get("positionTimestamp") or None

        return {"DevEUI_uplink": {"DevEUI": device_id, "location": location}}


class LogPublisher:
    """Writes each decorated object to the log at INFO."""

    async def publish(self, device_id: str, obj: Mapping[str, Any]) -> None:
        _logger.info("Publishing %s: %s", device_id, json.dumps(obj, default=str))


def publish_topic_for(template: str, device_id: str) -> str:
    """Substitute *device_id* for the ``deveui`` placeholder in *template*."""
    if PUBLISH_TOPIC_PLACEHOLDER not in template:
        raise VsmConfigError(f"Topic template must contain the substitution string {PUBLISH_TOPIC_PLACEHOLDER!r}")
    return template.replace(PUBLISH_TOPIC_PLACEHOLDER, device_id)


class MqttPublisher:
    """Publishes decorated objects as JSON on a per-device MQTT topic.

    Publishing is fire-and-forget: failures are logged, never raised.
    """

    def __init__(
        self,
        topic_template: str,
        *,
        host: str,
        port: int = 1883,
        username: str | None = None,
        password: str | None = None,
        keepalive: int = 60,
        client: mqtt.Client | None = None,
    ) -> None:
        publish_topic_for(topic_template, "")
        self._topic_template = topic_template
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._keepalive = keepalive
        self._client = client
        self._owns_client = client is None

    def start(self) -> None:
        """Connect to the broker and start paho's network thread."""
        if self._client is not None:
            return
        client = mqtt.Client(callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2)
        client.enable_logger(_logger)
        if self._username:
            client.username_pw_set(self._username, self._password)

        def on_connect(_c: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any) -> None:
            if reason_code.value != 0:
                _logger.warning("MQTT publisher connect failed: %s", reason_code)
                return
            _logger.debug("MQTT publisher connected to %s:%s", self._host, self._port)

        client.on_connect = on_connect
        client.connect(self._host, self._port, keepalive=self._keepalive)
        client.loop_start()
        self._client = client

    def stop(self) -> None:
        client = self._client
        self._client = None
        if client is None or not self._owns_client:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()

    async def publish(self, device_id: str, obj: Mapping[str, Any]) -> None:
        if self._client is None:
            _logger.warning("MQTT publisher not started; dropping output for %s", device_id)
            return
        topic = publish_topic_for(self._topic_template, device_id)
        _logger.debug("MQTT publishing %s on %s", device_id, topic)
        try:
            info = self._client.publish(topic, json.dumps(obj, default=str))
        except (ValueError, OSError):
            _logger.warning("MQTT publisher: failed to publish for %s", device_id, exc_info=True)
            return
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            _logger.warning("MQTT publisher: failed to publish for %s: %s", device_id, mqtt.error_string(info.rc))
