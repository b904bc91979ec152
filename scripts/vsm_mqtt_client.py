#!/usr/bin/env python3
"""Run the uplink service against a ThingPark-style MQTT broker.

Subscribes to the uplink topic of every device listed in ``--devices``
(or to the wildcard topic), runs each uplink through the rule pipeline,
sends downlinks on the device's downlink topic and publishes the merged
state.

The translator is loaded from ``--translator module:attribute``; the
attribute must be an object implementing ``version`` and
``translate(record)``.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import signal
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

import aiohttp  # noqa: E402

from pyvsm._mqtt import MqttDownlinker, MqttRuntime, uplink_topics  # noqa: E402
from pyvsm.config import VsmConfig  # noqa: E402
from pyvsm.publishers import (  # noqa: E402
    Decorator,
    IdentityDecorator,
    LogPublisher,
    MqttPublisher,
    Publisher,
    ThingParkDecorator,
)
from pyvsm.service import Translator, UplinkService  # noqa: E402

_LOG = logging.getLogger("vsm_mqtt_client")

_DECORATORS: dict[str, type[IdentityDecorator] | type[ThingParkDecorator]] = {
    "default": IdentityDecorator,
    "thingpark": ThingParkDecorator,
}


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="VSM uplink service over MQTT.")
    parser.add_argument(
        "--translator",
        required=True,
        help="Translator object as module:attribute.",
    )
    parser.add_argument(
        "--devices",
        type=Path,
        default=None,
        help="File with one DevEUI per line (default: wildcard subscription).",
    )
    parser.add_argument(
        "--decorator",
        choices=sorted(_DECORATORS),
        default="default",
        help="Output decorator.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _load_translator(target: str) -> Translator:
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise SystemExit(f"--translator must be module:attribute, got {target!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attribute)


def _read_devices(path: Path | None) -> list[str]:
    if path is None:
        return []
    devices = [line.strip() for line in path.read_text(encoding="utf-8").splitlines()]
    devices = [device for device in devices if device and not device.startswith("#")]
    if not devices:
        _LOG.warning("No devices in %s, continuing anyway", path)
    return devices


async def _run(args: argparse.Namespace, config: VsmConfig) -> int:
    if not config.mqtt_host:
        print("VSM_MQTT_HOST is required", file=sys.stderr)
        return 2

    translator = _load_translator(args.translator)
    devices = _read_devices(args.devices)
    decorator: Decorator = _DECORATORS[args.decorator]()

    publisher: Publisher
    mqtt_publisher: MqttPublisher | None = None
    if config.publish_topic:
        mqtt_publisher = MqttPublisher(
            config.publish_topic,
            host=config.mqtt_host,
            port=config.mqtt_port,
            username=config.mqtt_username,
            password=config.mqtt_password,
            keepalive=config.mqtt_keepalive,
        )
        mqtt_publisher.start()
        publisher = mqtt_publisher
    else:
        publisher = LogPublisher()

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    async with aiohttp.ClientSession() as session:
        runtime: MqttRuntime | None = None
        downlinker = MqttDownlinker(lambda: runtime.client if runtime else None, topic_template=config.downlink_topic)
        service = UplinkService.from_config(
            config,
            session,
            downlinker,
            translator=translator,
            publisher=publisher,
            decorator=decorator,
        )
        runtime = MqttRuntime(loop=loop, on_uplink=service.submit, keepalive=config.mqtt_keepalive)
        runtime.start(
            config.mqtt_host,
            config.mqtt_port,
            uplink_topics(config.uplink_topic, devices),
            username=config.mqtt_username,
            password=config.mqtt_password,
        )
        _LOG.info("Translator version %s, %d devices", translator.version, len(devices))
        try:
            await stop.wait()
        finally:
            runtime.stop()
            await service.aclose()
            if mqtt_publisher is not None:
                mqtt_publisher.stop()
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args, VsmConfig.from_env()))


if __name__ == "__main__":
    raise SystemExit(_main())
