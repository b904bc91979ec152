#!/usr/bin/env python3
"""Fetch the current almanac and report how it would be delivered.

Downloads the full almanac once, runs it through the codec and prints
image sizes, whether the compressed form verified, and how many frames a
device with the given downlink size would receive.

Reads ``VSM_API_KEY`` (and the other ``VSM_*`` variables) from the
environment.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

import aiohttp  # noqa: E402

from pyvsm._transport import HttpTransport  # noqa: E402
from pyvsm.almanac import AlmanacCache  # noqa: E402
from pyvsm.config import VsmConfig  # noqa: E402
from pyvsm.downlink import chunk_almanac  # noqa: E402
from pyvsm.exceptions import ProtocolAbort  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch the almanac and print compression/delivery stats.")
    parser.add_argument(
        "--max-size",
        type=int,
        action="append",
        default=None,
        help="Downlink payload size to plan frames for (repeatable, default: 40 and 51).",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


async def _probe(config: VsmConfig, max_sizes: list[int]) -> int:
    async with aiohttp.ClientSession() as session:
        transport = HttpTransport(session, timeout=config.http_timeout)
        cache = AlmanacCache(transport, api_key=config.api_key, base_url=config.solver_base_url)
        almanac = await cache.load()

    if almanac is None:
        print("[probe] No almanac fetched (missing VSM_API_KEY or upstream failure)", file=sys.stderr)
        return 2

    print(f"[probe] almanac bytes   : {almanac.image_size}")
    if almanac.almanac_compressed is not None:
        compressed_size = len(almanac.almanac_compressed) // 2
        ratio = compressed_size / almanac.image_size if almanac.image_size else 0.0
        print(f"[probe] compressed bytes: {compressed_size} ({ratio:.1%})")
    else:
        print("[probe] compressed bytes: - (not smaller or did not verify)")

    for max_size in max_sizes:
        try:
            frames = chunk_almanac(almanac, max_size)
        except ProtocolAbort as exc:
            print(f"[probe] max_size={max_size}: {exc}")
            continue
        print(f"[probe] max_size={max_size}: {len(frames)} frames")
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    config = VsmConfig.from_env()
    return asyncio.run(_probe(config, args.max_size or [40, 51]))


if __name__ == "__main__":
    raise SystemExit(_main())
