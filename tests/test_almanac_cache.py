from __future__ import annotations

import asyncio
import base64
from collections.abc import Mapping
from typing import Any

import pytest

from pyvsm import codec
from pyvsm.almanac import AlmanacCache, build_almanac
from pyvsm.exceptions import VsmUpstreamError

_SPARSE_IMAGE = bytes(500) + b"\x01\x02\x03" + bytes(500)
_DENSE_IMAGE = bytes((i % 255) + 1 for i in range(200))


def _almanac_response(image: bytes) -> dict[str, Any]:
    return {"result": {"almanac_image": base64.b64encode(image).decode("ascii")}}


class _FakeTransport:
    def __init__(self, response: Any = None, *, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.get_calls: list[tuple[str, str]] = []
        self.gate: asyncio.Event | None = None

    async def get_json(self, url: str, *, api_key: str) -> Any:
        self.get_calls.append((url, api_key))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.response

    async def post_json(self, url: str, body: Mapping[str, Any], *, api_key: str) -> Any:  # pragma: no cover
        raise AssertionError("unexpected POST")


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_build_almanac_keeps_verified_compression() -> None:
    almanac = build_almanac(_SPARSE_IMAGE)

    assert almanac.is_compressed
    assert almanac.almanac_image == _SPARSE_IMAGE.hex()
    compressed = bytes.fromhex(almanac.selected_image)
    assert len(compressed) < len(_SPARSE_IMAGE)
    assert codec.decode(compressed, len(_SPARSE_IMAGE)) == _SPARSE_IMAGE


def test_build_almanac_omits_compression_when_not_smaller() -> None:
    almanac = build_almanac(_DENSE_IMAGE)

    assert not almanac.is_compressed
    assert almanac.almanac_compressed is None
    assert almanac.selected_image == _DENSE_IMAGE.hex()


@pytest.mark.asyncio
async def test_load_fetches_once_and_serves_from_cache() -> None:
    transport = _FakeTransport(_almanac_response(_SPARSE_IMAGE))
    cache = AlmanacCache(transport, api_key="KEY", base_url="https://solver.example/", clock=_Clock())

    first = await cache.load()
    second = await cache.load()

    assert first is not None
    assert first is second
    assert transport.get_calls == [("https://solver.example/api/v1/almanac/full", "KEY")]


@pytest.mark.asyncio
async def test_load_refetches_after_ttl() -> None:
    clock = _Clock()
    transport = _FakeTransport(_almanac_response(_SPARSE_IMAGE))
    cache = AlmanacCache(transport, api_key="KEY", ttl=60.0, clock=clock)

    await cache.load()
    clock.now += 59.0
    await cache.load()
    assert len(transport.get_calls) == 1

    clock.now += 2.0
    await cache.load()
    assert len(transport.get_calls) == 2


@pytest.mark.asyncio
async def test_failed_fetch_returns_none_and_keeps_previous_entry_untouched() -> None:
    clock = _Clock()
    transport = _FakeTransport(_almanac_response(_SPARSE_IMAGE))
    cache = AlmanacCache(transport, api_key="KEY", ttl=10.0, clock=clock)
    first = await cache.load()
    stored_age = cache.age

    clock.now += 20.0
    transport.error = VsmUpstreamError("HTTP 503", status_code=503)
    assert await cache.load() is None

    assert cache._entry is first  # type: ignore[attr-defined]
    assert cache.age == pytest.approx((stored_age or 0.0) + 20.0)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        {},
        {"result": {}},
        {"result": {"almanac_image": ""}},
        {"result": {"almanac_image": "not base64!"}},
        {"result": {"almanac_image": "!!!!"}},
        ["unexpected"],
    ],
)
async def test_bad_almanac_data_is_not_cached(response: Any) -> None:
    transport = _FakeTransport(response)
    cache = AlmanacCache(transport, api_key="KEY", clock=_Clock())

    assert await cache.load() is None
    assert cache.age is None


@pytest.mark.asyncio
async def test_line_wrapped_base64_image_is_accepted() -> None:
    wrapped = base64.encodebytes(_SPARSE_IMAGE).decode("ascii")
    transport = _FakeTransport({"result": {"almanac_image": "  " + wrapped + "  "}})
    cache = AlmanacCache(transport, api_key="KEY", clock=_Clock())

    almanac = await cache.load()

    assert "\n" in wrapped
    assert almanac is not None
    assert almanac.almanac_image == _SPARSE_IMAGE.hex()


@pytest.mark.asyncio
async def test_no_api_key_skips_fetch() -> None:
    transport = _FakeTransport(_almanac_response(_SPARSE_IMAGE))
    cache = AlmanacCache(transport, api_key=None, clock=_Clock())

    assert await cache.load() is None
    assert transport.get_calls == []


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_fetch() -> None:
    transport = _FakeTransport(_almanac_response(_SPARSE_IMAGE))
    transport.gate = asyncio.Event()
    cache = AlmanacCache(transport, api_key="KEY", clock=_Clock())

    loads = [asyncio.create_task(cache.load()) for _ in range(3)]
    await asyncio.sleep(0)
    transport.gate.set()
    results = await asyncio.gather(*loads)

    assert len(transport.get_calls) == 1
    assert results[0] is not None
    assert all(result is results[0] for result in results)


@pytest.mark.asyncio
async def test_invalidate_forces_refetch() -> None:
    transport = _FakeTransport(_almanac_response(_SPARSE_IMAGE))
    cache = AlmanacCache(transport, api_key="KEY", clock=_Clock())

    await cache.load()
    cache.invalidate()
    await cache.load()

    assert len(transport.get_calls) == 2
