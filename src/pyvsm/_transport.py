"""HTTP transport for the solver and almanac services."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pyvsm._redact import redact_for_log
from pyvsm.exceptions import VsmUpstreamError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the solver and almanac cache.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpTransport`) concrete.
    """

    async def get_json(self, url: str, *, api_key: str) -> Any: ...

    async def post_json(self, url: str, body: Mapping[str, Any], *, api_key: str) -> Any: ...


class HttpTransport:
    """aiohttp transport: one attempt per call, JSON in and out.

    Every failure (connection error, timeout, non-2xx status, body that is
    not JSON) is raised as :class:`VsmUpstreamError`.
    """

    def __init__(self, http_session: aiohttp.ClientSession, *, timeout: float = 30.0) -> None:
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @staticmethod
    def _headers(api_key: str) -> dict[str, str]:
        return {
            "Authorization": api_key,
            "Content-Type": "application/json",
        }

    async def get_json(self, url: str, *, api_key: str) -> Any:
        _logger.debug("GET %s", url)
        return await self._request("GET", url, None, api_key)

    async def post_json(self, url: str, body: Mapping[str, Any], *, api_key: str) -> Any:
        _logger.debug("POST %s body=%s", url, redact_for_log(body))
        return await self._request("POST", url, json.dumps(body, separators=(",", ":")), api_key)

    async def _request(self, method: str, url: str, data: str | None, api_key: str) -> Any:
        try:
            async with self._http.request(
                method,
                url,
                data=data,
                headers=self._headers(api_key),
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise VsmUpstreamError(
                        f"HTTP {resp.status} from {url}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=url,
                    )
        except VsmUpstreamError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise VsmUpstreamError(
                f"Request to {url} failed: {exc}",
                endpoint=url,
            ) from exc

        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise VsmUpstreamError(
                f"Invalid JSON from {url}: {text[:200]}",
                status_code=resp.status,
                endpoint=url,
            ) from exc

        _logger.debug("%s %s -> %s", method, url, redact_for_log(result))
        return result
