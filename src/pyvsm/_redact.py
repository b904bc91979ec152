"""Helpers for safe debug logging.

Solver requests carry an API key in their headers and almanac responses
carry multi-kilobyte images.  This module redacts secrets before they
reach DEBUG logs and shrinks long strings: hex blobs (almanac images,
scan payloads) are summarized by size and CRC32 so two log lines can be
compared, anything else is cut off.
"""

from __future__ import annotations

import re
import zlib
from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "authorization",
        "apikey",
        "api_key",
        "password",
        "token",
        "mqtt_password",
    }
)

_HEX_RE = re.compile(r"(?:[0-9a-fA-F]{2})+")


def _summarize(value: str, max_string: int) -> str:
    if _HEX_RE.fullmatch(value):
        blob = bytes.fromhex(value)
        return f"<hex:{len(blob)}b crc32={zlib.crc32(blob):08x}>"
    return f"{value[:max_string]}…<truncated {len(value)} chars>"


def redact_for_log(value: Any, *, max_string: int = 256, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None:
        return None

    if isinstance(value, str):
        if len(value) > max_string:
            return _summarize(value, max_string)
        return value

    if isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            if key.lower() in _SENSITIVE_VALUE_KEYS:
                redacted[key] = "<redacted>"
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
