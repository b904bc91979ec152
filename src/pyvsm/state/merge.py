"""Deterministic merge policy for device state records.

One rule set, applied everywhere a patch meets a record (translator
result into the stored record, rule patches into the working state):

* a key whose value is a mapping on *both* sides is merged recursively;
* any other value overwrites: scalars, lists (e.g. solver ``warnings``
  and ``errors``), ``None``, and a mapping replacing a non-mapping.

Neither input is mutated; the result shares no mutable structure with
the patch.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any


def _merge_into(target: dict[str, Any], patch: Mapping[str, Any]) -> None:
    for key, value in patch.items():
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            _merge_into(existing, value)
        else:
            target[key] = copy.deepcopy(value)


def merge_state(base: Mapping[str, Any], patch: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return *base* with *patch* merged in."""
    merged = copy.deepcopy(dict(base))
    if patch:
        _merge_into(merged, patch)
    return merged
