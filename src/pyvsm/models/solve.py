"""Position solver response models."""

from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field

from pyvsm.models._base import UtcTimestamp, VsmBaseModel, format_timestamp


class SolveResult(VsmBaseModel):
    """A solved position.

    Keys the solver returns beyond the typed ones (gateway counts, etc.)
    are kept and end up in the device state as well.
    """

    model_config = ConfigDict(extra="allow")

    latitude: float | None = None
    longitude: float | None = None
    accuracy: float | None = None
    altitude: float | None = None
    algorithm_type: str | None = None
    position_timestamp: UtcTimestamp = None

    def to_patch(self) -> dict[str, Any]:
        """Dump as a camelCase state patch."""
        patch = self.model_dump(by_alias=True, exclude_none=True, exclude={"raw"})
        if self.position_timestamp is not None:
            patch["positionTimestamp"] = format_timestamp(self.position_timestamp)
        return patch


class SolveResponse(VsmBaseModel):
    """Solver response envelope ``{result?, warnings?, errors?}``."""

    result: SolveResult | None = None
    warnings: list[Any] = Field(default_factory=list)
    errors: list[Any] = Field(default_factory=list)

    @classmethod
    def error(cls, message: str) -> SolveResponse:
        """Synthesize a local error response."""
        return cls(errors=[message])
