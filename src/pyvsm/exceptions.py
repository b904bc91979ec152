"""Custom exception hierarchy for pyvsm."""

from __future__ import annotations


class VsmError(Exception):
    """Base exception for all pyvsm errors."""


class VsmConfigError(VsmError):
    """Invalid or missing configuration."""


class VsmValidationError(VsmError):
    """Malformed uplink event (missing device id, wrong field types)."""

    def __init__(self, message: str, *, device_id: str | None = None) -> None:
        self.device_id = device_id
        super().__init__(message)


class VsmUpstreamError(VsmError):
    """HTTP-level failure from the solver or almanac source (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class CodecIntegrityError(VsmError):
    """Compressed almanac image failed a bounds check or did not round-trip."""


class ProtocolAbort(VsmError):
    """Chunked almanac delivery was abandoned.

    Raised when the per-frame budget is too small to be worthwhile or when
    a frame send fails mid-sequence.  Remaining frames are dropped; there
    is no resumption.
    """

    def __init__(self, message: str, *, device_id: str = "", frames_sent: int = 0) -> None:
        self.device_id = device_id
        self.frames_sent = frames_sent
        super().__init__(message)


class DeviceNotFoundError(VsmError):
    """The state store holds no record for the requested device id."""

    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        super().__init__(f"No stored state for device {device_id}")
