"""pyvsm - Rule-driven LoRaWAN telemetry pipeline with position solving and almanac downlinks."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyvsm")
except PackageNotFoundError:
    __version__ = "0+local"
from pyvsm.almanac import AlmanacCache
from pyvsm.config import VsmConfig
from pyvsm.downlink import Downlinker, chunk_almanac, deliver_almanac
from pyvsm.exceptions import (
    CodecIntegrityError,
    DeviceNotFoundError,
    ProtocolAbort,
    VsmConfigError,
    VsmError,
    VsmUpstreamError,
    VsmValidationError,
)
from pyvsm.models import (
    AlmanacObject,
    DownlinkFrame,
    FrameTag,
    SolveResponse,
    SolveResult,
    Update,
    Uplink,
)
from pyvsm.rules import RulePipeline
from pyvsm.service import TranslationResult, Translator, UplinkService, is_vsm_device
from pyvsm.solver import PositionSolver, Solver
from pyvsm.state import MemoryStateStore, StateStore

__all__ = [
    "__version__",
    "AlmanacCache",
    "AlmanacObject",
    "CodecIntegrityError",
    "DeviceNotFoundError",
    "DownlinkFrame",
    "Downlinker",
    "FrameTag",
    "MemoryStateStore",
    "PositionSolver",
    "ProtocolAbort",
    "RulePipeline",
    "SolveResponse",
    "SolveResult",
    "Solver",
    "StateStore",
    "TranslationResult",
    "Translator",
    "Update",
    "Uplink",
    "UplinkService",
    "VsmConfig",
    "VsmConfigError",
    "VsmError",
    "VsmUpstreamError",
    "VsmValidationError",
    "chunk_almanac",
    "deliver_almanac",
    "is_vsm_device",
]
