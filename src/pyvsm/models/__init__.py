"""Data models for pyvsm."""

from pyvsm.models._base import UtcTimestamp, VsmBaseModel, format_timestamp, parse_timestamp
from pyvsm.models.almanac import AlmanacObject
from pyvsm.models.downlink import DownlinkFrame, FrameTag
from pyvsm.models.solve import SolveResponse, SolveResult
from pyvsm.models.state import EncodedData, GnssState, VsmState, read_block
from pyvsm.models.update import GnssFragment, Update
from pyvsm.models.uplink import Uplink

__all__ = [
    "AlmanacObject",
    "DownlinkFrame",
    "EncodedData",
    "FrameTag",
    "GnssFragment",
    "GnssState",
    "SolveResponse",
    "SolveResult",
    "Update",
    "Uplink",
    "UtcTimestamp",
    "VsmBaseModel",
    "VsmState",
    "format_timestamp",
    "parse_timestamp",
    "read_block",
]
