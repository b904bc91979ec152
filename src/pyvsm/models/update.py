"""Decoded update produced by the translator for one uplink."""

from __future__ import annotations

from typing import Any

from pyvsm.models._base import UtcTimestamp, VsmBaseModel

WIFI_MSGTYPE = "wifi"


class GnssFragment(VsmBaseModel):
    """``gnss`` fragment of an update.

    Parameters
    ----------
    device_time : datetime or None
        Clock sample reported by the device.
    device_time_timestamp : datetime or None
        Network receive time of the uplink carrying the clock sample.
    complete_hex : str or None
        Complete GNSS scan, present when the uplink can be solved.
    """

    device_time: UtcTimestamp = None
    device_time_timestamp: UtcTimestamp = None
    complete_hex: str | None = None


class Update(VsmBaseModel):
    """Decoded update.

    Fragments stay plain mappings: scan payloads are forwarded to the
    solver verbatim (minus bookkeeping keys).  The clock sample is typed
    separately with :class:`GnssFragment` by the rule that reads it.
    """

    gnss: dict[str, Any] | None = None
    semtech_encoded: dict[str, Any] | None = None
    semtech_gps_encoded: dict[str, Any] | None = None
    wifi: dict[str, Any] | None = None

    @property
    def msgtype(self) -> str | None:
        if self.semtech_encoded is None:
            return None
        value = self.semtech_encoded.get("msgtype")
        return str(value) if value is not None else None

    @property
    def has_wifi_scan(self) -> bool:
        return self.msgtype == WIFI_MSGTYPE

    @property
    def has_gnss_scan(self) -> bool:
        return self.gnss is not None and bool(self.gnss.get("completeHex"))

    @property
    def gnss_scan(self) -> dict[str, Any] | None:
        """Raw GNSS scan body for the solver."""
        if self.semtech_encoded is not None:
            return self.semtech_encoded
        return self.semtech_gps_encoded

