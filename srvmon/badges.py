"""
Shields.io badge URLs for the status endpoints.

Shields path segments use "-" as a separator, so literal dashes inside a
label or message are doubled and other reserved characters are escaped.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from urllib.parse import quote

from dateutil import tz

from srvmon.models import AvailabilityTier

_SHIELDS = "https://img.shields.io/badge"

_TIER_COLORS = {
    AvailabilityTier.HEALTHY: "green",
    AvailabilityTier.DEGRADED: "yellow",
    AvailabilityTier.CRITICAL: "red",
}


def _escape(text: str) -> str:
    return quote(text.replace("-", "--").replace("_", "__"), safe="")


def _badge(label: str, message: str, color: str) -> str:
    return f"{_SHIELDS}/{_escape(label)}-{_escape(message)}-{color}.svg"


def status_badge(up: bool) -> str:
    if up:
        return _badge("status", "up", "success")
    return _badge("status", "down", "critical")


def last_seen_badge(last_seen: Optional[datetime]) -> str:
    """Render the last successful probe in the server's local time."""
    if last_seen is None:
        return _badge("last seen", "n/a", "blue")
    local = last_seen.astimezone(tz.tzlocal())
    return _badge("last seen", local.strftime("%Y-%m-%d %H:%M:%S"), "blue")


def availability_badge(ratio: Optional[float], tier: Optional[AvailabilityTier]) -> str:
    if ratio is None or tier is None:
        return _badge("sla", "n/a", "blue")
    return _badge("sla", f"{ratio * 100:.1f}%", _TIER_COLORS[tier])
