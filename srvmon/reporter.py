"""
Read-only status queries consumed by the HTTP layer.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from srvmon.models import AvailabilityTier, SiteSnapshot
from srvmon.state import Registry

HEALTHY_THRESHOLD = 0.9
DEGRADED_THRESHOLD = 0.6


def availability_tier(ratio: Optional[float]) -> Optional[AvailabilityTier]:
    """
    Classify an availability ratio.

    Healthy needs strictly more than 90%; 60% itself is still degraded.
    Earlier srvmon releases compared with "> 0.6" and painted exactly 60%
    red; the degraded floor is now inclusive.
    """
    if ratio is None:
        return None
    if ratio > HEALTHY_THRESHOLD:
        return AvailabilityTier.HEALTHY
    if ratio >= DEGRADED_THRESHOLD:
        return AvailabilityTier.DEGRADED
    return AvailabilityTier.CRITICAL


class StatusReporter:
    """
    Query interface over the Registry.

    Every method raises SiteNotFound for an unknown identifier.
    """

    def __init__(self, registry: Registry) -> None:
        self.registry = registry

    def is_up(self, identifier: str) -> bool:
        return self.registry.get(identifier).up

    def last_seen(self, identifier: str) -> Optional[datetime]:
        return self.registry.get(identifier).last_seen

    def availability(self, identifier: str) -> Optional[float]:
        return self.snapshot(identifier).availability

    def snapshot(self, identifier: str) -> SiteSnapshot:
        return self.registry.get(identifier).snapshot()
