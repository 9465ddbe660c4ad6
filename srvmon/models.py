"""
Data models for the uptime monitor.

Defines the configuration records for monitored sites and the global
monitor settings, plus the read-only snapshot handed out to the status API.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class ProbeMode(Enum):
    """How a site's liveness is determined."""

    HTTP = "HTTP"
    TCP = "TCP"
    PASSIVE = "Passive"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ProbeMode":
        """Map a config string to a mode. Unknown or missing values mean HTTP."""
        if value:
            for mode in cls:
                if mode.value.lower() == str(value).strip().lower():
                    return mode
        return cls.HTTP


class AvailabilityTier(Enum):
    """Colour class of an availability ratio."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


@dataclass
class MonitorSettings:
    """Global monitor settings."""

    interval: float = 30  # seconds
    timeout: float = 5  # seconds
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass(frozen=True)
class SiteConfig:
    """
    Configuration for a single monitored site.

    Attributes:
        identifier: Unique key, also used as the URL path of its badges.
        target: URL (HTTP mode) or host:port (TCP mode). Unused in passive mode.
        mode: Probe strategy.
        interval: Seconds between probes; falls back to the global default.
        timeout: Per-attempt timeout in seconds (heartbeat window in passive mode).
        proxy: Optional proxy URL (http://, socks4://, socks5://).
        insecure_skip_verify: Disable TLS certificate verification.
    """

    identifier: str
    target: str = ""
    mode: ProbeMode = ProbeMode.HTTP
    interval: Optional[float] = None
    timeout: Optional[float] = None
    proxy: Optional[str] = None
    insecure_skip_verify: bool = False

    def effective_interval(self, settings: MonitorSettings) -> float:
        return self.interval if self.interval else settings.interval

    def effective_timeout(self, settings: MonitorSettings) -> float:
        return self.timeout if self.timeout else settings.timeout


@dataclass(frozen=True)
class SiteSnapshot:
    """A consistent point-in-time copy of one site's status."""

    identifier: str
    up: bool
    last_seen: Optional[datetime]
    probe_count: int
    success_count: int

    @property
    def availability(self) -> Optional[float]:
        """Fraction of successful probes, or None before the first probe."""
        if self.probe_count == 0:
            return None
        return self.success_count / self.probe_count
