"""
Shared per-site status state.

SiteState is the only mutable data shared between the probe tasks and the
status API. Each record carries its own lock; every accessor takes it for the
full read or read-modify-write, so readers never see a half-updated record.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Optional

from srvmon.models import ProbeMode, SiteConfig, SiteSnapshot


class SiteNotFound(LookupError):
    """Raised when a status query names an identifier that is not configured."""

    def __init__(self, identifier: str) -> None:
        super().__init__(f"unknown site: {identifier}")
        self.identifier = identifier


class InvalidOperation(Exception):
    """Raised when an operation does not apply to a site's probe mode."""


class SiteState:
    """
    Mutable status record for one site.

    Written only by the site's own prober; read by any number of callers.
    """

    def __init__(self, config: SiteConfig) -> None:
        self.config = config
        self._lock = threading.Lock()
        self._up = False
        self._last_seen: Optional[datetime] = None
        self._probe_count = 0
        self._success_count = 0

    @property
    def identifier(self) -> str:
        return self.config.identifier

    @property
    def target(self) -> str:
        return self.config.target

    @property
    def mode(self) -> ProbeMode:
        return self.config.mode

    @property
    def up(self) -> bool:
        with self._lock:
            return self._up

    @property
    def last_seen(self) -> Optional[datetime]:
        with self._lock:
            return self._last_seen

    def record_success(self, now: Optional[datetime] = None) -> bool:
        """
        Record a successful probe.

        Returns:
            True if the site was down before this probe (down -> up edge).
        """
        with self._lock:
            restored = not self._up
            self._up = True
            self._last_seen = now or datetime.now(timezone.utc)
            self._probe_count += 1
            self._success_count += 1
        return restored

    def record_failure(self) -> bool:
        """
        Record a failed probe.

        Returns:
            True if the site was up before this probe (up -> down edge).
        """
        with self._lock:
            went_down = self._up
            self._up = False
            self._probe_count += 1
        return went_down

    def snapshot(self) -> SiteSnapshot:
        with self._lock:
            return SiteSnapshot(
                identifier=self.config.identifier,
                up=self._up,
                last_seen=self._last_seen,
                probe_count=self._probe_count,
                success_count=self._success_count,
            )

    def __repr__(self) -> str:
        return f"SiteState({self.identifier!r}, mode={self.mode.value})"


class Registry:
    """All configured sites, keyed by identifier. Fixed after construction."""

    def __init__(self, sites: Iterable[SiteConfig]) -> None:
        states: Dict[str, SiteState] = {}
        for site in sites:
            states[site.identifier] = SiteState(site)
        self._states = MappingProxyType(states)

    def get(self, identifier: str) -> SiteState:
        try:
            return self._states[identifier]
        except KeyError:
            raise SiteNotFound(identifier) from None

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._states

    def __iter__(self) -> Iterator[SiteState]:
        return iter(self._states.values())

    def __len__(self) -> int:
        return len(self._states)
