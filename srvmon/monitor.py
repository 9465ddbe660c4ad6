"""
Site probers — the core engine.

Each Prober owns exactly one SiteState and is its only writer. Three
strategies exist:
  - HttpProber: GET the target on a fixed interval, up iff status 200
  - TcpProber: open (and immediately close) a TCP connection on a fixed interval
  - PassiveProber: wait for pushed heartbeats, down when none arrives in time

All probers run concurrently in one asyncio event loop, one task per site.
Network failures are recorded as failed probes and never leave the loop.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Type

import aiohttp
from aiohttp_socks import ProxyConnector
from python_socks import ProxyConnectionError, ProxyError, ProxyTimeoutError
from python_socks.async_.asyncio import Proxy

from srvmon import notifier
from srvmon.models import MonitorSettings, ProbeMode
from srvmon.state import InvalidOperation, SiteState

# Status code reported when no HTTP response was received at all
NO_STATUS = -1

# How long a proxied TCP connection must stay open to count as established
PROXY_READ_GUARD = 0.5

_PROXY_ERRORS = (ProxyError, ProxyConnectionError, ProxyTimeoutError)


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of a single probe attempt."""

    ok: bool
    code: int = NO_STATUS
    error: Optional[str] = None


def split_host_port(target: str) -> Tuple[str, int]:
    """Split "host:port" (or "[v6addr]:port") into its parts."""
    host, sep, port = target.strip().rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"expected host:port, got {target!r}")
    number = int(port)
    if not 0 < number < 65536:
        raise ValueError(f"port out of range in {target!r}")
    return host.strip("[]"), number


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class Prober:
    """
    Base class: the probe loop and the bookkeeping shared by all modes.

    Attributes:
        state: The site record this prober writes to.
        settings: Global settings (defaults, log level).
        interval: Seconds slept between probes.
        timeout: Per-attempt timeout in seconds.
    """

    mode: ProbeMode

    def __init__(self, state: SiteState, settings: MonitorSettings) -> None:
        self.state = state
        self.settings = settings
        self.interval = state.config.effective_interval(settings)
        self.timeout = state.config.effective_timeout(settings)
        self.proxy = state.config.proxy or None

    @property
    def identifier(self) -> str:
        return self.state.identifier

    @property
    def _debug(self) -> bool:
        return self.settings.log_level.upper() == "DEBUG"

    async def start(self) -> None:
        """Announce the site and probe it until the task is cancelled."""
        notifier.print_monitoring_start(
            self.identifier,
            self.mode.value,
            self.state.target,
            self.interval,
            self.timeout,
        )
        try:
            await self.run()
        except asyncio.CancelledError:
            pass

    async def run(self) -> None:
        while True:
            await self.probe_once()
            await asyncio.sleep(self.interval)

    async def probe_once(self) -> bool:
        """Perform one probe, record it, and return whether it succeeded."""
        try:
            outcome = await self._attempt()
        except Exception as exc:
            notifier.print_probe_error(self.identifier, _describe(exc))
            outcome = ProbeOutcome(ok=False, error=_describe(exc))

        if outcome.ok:
            if self.state.record_success():
                notifier.print_site_restored(self.identifier, self.state.target)
        elif self.state.record_failure():
            notifier.print_site_down(
                self.identifier,
                self.state.target,
                error=outcome.error,
                code=outcome.code,
            )

        if self._debug:
            detail = f"code={outcome.code}" if outcome.code != NO_STATUS else ""
            if outcome.error:
                detail = f"{detail} err={outcome.error}".strip()
            notifier.print_probe_result(self.identifier, outcome.ok, detail)
        return outcome.ok

    def heartbeat(self) -> None:
        """Deliver a pushed heartbeat. Only passive sites accept one."""
        raise InvalidOperation("mode is not passive")

    async def _attempt(self) -> ProbeOutcome:
        raise NotImplementedError


class HttpProber(Prober):
    """Up iff a GET of the target completes with status 200."""

    mode = ProbeMode.HTTP

    def __init__(self, state: SiteState, settings: MonitorSettings) -> None:
        super().__init__(state, settings)
        self.verify_tls = not state.config.insecure_skip_verify
        self._session: Optional[aiohttp.ClientSession] = None

    def _open_session(self) -> aiohttp.ClientSession:
        if self.proxy:
            connector = ProxyConnector.from_url(self.proxy)
        else:
            connector = aiohttp.TCPConnector(limit_per_host=1)
        return aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )

    async def run(self) -> None:
        # One session (and connection pool) per site for the task's lifetime
        async with self._open_session() as session:
            self._session = session
            try:
                await super().run()
            finally:
                self._session = None

    async def _attempt(self) -> ProbeOutcome:
        if self._session is not None:
            return await self._get(self._session)
        async with self._open_session() as session:
            return await self._get(session)

    async def _get(self, session: aiohttp.ClientSession) -> ProbeOutcome:
        try:
            async with session.get(self.state.target, ssl=self.verify_tls) as resp:
                code = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            return ProbeOutcome(ok=False, error=_describe(exc))
        except _PROXY_ERRORS as exc:
            return ProbeOutcome(ok=False, error=f"proxy: {_describe(exc)}")

        if code == 200:
            return ProbeOutcome(ok=True, code=code)
        return ProbeOutcome(ok=False, code=code, error=f"unexpected status {code}")


class TcpProber(Prober):
    """
    Up iff a TCP connection to host:port can be established.

    No data is exchanged; the connection is closed right away. Through a
    proxy, a successful dial alone is not trusted: the tunnel must also stay
    open for PROXY_READ_GUARD seconds without being closed by the far end.
    """

    mode = ProbeMode.TCP

    def __init__(self, state: SiteState, settings: MonitorSettings) -> None:
        super().__init__(state, settings)
        self.host, self.port = split_host_port(state.target)

    async def _attempt(self) -> ProbeOutcome:
        writer: Optional[asyncio.StreamWriter] = None
        try:
            if self.proxy:
                reader, writer = await self._dial_via_proxy()
                if not await self._tunnel_alive(reader):
                    return ProbeOutcome(ok=False, error="proxy closed the connection")
            else:
                reader, writer = await asyncio.wait_for(
                    asyncio.open_connection(self.host, self.port),
                    timeout=self.timeout,
                )
            return ProbeOutcome(ok=True)
        except (OSError, asyncio.TimeoutError) as exc:
            return ProbeOutcome(ok=False, error=_describe(exc))
        except _PROXY_ERRORS as exc:
            return ProbeOutcome(ok=False, error=f"proxy: {_describe(exc)}")
        finally:
            if writer is not None:
                writer.close()
                with contextlib.suppress(OSError):
                    await writer.wait_closed()

    async def _dial_via_proxy(self) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        proxy = Proxy.from_url(self.proxy)
        sock = await proxy.connect(
            dest_host=self.host,
            dest_port=self.port,
            timeout=self.timeout,
        )
        try:
            return await asyncio.open_connection(sock=sock)
        except BaseException:
            sock.close()
            raise

    async def _tunnel_alive(self, reader: asyncio.StreamReader) -> bool:
        try:
            data = await asyncio.wait_for(
                reader.read(1),
                timeout=min(PROXY_READ_GUARD, self.timeout),
            )
        except asyncio.TimeoutError:
            # Quiet but open: the tunnel is established
            return True
        return bool(data)


class PassiveProber(Prober):
    """
    Up iff a heartbeat is pushed at least once per timeout window.

    Heartbeats are latched in an event, so one delivered before the prober
    starts waiting is not lost. Several heartbeats within one window count
    as a single successful probe.
    """

    mode = ProbeMode.PASSIVE

    def __init__(self, state: SiteState, settings: MonitorSettings) -> None:
        super().__init__(state, settings)
        self._signal = asyncio.Event()

    def heartbeat(self) -> None:
        self._signal.set()

    async def run(self) -> None:
        while True:
            await self.probe_once()

    async def _attempt(self) -> ProbeOutcome:
        try:
            await asyncio.wait_for(self._signal.wait(), timeout=self.timeout)
        except asyncio.TimeoutError:
            return ProbeOutcome(ok=False, error=f"no heartbeat within {self.timeout:g}s")
        self._signal.clear()
        return ProbeOutcome(ok=True)


_PROBERS: Dict[ProbeMode, Type[Prober]] = {
    ProbeMode.HTTP: HttpProber,
    ProbeMode.TCP: TcpProber,
    ProbeMode.PASSIVE: PassiveProber,
}


def make_prober(state: SiteState, settings: MonitorSettings) -> Prober:
    """Build the prober matching the site's mode."""
    return _PROBERS[state.mode](state, settings)
