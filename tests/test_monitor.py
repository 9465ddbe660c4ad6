"""
Tests for the site probers.

HTTP probes run against an in-process aiohttp server, TCP probes against
local asyncio listeners; no external network access is needed.
"""

import asyncio
import socket
import ssl

import pytest
import trustme
from aiohttp import web
from aiohttp.test_utils import TestServer

from srvmon import notifier
from srvmon.models import MonitorSettings, ProbeMode, SiteConfig
from srvmon.monitor import (
    NO_STATUS,
    HttpProber,
    PassiveProber,
    TcpProber,
    make_prober,
    split_host_port,
)
from srvmon.state import InvalidOperation, SiteState

SETTINGS = MonitorSettings(interval=0.05, timeout=1)


def _prober(mode, target="", settings=SETTINGS, **kwargs):
    site = SiteConfig(identifier="svc", target=target, mode=mode, **kwargs)
    return make_prober(SiteState(site), settings)


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def edges(monkeypatch):
    """Record transition-edge notifications instead of printing them."""
    events = []
    monkeypatch.setattr(
        notifier, "print_site_restored", lambda identifier, target: events.append("restored")
    )
    monkeypatch.setattr(
        notifier,
        "print_site_down",
        lambda identifier, target, error=None, code=NO_STATUS: events.append(("down", code)),
    )
    return events


def _status_app(codes):
    """App whose /check endpoint answers with codes["status"]."""

    async def check(_request):
        return web.Response(status=codes["status"], text="ok")

    app = web.Application()
    app.router.add_get("/check", check)
    return app


# ─── Helpers ──────────────────────────────────────────────────


class TestSplitHostPort:
    def test_host_and_port(self):
        assert split_host_port("db.internal:5432") == ("db.internal", 5432)

    def test_ipv6_literal(self):
        assert split_host_port("[::1]:22") == ("::1", 22)

    @pytest.mark.parametrize("target", ["db.internal", ":80", "host:http", "host:70000"])
    def test_rejects_malformed(self, target):
        with pytest.raises(ValueError):
            split_host_port(target)


class TestMakeProber:
    def test_dispatch_by_mode(self):
        assert isinstance(_prober(ProbeMode.HTTP, "http://x"), HttpProber)
        assert isinstance(_prober(ProbeMode.TCP, "x:1"), TcpProber)
        assert isinstance(_prober(ProbeMode.PASSIVE), PassiveProber)

    def test_per_site_overrides(self):
        prober = _prober(ProbeMode.HTTP, "http://x", interval=7, timeout=3)
        assert (prober.interval, prober.timeout) == (7, 3)

    def test_global_defaults(self):
        prober = _prober(ProbeMode.HTTP, "http://x")
        assert (prober.interval, prober.timeout) == (0.05, 1)

    def test_active_probers_reject_heartbeats(self):
        with pytest.raises(InvalidOperation):
            _prober(ProbeMode.HTTP, "http://x").heartbeat()
        with pytest.raises(InvalidOperation):
            _prober(ProbeMode.TCP, "x:1").heartbeat()


# ─── HTTP mode ────────────────────────────────────────────────


class TestHttpProber:
    @pytest.mark.asyncio
    async def test_200_is_up(self, edges):
        async with TestServer(_status_app({"status": 200})) as server:
            prober = _prober(ProbeMode.HTTP, str(server.make_url("/check")))
            assert await prober.probe_once() is True

        snap = prober.state.snapshot()
        assert snap.up is True
        assert snap.last_seen is not None
        assert (snap.probe_count, snap.success_count) == (1, 1)
        assert edges == ["restored"]

    @pytest.mark.asyncio
    async def test_non_200_is_down(self, edges):
        async with TestServer(_status_app({"status": 503})) as server:
            prober = _prober(ProbeMode.HTTP, str(server.make_url("/check")))
            assert await prober.probe_once() is False

        snap = prober.state.snapshot()
        assert snap.up is False
        assert (snap.probe_count, snap.success_count) == (1, 0)
        # Never up, so nothing went down
        assert edges == []

    @pytest.mark.asyncio
    async def test_404_is_not_success(self):
        async with TestServer(_status_app({"status": 404})) as server:
            prober = _prober(ProbeMode.HTTP, str(server.make_url("/check")))
            outcome = await prober._attempt()
        assert outcome.ok is False
        assert outcome.code == 404

    @pytest.mark.asyncio
    async def test_refused_connection_has_no_status(self):
        prober = _prober(ProbeMode.HTTP, f"http://127.0.0.1:{_free_port()}/")
        outcome = await prober._attempt()
        assert outcome.ok is False
        assert outcome.code == NO_STATUS
        assert outcome.error

    @pytest.mark.asyncio
    async def test_timeout_is_a_failed_probe(self):
        async def slow(_request):
            await asyncio.sleep(1)
            return web.Response(text="late")

        app = web.Application()
        app.router.add_get("/slow", slow)
        settings = MonitorSettings(interval=0.05, timeout=0.2)
        async with TestServer(app) as server:
            prober = _prober(ProbeMode.HTTP, str(server.make_url("/slow")), settings=settings)
            assert await prober.probe_once() is False
        assert prober.state.snapshot().probe_count == 1

    @pytest.mark.asyncio
    async def test_one_down_event_for_consecutive_failures(self, edges):
        codes = {"status": 200}
        async with TestServer(_status_app(codes)) as server:
            prober = _prober(ProbeMode.HTTP, str(server.make_url("/check")))
            await prober.probe_once()
            codes["status"] = 500
            for _ in range(5):
                await prober.probe_once()
            codes["status"] = 200
            await prober.probe_once()

        assert edges == ["restored", ("down", 500), "restored"]
        snap = prober.state.snapshot()
        assert (snap.probe_count, snap.success_count) == (7, 2)

    @pytest.mark.asyncio
    async def test_run_loop_keeps_probing(self, edges):
        async with TestServer(_status_app({"status": 200})) as server:
            prober = _prober(ProbeMode.HTTP, str(server.make_url("/check")))
            task = asyncio.create_task(prober.start())
            await asyncio.sleep(0.4)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        snap = prober.state.snapshot()
        assert snap.probe_count >= 2
        assert snap.success_count == snap.probe_count
        assert edges == ["restored"]


async def _pipe(reader, writer):
    try:
        while True:
            data = await reader.read(65536)
            if not data:
                break
            writer.write(data)
            await writer.drain()
    finally:
        writer.close()


async def _tunneling_proxy(upstream_port, requests):
    """
    CONNECT proxy that forwards every tunnel to a local upstream port.

    The first request line of each tunnel is appended to `requests`.
    """

    async def handle(reader, writer):
        head = await reader.readuntil(b"\r\n\r\n")
        requests.append(head.split(b"\r\n", 1)[0].decode())
        up_reader, up_writer = await asyncio.open_connection("127.0.0.1", upstream_port)
        writer.write(b"HTTP/1.1 200 Connection established\r\n\r\n")
        await writer.drain()
        await asyncio.gather(
            _pipe(reader, up_writer),
            _pipe(up_reader, writer),
            return_exceptions=True,
        )

    return await asyncio.start_server(handle, "127.0.0.1", 0)


class TestHttpProberOptions:
    @pytest.mark.asyncio
    async def test_self_signed_certificate(self):
        ca = trustme.CA()
        ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        ca.issue_cert("127.0.0.1").configure_cert(ctx)

        runner = web.AppRunner(_status_app({"status": 200}))
        await runner.setup()
        port = _free_port()
        await web.TCPSite(runner, "127.0.0.1", port, ssl_context=ctx).start()
        try:
            target = f"https://127.0.0.1:{port}/check"
            verifying = _prober(ProbeMode.HTTP, target)
            skipping = _prober(ProbeMode.HTTP, target, insecure_skip_verify=True)

            assert await verifying.probe_once() is False
            assert await skipping.probe_once() is True
        finally:
            await runner.cleanup()

    @pytest.mark.asyncio
    async def test_request_goes_through_proxy(self):
        requests = []
        async with TestServer(_status_app({"status": 200})) as backend:
            proxy_server = await _tunneling_proxy(backend.port, requests)
            proxy_port = proxy_server.sockets[0].getsockname()[1]
            async with proxy_server:
                # Unresolvable host: only reachable through the proxy
                prober = _prober(
                    ProbeMode.HTTP,
                    "http://backend.invalid/check",
                    proxy=f"http://127.0.0.1:{proxy_port}",
                )
                assert await prober.probe_once() is True

        assert requests and requests[0].startswith("CONNECT backend.invalid:80 ")
        assert prober.state.snapshot().success_count == 1

    @pytest.mark.asyncio
    async def test_unreachable_proxy_is_down(self):
        prober = _prober(
            ProbeMode.HTTP,
            "http://backend.invalid/check",
            proxy=f"http://127.0.0.1:{_free_port()}",
        )
        outcome = await prober._attempt()
        assert outcome.ok is False
        assert outcome.code == NO_STATUS


# ─── TCP mode ─────────────────────────────────────────────────


class TestTcpProber:
    @pytest.mark.asyncio
    async def test_connect_is_up_and_connection_is_closed(self, edges):
        closed = []

        async def handle(reader, writer):
            # Returns once the prober closes its end
            closed.append(await reader.read())
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        async with server:
            prober = _prober(ProbeMode.TCP, f"127.0.0.1:{port}")
            for _ in range(3):
                assert await prober.probe_once() is True
            await asyncio.sleep(0.1)

        assert closed == [b"", b"", b""]
        assert prober.state.snapshot().success_count == 3
        assert edges == ["restored"]

    @pytest.mark.asyncio
    async def test_refused_is_down(self, edges):
        prober = _prober(ProbeMode.TCP, f"127.0.0.1:{_free_port()}")
        assert await prober.probe_once() is False
        snap = prober.state.snapshot()
        assert (snap.up, snap.probe_count, snap.success_count) == (False, 1, 0)


async def _fake_http_proxy(hold_open):
    """
    Minimal CONNECT proxy that always claims success.

    With hold_open=False it drops the tunnel right after the handshake,
    which is how a proxy reports an unreachable destination after the fact.
    """

    async def handle(reader, writer):
        await reader.readuntil(b"\r\n\r\n")
        writer.write(b"HTTP/1.1 200 Connection established\r\n\r\n")
        await writer.drain()
        if hold_open:
            await reader.read()
        writer.close()

    return await asyncio.start_server(handle, "127.0.0.1", 0)


class TestTcpProberThroughProxy:
    @pytest.mark.asyncio
    async def test_tunnel_that_stays_open_is_up(self):
        server = await _fake_http_proxy(hold_open=True)
        port = server.sockets[0].getsockname()[1]
        async with server:
            prober = _prober(
                ProbeMode.TCP, "backend.internal:5432", proxy=f"http://127.0.0.1:{port}"
            )
            assert await prober.probe_once() is True

    @pytest.mark.asyncio
    async def test_tunnel_dropped_after_handshake_is_down(self):
        server = await _fake_http_proxy(hold_open=False)
        port = server.sockets[0].getsockname()[1]
        async with server:
            prober = _prober(
                ProbeMode.TCP, "backend.internal:5432", proxy=f"http://127.0.0.1:{port}"
            )
            outcome = await prober._attempt()
        assert outcome.ok is False

    @pytest.mark.asyncio
    async def test_unreachable_proxy_is_down(self):
        prober = _prober(
            ProbeMode.TCP, "backend.internal:5432", proxy=f"http://127.0.0.1:{_free_port()}"
        )
        assert await prober.probe_once() is False


# ─── Passive mode ─────────────────────────────────────────────


class TestPassiveProber:
    @pytest.mark.asyncio
    async def test_heartbeat_before_waiting_is_kept(self, edges):
        prober = _prober(ProbeMode.PASSIVE, timeout=1)
        prober.heartbeat()
        assert await prober.probe_once() is True
        snap = prober.state.snapshot()
        assert (snap.up, snap.probe_count, snap.success_count) == (True, 1, 1)
        assert edges == ["restored"]

    @pytest.mark.asyncio
    async def test_heartbeat_never_blocks(self):
        prober = _prober(ProbeMode.PASSIVE, timeout=1)
        for _ in range(10):
            prober.heartbeat()
        # Pending heartbeats coalesce into one success
        assert await prober.probe_once() is True
        assert prober.state.snapshot().success_count == 1

    @pytest.mark.asyncio
    async def test_timeout_without_heartbeat_is_down(self):
        prober = _prober(ProbeMode.PASSIVE, timeout=0.2)
        loop = asyncio.get_running_loop()
        started = loop.time()
        assert await prober.probe_once() is False
        assert loop.time() - started >= 0.19
        assert prober.state.snapshot().probe_count == 1

    @pytest.mark.asyncio
    async def test_goes_down_once_after_timeout(self, edges):
        prober = _prober(ProbeMode.PASSIVE, timeout=0.5)
        task = asyncio.create_task(prober.start())
        prober.heartbeat()

        await asyncio.sleep(0.25)
        assert prober.state.up is True

        # Failures at ~0.5s and ~1.0s; only the first is an edge
        await asyncio.sleep(1.05)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        snap = prober.state.snapshot()
        assert snap.up is False
        assert (snap.probe_count, snap.success_count) == (3, 1)
        assert edges == ["restored", ("down", NO_STATUS)]

    @pytest.mark.asyncio
    async def test_heartbeat_while_waiting_restores(self, edges):
        prober = _prober(ProbeMode.PASSIVE, timeout=5)
        task = asyncio.create_task(prober.start())
        await asyncio.sleep(0.05)
        prober.heartbeat()
        await asyncio.sleep(0.05)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert prober.state.up is True
        assert edges == ["restored"]
