"""
Status API — aiohttp web application.

Routes, per configured site:
    GET  /<id>           redirect to the up/down badge
    PUT  /<id>           heartbeat for passive sites (405 otherwise)
    GET  /<id>-lastseen  redirect to the last-seen badge
    GET  /<id>-sla       redirect to the availability badge
    GET  /<id>.json      status snapshot as JSON

plus GET / as a process health check.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

from aiohttp import web

from srvmon.badges import availability_badge, last_seen_badge, status_badge
from srvmon.monitor import Prober
from srvmon.reporter import StatusReporter, availability_tier
from srvmon.state import InvalidOperation


async def _health(_request: web.Request) -> web.Response:
    return web.json_response({"running": "yes"})


class SiteRoutes:
    """Request handlers bound to one site."""

    def __init__(self, identifier: str, reporter: StatusReporter, prober: Prober) -> None:
        self.identifier = identifier
        self.reporter = reporter
        self.prober = prober

    def register(self, router: web.UrlDispatcher) -> None:
        router.add_get(f"/{self.identifier}", self.status)
        router.add_put(f"/{self.identifier}", self.push)
        router.add_get(f"/{self.identifier}-lastseen", self.last_seen)
        router.add_get(f"/{self.identifier}-sla", self.availability)
        router.add_get(f"/{self.identifier}.json", self.snapshot)

    async def status(self, _request: web.Request) -> web.Response:
        up = self.reporter.is_up(self.identifier)
        raise web.HTTPTemporaryRedirect(status_badge(up))

    async def last_seen(self, _request: web.Request) -> web.Response:
        seen = self.reporter.last_seen(self.identifier)
        raise web.HTTPTemporaryRedirect(last_seen_badge(seen))

    async def availability(self, _request: web.Request) -> web.Response:
        ratio = self.reporter.availability(self.identifier)
        raise web.HTTPTemporaryRedirect(availability_badge(ratio, availability_tier(ratio)))

    async def snapshot(self, _request: web.Request) -> web.Response:
        snap = self.reporter.snapshot(self.identifier)
        tier = availability_tier(snap.availability)
        payload: Dict[str, Any] = {
            "identifier": snap.identifier,
            "up": snap.up,
            "last_seen": snap.last_seen.isoformat() if snap.last_seen else None,
            "probe_count": snap.probe_count,
            "success_count": snap.success_count,
            "availability": snap.availability,
            "tier": tier.value if tier else None,
        }
        return web.json_response(payload)

    async def push(self, _request: web.Request) -> web.Response:
        try:
            self.prober.heartbeat()
        except InvalidOperation as exc:
            return web.json_response({"error": str(exc)}, status=405)
        return web.json_response({"status": "ok"})


def create_app(reporter: StatusReporter, probers: Mapping[str, Prober]) -> web.Application:
    """Build the status API for every site in the reporter's registry."""
    app = web.Application()
    app.router.add_get("/", _health)
    for state in reporter.registry:
        SiteRoutes(state.identifier, reporter, probers[state.identifier]).register(app.router)
    return app
