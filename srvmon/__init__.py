"""
srvmon — Uptime monitor with shield badges.

Probes a configured set of endpoints (HTTP GET, TCP connect, or passive
heartbeats) concurrently in one asyncio event loop and serves each site's
up/down state, last-seen time, and availability ratio as badge redirects.
"""

__version__ = "1.0.0"
