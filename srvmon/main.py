"""
Main entry point — the UptimeMonitor orchestrator.

Startup order: load config -> build Registry -> spawn one prober task per
site -> serve the status API. Everything runs in a single asyncio event
loop; Ctrl+C / SIGTERM cancels the probers and stops the server.

Usage:
    python -m srvmon --config config.yaml
    srvmon --config config.yaml --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Dict, List, Optional, Sequence

from aiohttp import web

from srvmon import notifier
from srvmon.config import ConfigError, load_config
from srvmon.models import MonitorSettings, SiteConfig
from srvmon.monitor import Prober, make_prober
from srvmon.reporter import StatusReporter
from srvmon.server import create_app
from srvmon.state import Registry


class UptimeMonitor:
    """
    Top-level orchestrator.

    Owns the Registry, one Prober per site, and the reporter handed to the
    status API.
    """

    def __init__(
        self,
        sites: List[SiteConfig],
        settings: MonitorSettings,
    ) -> None:
        self.settings = settings
        self.registry = Registry(sites)
        self.reporter = StatusReporter(self.registry)
        self.probers: Dict[str, Prober] = {
            state.identifier: make_prober(state, settings) for state in self.registry
        }
        self._tasks: List[asyncio.Task] = []

    def start(self) -> None:
        """Spawn one task per site. Must be called from a running loop."""
        for identifier, prober in self.probers.items():
            task = asyncio.create_task(prober.start(), name=f"probe-{identifier}")
            self._tasks.append(task)

    async def run(self) -> None:
        """Wait on all probe tasks (they run forever until cancelled)."""
        if not self._tasks:
            self.start()
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            pass

    def shutdown(self) -> None:
        """Cancel all running probe tasks."""
        for task in self._tasks:
            task.cancel()


def _handle_signals(monitor: UptimeMonitor, loop: asyncio.AbstractEventLoop) -> None:
    """Register signal handlers for graceful shutdown."""
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, monitor.shutdown)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="srvmon", description="Uptime monitor with badge API")
    parser.add_argument("--config", default=None, help="path to the YAML configuration")
    parser.add_argument(
        "--log-level",
        default=None,
        help="overrides settings.log_level (DEBUG prints every probe)",
    )
    return parser.parse_args(argv)


async def async_main(args: argparse.Namespace) -> None:
    """Async entry point."""
    sites, settings = load_config(args.config)
    if args.log_level:
        settings.log_level = args.log_level.upper()

    notifier.print_banner()
    monitor = UptimeMonitor(sites, settings)
    monitor.start()

    loop = asyncio.get_running_loop()
    _handle_signals(monitor, loop)

    app = create_app(monitor.reporter, monitor.probers)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.host, settings.port)
    await site.start()
    notifier.print_serving(settings.host, settings.port)

    try:
        await monitor.run()
    finally:
        notifier.print_shutdown()
        await runner.cleanup()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Sync entry point."""
    args = parse_args(argv)
    try:
        asyncio.run(async_main(args))
    except ConfigError as exc:
        notifier.print_config_error(str(exc))
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
