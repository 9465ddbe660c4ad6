"""
Console Notifier — timestamped, coloured console output.

Probe outcomes are printed on transition edges only ("site restored",
"site went down!"); per-probe lines are debug output and the callers only
emit them when the configured log level is DEBUG.
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from typing import Optional

# ANSI color codes for terminal styling
_RESET = "\033[0m"
_BOLD = "\033[1m"
_DIM = "\033[2m"
_RED = "\033[91m"
_GREEN = "\033[92m"
_BLUE = "\033[94m"
_CYAN = "\033[96m"
_WHITE = "\033[97m"
_GRAY = "\033[90m"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def print_banner() -> None:
    """Print the startup banner."""
    banner = f"""
{_BOLD}{_CYAN}+------------------------------------------------------------------+
|          srvmon -- Uptime Monitor                                |
|          HTTP * TCP * Passive heartbeats                         |
+------------------------------------------------------------------+{_RESET}
"""
    print(banner)


def print_monitoring_start(
    identifier: str,
    mode: str,
    target: str,
    interval: float,
    timeout: float,
) -> None:
    """Print a message when a prober is initialized for a site."""
    where = f"  {_DIM}({target}){_RESET}" if target else ""
    cadence = (
        f"[heartbeat within {timeout:g}s]"
        if mode == "Passive"
        else f"[every {interval:g}s, timeout {timeout:g}s]"
    )
    print(
        f"  {_BOLD}{_BLUE}> Monitoring:{_RESET} {_WHITE}{identifier}{_RESET}"
        f" {_DIM}{mode}{_RESET}{where}"
        f"  {_DIM}{cadence}{_RESET}"
    )


def print_site_restored(identifier: str, target: str) -> None:
    """Print the down -> up transition of a site."""
    print(
        f"  {_GRAY}[{_now()}]{_RESET} {_GREEN}UP{_RESET}   "
        f"{_BOLD}{identifier}:{_RESET} site restored {_DIM}{target}{_RESET}"
    )


def print_site_down(
    identifier: str,
    target: str,
    error: Optional[str] = None,
    code: int = -1,
) -> None:
    """Print the up -> down transition of a site."""
    detail = f"code={code}"
    if error:
        detail += f" err={error}"
    print(
        f"  {_GRAY}[{_now()}]{_RESET} {_RED}DOWN{_RESET} "
        f"{_BOLD}{identifier}:{_RESET} site went down! {_DIM}{target} ({detail}){_RESET}"
    )


def print_probe_result(identifier: str, up: bool, detail: str = "") -> None:
    """Print a single probe outcome (debug level)."""
    state = f"{_GREEN}up{_RESET}" if up else f"{_RED}down{_RESET}"
    suffix = f" {_DIM}{detail}{_RESET}" if detail else ""
    print(f"  {_DIM}[{_now()}] {identifier}:{_RESET} site is {state}{suffix}")
    sys.stdout.flush()


def print_probe_error(identifier: str, message: str) -> None:
    """Print an unexpected error raised inside a probe."""
    print(
        f"  {_GRAY}[{_now()}]{_RESET} {_RED}ERROR{_RESET} "
        f"{_BOLD}{identifier}:{_RESET} {message}"
    )


def print_serving(host: str, port: int) -> None:
    """Print the address of the status API."""
    print(
        f"\n  {_BOLD}{_GREEN}Status API listening on http://{host}:{port}{_RESET}"
        f"  {_DIM}(Press Ctrl+C to stop){_RESET}\n"
    )


def print_config_error(message: str) -> None:
    """Print a fatal configuration error."""
    print(f"{_BOLD}{_RED}Configuration error:{_RESET} {message}", file=sys.stderr)


def print_shutdown() -> None:
    """Print shutdown message."""
    print(f"\n{_BOLD}{_CYAN}Monitor stopped. Goodbye!{_RESET}\n")
