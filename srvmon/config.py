"""
YAML configuration loader.

Reads config.yaml and produces typed SiteConfig / MonitorSettings objects.
Every problem with the file is a ConfigError; the monitor refuses to start
rather than probing a half-understood configuration.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import yaml
from python_socks import parse_proxy_url

from srvmon.models import MonitorSettings, ProbeMode, SiteConfig
from srvmon.monitor import split_host_port

# Default path: config.yaml next to the project root
_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"

# Identifiers become URL path segments of the status API
_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_.~-]+$")
_RESERVED_SUFFIXES = ("-lastseen", "-sla", ".json")


class ConfigError(Exception):
    """The configuration file is missing, malformed, or inconsistent."""


def _seconds(value: Any, field: str, where: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{where}: {field} must be a positive number of seconds, got {value!r}")
    return value


def _check_proxy(proxy: str, where: str) -> None:
    try:
        parsed = urlsplit(proxy)
        if not parsed.hostname or parsed.port is None:
            raise ValueError("host and port are required")
        parse_proxy_url(proxy)
    except ValueError as exc:
        raise ConfigError(f"{where}: unable to parse proxy address {proxy!r}: {exc}") from exc


def _parse_site(entry: Any, index: int) -> SiteConfig:
    where = f"sites[{index}]"
    if not isinstance(entry, dict):
        raise ConfigError(f"{where}: expected a mapping, got {type(entry).__name__}")

    identifier = str(entry.get("identifier") or "").strip()
    if not identifier:
        raise ConfigError(f"{where}: identifier is required")
    if not _IDENTIFIER_RE.match(identifier) or identifier.endswith(_RESERVED_SUFFIXES):
        raise ConfigError(f"{where}: identifier {identifier!r} is not usable as a URL path")
    where = f"site {identifier!r}"

    mode = ProbeMode.parse(entry.get("mode"))
    target = str(entry.get("target") or "").strip()
    if mode is not ProbeMode.PASSIVE and not target:
        raise ConfigError(f"{where}: target is required in {mode.value} mode")
    if mode is ProbeMode.TCP:
        try:
            split_host_port(target)
        except ValueError as exc:
            raise ConfigError(f"{where}: {exc}") from exc

    proxy = entry.get("proxy") or None
    if proxy:
        _check_proxy(str(proxy), where)

    return SiteConfig(
        identifier=identifier,
        target=target,
        mode=mode,
        interval=_seconds(entry.get("interval"), "interval", where),
        timeout=_seconds(entry.get("timeout"), "timeout", where),
        proxy=str(proxy) if proxy else None,
        insecure_skip_verify=bool(entry.get("insecure_skip_verify", False)),
    )


def _parse_settings(raw_settings: Dict[str, Any]) -> MonitorSettings:
    defaults = MonitorSettings()
    port = os.environ.get("PORT") or raw_settings.get("port", defaults.port)
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ConfigError(f"settings: port must be an integer, got {port!r}") from None

    return MonitorSettings(
        interval=_seconds(raw_settings.get("interval"), "interval", "settings") or defaults.interval,
        timeout=_seconds(raw_settings.get("timeout"), "timeout", "settings") or defaults.timeout,
        log_level=str(raw_settings.get("log_level", defaults.log_level)).upper(),
        host=str(raw_settings.get("host", defaults.host)),
        port=port,
    )


def load_config(
    path: str | Path | None = None,
) -> Tuple[List[SiteConfig], MonitorSettings]:
    """
    Load and validate the YAML configuration file.

    Returns:
        A tuple of (list of SiteConfig, MonitorSettings).

    Raises:
        ConfigError: if the file cannot be read or fails validation.
    """
    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    try:
        with open(config_path, "r") as fh:
            raw = yaml.safe_load(fh)
    except OSError as exc:
        raise ConfigError(f"cannot read {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"malformed YAML in {config_path}: {exc}") from exc

    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")

    raw_settings = raw.get("settings") or {}
    if not isinstance(raw_settings, dict):
        raise ConfigError("settings must be a mapping")
    settings = _parse_settings(raw_settings)

    raw_sites = raw.get("sites") or []
    if not isinstance(raw_sites, list):
        raise ConfigError("sites must be a list")

    # Parse sites
    sites: List[SiteConfig] = []
    seen = set()
    for index, entry in enumerate(raw_sites):
        site = _parse_site(entry, index)
        if site.identifier in seen:
            raise ConfigError(f"duplicate identifier {site.identifier!r}")
        seen.add(site.identifier)
        sites.append(site)

    if not sites:
        raise ConfigError(f"{config_path}: no sites configured")

    return sites, settings
