"""Configuration loader for Firewalla HA Sync.

Loads settings from a YAML file with built-in defaults. The environment
variables of the legacy Home Assistant add-on (``FIREWALLA_IP``,
``HA_TOKEN``, ``SUPERVISOR_TOKEN``, ...) are honoured, and any setting can
be overridden with the FWSYNC_ prefix and double-underscore nesting
(e.g., FWSYNC_SYNC__INTERVAL=120).
"""

from __future__ import annotations

import logging
import os
import pathlib
from datetime import tzinfo
from typing import Any, Literal
from zoneinfo import ZoneInfo

import yaml
from pydantic import BaseModel, ConfigDict, Field

from firewalla_ha_sync import __version__

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config sub-models
# ---------------------------------------------------------------------------

class _Section(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)


class FirewallaConfig(_Section):
    ip: str = "192.168.1.1"
    url: str = ""
    token: str = ""
    hosts_path: str = "/v1/host/all"
    speedtest_path: str = "/v1/network/speedtest"

    @property
    def base_url(self) -> str:
        """Explicit URL if set, otherwise the box API on ``ip``."""
        return self.url or f"http://{self.ip}:8833"


class HomeAssistantConfig(_Section):
    url: str = "http://supervisor/core"
    token: str = ""
    supervisor_token: str = ""
    delete_url: str = ""


class SyncConfig(_Section):
    interval: int = Field(default=60, ge=1)
    dry_run: bool = False
    device_prefix: str = "network_device_"
    unresolved_ip: str = "-"
    allocation_encoding: Literal["full", "short"] = "full"
    request_timeout: float = Field(default=10.0, gt=0)
    timezone: str | None = None

    def tzinfo(self) -> tzinfo | None:
        """Timezone for formatted timestamps; ``None`` means local time."""
        return ZoneInfo(self.timezone) if self.timezone else None


class LoggingConfig(_Section):
    debug: bool = False


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class Settings(_Section):
    version: str = __version__
    firewalla: FirewallaConfig = Field(default_factory=FirewallaConfig)
    home_assistant: HomeAssistantConfig = Field(default_factory=HomeAssistantConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ---------------------------------------------------------------------------
# Deep merge helper
# ---------------------------------------------------------------------------

def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *override* into *base*, returning a new dict."""
    merged = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------

_ENV_PREFIX = "FWSYNC_"

# Later entries win, so HA_TOKEN takes precedence over FIREWALLA_HA_TOKEN.
_ADDON_ENV: list[tuple[str, tuple[str, ...]]] = [
    ("FIREWALLA_VERSION", ("version",)),
    ("FIREWALLA_IP", ("firewalla", "ip")),
    ("FIREWALLA_URL", ("firewalla", "url")),
    ("FIREWALLA_TOKEN", ("firewalla", "token")),
    ("FIREWALLA_INTERVAL", ("sync", "interval")),
    ("FIREWALLA_DEBUG", ("logging", "debug")),
    ("DEBUG_LOCAL", ("sync", "dry_run")),
    ("HA_URL", ("home_assistant", "url")),
    ("FIREWALLA_HA_TOKEN", ("home_assistant", "token")),
    ("HA_TOKEN", ("home_assistant", "token")),
    ("SUPERVISOR_TOKEN", ("home_assistant", "supervisor_token")),
]

_ADDON_FLAGS = frozenset({"FIREWALLA_DEBUG", "DEBUG_LOCAL"})

_DEFAULT_INTERVAL = 60


def _parse_interval(raw: str) -> int:
    """Parse FIREWALLA_INTERVAL, falling back to the default when invalid."""
    try:
        interval = int(raw)
    except ValueError:
        interval = 0
    if interval < 1:
        logger.warning(
            "Invalid FIREWALLA_INTERVAL %r, using %d seconds", raw, _DEFAULT_INTERVAL
        )
        return _DEFAULT_INTERVAL
    return interval


def _set_nested(target: dict[str, Any], path: tuple[str, ...] | list[str], value: Any) -> None:
    current = target
    for part in path[:-1]:
        current = current.setdefault(part, {})
    current[path[-1]] = value


def _collect_addon_env() -> dict[str, Any]:
    """Map the add-on's flat environment variables onto settings keys.

    The add-on flags are enabled only by the literal string "true", and an
    interval that is not a positive integer falls back to the default.
    Everything else is passed through as a string for pydantic to coerce.
    """
    overrides: dict[str, Any] = {}
    for name, path in _ADDON_ENV:
        value: Any = os.environ.get(name)
        if not value:
            continue
        if name in _ADDON_FLAGS:
            value = value == "true"
        elif name == "FIREWALLA_INTERVAL":
            value = _parse_interval(value)
        _set_nested(overrides, path, value)
    return overrides


def _collect_env_overrides() -> dict[str, Any]:
    """Collect FWSYNC_* env vars and build a nested dict.

    Double-underscore separates nesting levels.
    Example: FWSYNC_SYNC__INTERVAL=120
    becomes  {"sync": {"interval": 120}}
    """
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        parts = key[len(_ENV_PREFIX) :].lower().split("__")
        # Attempt numeric coercion
        final_value: Any = value
        try:
            final_value = int(value)
        except ValueError:
            try:
                final_value = float(value)
            except ValueError:
                if value.lower() in ("true", "false"):
                    final_value = value.lower() == "true"
        _set_nested(overrides, parts, final_value)
    return overrides


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_BUILTIN_DEFAULTS_PATH = pathlib.Path(__file__).resolve().parents[3] / "config" / "defaults.yaml"


def load_settings(
    config_path: pathlib.Path | None = None,
) -> Settings:
    """Load settings with layered precedence: defaults < file < add-on env < FWSYNC_ env.

    Parameters
    ----------
    config_path:
        Path to a YAML config file. If ``None``, the bundled defaults file
        is used; if the file does not exist, model defaults are used.
    """
    # Layer 1: built-in defaults (always loaded from the model defaults)
    base: dict[str, Any] = {}

    # Layer 2: YAML config file
    path = config_path if config_path is not None else _BUILTIN_DEFAULTS_PATH
    if path.exists():
        with open(path) as fh:
            file_data = yaml.safe_load(fh)
        if isinstance(file_data, dict):
            base = _deep_merge(base, file_data)

    # Layer 3: add-on environment variables
    addon_env = _collect_addon_env()
    if addon_env:
        base = _deep_merge(base, addon_env)

    # Layer 4: FWSYNC_ overrides
    env_overrides = _collect_env_overrides()
    if env_overrides:
        base = _deep_merge(base, env_overrides)

    return Settings(**base)
