"""Firewalla HA Sync -- entry point.

Usage::

    python -m firewalla_ha_sync [--config PATH] [--dry-run] [--once]

Startup sequence:
    1. Parse CLI arguments
    2. Load configuration from YAML and the environment
    3. Configure logging
    4. Create the Firewalla discovery client
    5. Create the Home Assistant client (resolving the delete endpoint)
    6. Build the sync loop with a fresh device registry
    7. Run one cycle (dry run / --once) or loop until interrupted
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from firewalla_ha_sync.config import Settings
from firewalla_ha_sync.devices.normalizer import NormalizerOptions
from firewalla_ha_sync.devices.reconciler import Reconciler
from firewalla_ha_sync.devices.registry import DeviceRegistry
from firewalla_ha_sync.errors import SyncError
from firewalla_ha_sync.speedtest import SpeedtestDeduplicator
from firewalla_ha_sync.sync.loop import SyncLoop

logger = logging.getLogger("firewalla_ha_sync")


# ---------------------------------------------------------------------------
# Integration seams -- thin wrappers around real subsystem constructors.
# These are module-level names so tests can patch them individually.
# ---------------------------------------------------------------------------


def load_config(config_path: str | None) -> Settings:
    """Load settings from a YAML file (or the bundled defaults) and the environment."""
    from firewalla_ha_sync.config import load_settings

    path = Path(config_path) if config_path else None
    return load_settings(config_path=path)


def create_discovery(settings: Settings) -> Any:
    """Create the Firewalla discovery client."""
    from firewalla_ha_sync.integrations.firewalla import FirewallaClient

    fw = settings.firewalla
    if not fw.token:
        logger.warning("No Firewalla token configured; discovery requests will be rejected")
    return FirewallaClient(
        url=fw.base_url,
        token=fw.token,
        hosts_path=fw.hosts_path,
        speedtest_path=fw.speedtest_path,
        timeout=settings.sync.request_timeout,
    )


async def create_sink(settings: Settings, resolve_deletes: bool = True) -> Any:
    """Create the Home Assistant client.

    Reads and writes use the Supervisor token; deletes use the long-lived
    token against the Core URL resolved at startup.
    """
    from firewalla_ha_sync.integrations.home_assistant import (
        HomeAssistantClient,
        resolve_delete_base_url,
    )

    ha = settings.home_assistant
    write_token = ha.supervisor_token or ha.token
    if not write_token:
        logger.warning("No Home Assistant token configured; sensor updates will be rejected")

    delete_url = ha.delete_url or None
    if delete_url is None and resolve_deletes:
        delete_url = await resolve_delete_base_url(
            ha.url, ha.supervisor_token, timeout=settings.sync.request_timeout
        )

    return HomeAssistantClient(
        url=ha.url,
        token=write_token,
        delete_url=delete_url,
        delete_token=ha.token or None,
        timeout=settings.sync.request_timeout,
    )


def create_sync_loop(settings: Settings, discovery: Any, sink: Any) -> SyncLoop:
    """Wire the normalizer, reconciler and speed test deduplicator together."""
    sync_cfg = settings.sync
    tz = sync_cfg.tzinfo()
    reconciler = Reconciler(
        sink=sink,
        registry=DeviceRegistry(),
        id_prefix=sync_cfg.device_prefix,
        allocation_encoding=sync_cfg.allocation_encoding,
    )
    return SyncLoop(
        discovery=discovery,
        reconciler=reconciler,
        speedtest=SpeedtestDeduplicator(sink, tz=tz),
        normalizer_options=NormalizerOptions(
            id_prefix=sync_cfg.device_prefix,
            unresolved_ip=sync_cfg.unresolved_ip,
            tz=tz,
        ),
        interval=sync_cfg.interval,
    )


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Parameters
    ----------
    argv:
        Argument list.  Defaults to ``sys.argv[1:]`` when ``None``.
    """
    parser = argparse.ArgumentParser(
        prog="firewalla_ha_sync",
        description="Sync Firewalla hosts and speed tests into Home Assistant",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Print the planned device list as JSON and exit without writing",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Run a single sync cycle and exit",
    )
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Main run coroutine
# ---------------------------------------------------------------------------


async def run_sync(
    settings: Settings,
    dry_run: bool = False,
    once: bool = False,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Build all subsystems and run until the shutdown event is set.

    In dry-run mode a single planning pass is printed to stdout instead.
    """
    dry_run = dry_run or settings.sync.dry_run
    if not dry_run:
        logger.info("Firewalla %s", settings.version)

    discovery = create_discovery(settings)
    sink = await create_sink(settings, resolve_deletes=not dry_run)
    sync_loop = create_sync_loop(settings, discovery, sink)

    try:
        if dry_run:
            try:
                report = await sync_loop.dry_run()
            except SyncError as exc:
                logger.error("Dry run failed: %s", exc)
                return
            print(json.dumps(report, indent=2))
        elif once:
            await sync_loop.tick()
        else:
            await sync_loop.run(shutdown_event or asyncio.Event())
    finally:
        await discovery.aclose()
        await sink.aclose()


# ---------------------------------------------------------------------------
# Script entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """Parse CLI args and run the sync loop."""
    args = parse_args(argv)
    settings = load_config(args.config)

    logging.basicConfig(
        level=logging.DEBUG if settings.logging.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        asyncio.run(run_sync(settings, dry_run=args.dry_run, once=args.once))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
