#!/usr/bin/env python3
"""
Offline Cache Gateway command line

Commands:
  install        - Precache the app shell and activate the configured version
  fetch URL...   - Fetch URLs through the gateway, report where each came from
  status         - Show hit rate, entries and the stores on disk (--entries lists them)
  clear          - Delete every cache store

Usage:
  python -m console.run --config config/gateway.defaults.yml install
  GATEWAY_CACHE_VERSION=v2 python -m console.run install
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from cache.store import CacheError, CacheStorage
from gateway.config import GatewayConfig, load_config
from gateway.gateway import OfflineCacheGateway
from gateway.http import Request
from gateway.network import NetworkError

logger = logging.getLogger(__name__)


def build_gateway(config: GatewayConfig) -> OfflineCacheGateway:
    """
    Gateway for an already-installed generation.

    A CLI process starts with no in-memory lifecycle, so when the
    configured store is on disk it is treated as the active one.
    """
    gateway = OfflineCacheGateway(config)
    if gateway.storage.has(config.cache_name):
        gateway.registration.mark_installed(gateway.generation)
        gateway.skip_waiting()
        gateway.registration.activate(gateway.generation)
    return gateway


def cmd_install(config: GatewayConfig, args: argparse.Namespace) -> int:
    gateway = OfflineCacheGateway(config)
    try:
        installed, activated = gateway.start()
    finally:
        gateway.close()
    print(json.dumps({"install": installed.to_dict(), "activate": activated.to_dict()}, indent=2))
    return 0


def cmd_fetch(config: GatewayConfig, args: argparse.Namespace) -> int:
    gateway = build_gateway(config)
    if not gateway.is_active:
        print(f"[gateway] {config.cache_name} is not installed; run 'install' first", file=sys.stderr)
        gateway.close()
        return 1

    failures = 0
    try:
        for url in args.urls:
            gateway.decisions.clear()
            try:
                response = gateway.fetch(Request(url))
            except NetworkError as e:
                failures += 1
                print(f"ERR  {url}: {e}")
                continue
            decision = gateway.decisions[-1]["decision"] if gateway.decisions else "passthrough"
            print(f"{response.status}  {decision:<16} {url} ({len(response.body)} bytes)")
    finally:
        gateway.close()
    return 1 if failures else 0


def cmd_status(config: GatewayConfig, args: argparse.Namespace) -> int:
    gateway = build_gateway(config)
    try:
        print(gateway.get_status())
        if args.entries and gateway.is_active:
            for method, url in gateway.store.keys():
                print(f"  {method} {url}")
    finally:
        gateway.close()
    return 0


def cmd_clear(config: GatewayConfig, args: argparse.Namespace) -> int:
    storage = CacheStorage(str(config.db_path), quota_bytes=config.quota_bytes)
    try:
        names = storage.keys()
        for name in names:
            storage.delete(name)
    finally:
        storage.close()
    print(f"[gateway] deleted {len(names)} cache stores")
    return 0


COMMANDS = {
    "install": cmd_install,
    "fetch": cmd_fetch,
    "status": cmd_status,
    "clear": cmd_clear,
}


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Offline cache gateway for the booking app.")
    parser.add_argument("--config", type=Path, default=Path("config/gateway.defaults.yml"),
                        help="Path to the gateway YAML config")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log per-request decisions")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("install", help="Precache the app shell and activate this version")
    fetch = sub.add_parser("fetch", help="Fetch URLs through the gateway")
    fetch.add_argument("urls", nargs="+", help="Absolute URLs to fetch")
    status = sub.add_parser("status", help="Show gateway statistics")
    status.add_argument("--entries", action="store_true", help="List the cached requests")
    sub.add_parser("clear", help="Delete every cache store")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        level=logging.DEBUG if args.verbose else logging.INFO,
    )

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        logger.error("%s", e)
        return 2

    try:
        return COMMANDS[args.command](config, args)
    except KeyboardInterrupt:
        return 130
    except CacheError as e:
        logger.error("Cache storage failed: %s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
