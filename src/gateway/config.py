"""Configuration loader for the offline cache gateway."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

DEFAULT_PRECACHE_URLS = (
    "/",
    "/index.html",
    "/manifest.json",
    "/favicon.ico",
    "/logo-192.png",
    "/logo-512.png",
)


@dataclass(frozen=True)
class GatewayConfig:
    cache_prefix: str = "usa-luxury-limo"
    cache_version: str = "v1"
    origin: str = "http://localhost:5000"
    precache_urls: Tuple[str, ...] = DEFAULT_PRECACHE_URLS
    network_first_prefixes: Tuple[str, ...] = ()
    cached_api_endpoints: Tuple[str, ...] = ()
    db_path: Path = field(default_factory=lambda: Path("~/.cache/limo-gateway/caches.db").expanduser())
    quota_bytes: int = 0
    network_timeout_sec: Optional[float] = None
    decision_log_size: int = 100

    @property
    def cache_name(self) -> str:
        return f"{self.cache_prefix}-{self.cache_version}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GatewayConfig":
        cache_data = data.get("cache", {})
        network_data = data.get("network", {})
        timeout = network_data.get("timeout_sec")
        return cls(
            cache_prefix=cache_data.get("prefix", "usa-luxury-limo"),
            cache_version=str(cache_data.get("version", "v1")),
            origin=data.get("origin", "http://localhost:5000"),
            precache_urls=tuple(data.get("precache_urls", DEFAULT_PRECACHE_URLS)),
            network_first_prefixes=tuple(network_data.get("network_first_prefixes", ())),
            cached_api_endpoints=tuple(network_data.get("cached_api_endpoints", ())),
            db_path=Path(cache_data.get("db_path", "~/.cache/limo-gateway/caches.db")).expanduser(),
            quota_bytes=int(cache_data.get("quota_bytes", 0)),
            network_timeout_sec=float(timeout) if timeout is not None else None,
            decision_log_size=int(data.get("decision_log_size", 100)),
        )


ENV_MAP = {
    "origin": "GATEWAY_ORIGIN",
    "decision_log_size": "GATEWAY_DECISION_LOG_SIZE",
    "cache.prefix": "GATEWAY_CACHE_PREFIX",
    "cache.version": "GATEWAY_CACHE_VERSION",
    "cache.db_path": "GATEWAY_DB_PATH",
    "cache.quota_bytes": "GATEWAY_QUOTA_BYTES",
    "network.timeout_sec": "GATEWAY_NETWORK_TIMEOUT_SEC",
}


def load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def merge_env_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
    merged = json.loads(json.dumps(config_data))  # deep copy via json

    for dotted_key, env_name in ENV_MAP.items():
        if env_name not in os.environ:
            continue
        value: Any = os.environ[env_name]
        target = merged
        parts = dotted_key.split(".")
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        last = parts[-1]
        if last in {"quota_bytes", "decision_log_size"}:
            value = int(value)
        elif last == "timeout_sec":
            value = float(value)
        target[last] = value

    return merged


def load_config(config_path: str | Path = "config/gateway.defaults.yml") -> GatewayConfig:
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    data = load_yaml(path)
    data = merge_env_overrides(data)
    return GatewayConfig.from_dict(data)
