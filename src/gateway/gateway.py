#!/usr/bin/env python3
"""
Offline Cache Gateway: Cache-First Request Interception

Sits between the booking app and the network:

  non-http(s) / non-GET  → not intervened (caller goes to the network itself)
  cached                 → stored response, network never touched
  miss                   → network, 200 same-origin responses stored
  network-first prefixes → network, store only allowlisted API endpoints,
                           fall back to the store when the network fails

Lifecycle per version tag:
  install  → precache the app shell, skip waiting
  activate → delete every other store, claim open clients

Storage failures never reach the caller; network failures do.
"""

import json
import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urljoin

from cache.store import CacheError, CacheStorage, CacheStore, CacheWriteError
from gateway.config import GatewayConfig
from gateway.http import Request, Response, is_cacheable_request, is_storable_response
from gateway.lifecycle import ClientRegistry, Generation, GenerationState, LifecycleError, Registration
from gateway.network import Network, NetworkError
from gateway.observability import FetchDecisionRecord

logger = logging.getLogger(__name__)


@dataclass
class PrecacheReport:
    cache_name: str
    cached: List[str] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cache_name": self.cache_name,
            "cached": list(self.cached),
            "skipped": dict(self.skipped),
        }


@dataclass
class ActivationReport:
    cache_name: str
    deleted: List[str] = field(default_factory=list)
    clients_claimed: int = 0
    replaced: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cache_name": self.cache_name,
            "deleted": list(self.deleted),
            "clients_claimed": self.clients_claimed,
            "replaced": self.replaced,
        }


class OfflineCacheGateway:
    """
    One cache generation for one origin.

    Gateways for successive versions share a CacheStorage, a Registration
    and a ClientRegistry; activating the newer one retires the older.
    """

    def __init__(
        self,
        config: GatewayConfig,
        storage: Optional[CacheStorage] = None,
        network: Optional[Network] = None,
        registration: Optional[Registration] = None,
        clients: Optional[ClientRegistry] = None,
    ):
        self.config = config
        self.cache_name = config.cache_name
        self._owns_storage = storage is None
        self.storage = storage or CacheStorage(str(config.db_path), quota_bytes=config.quota_bytes)
        self.network = network or Network(config.origin, timeout=config.network_timeout_sec)
        self.registration = registration or Registration()
        self.clients = clients or ClientRegistry()
        self.generation = Generation(self.cache_name)
        self._store: Optional[CacheStore] = None

        self.decisions = deque(maxlen=max(1, config.decision_log_size))
        self._stats_lock = threading.Lock()
        self.stats = {
            "hits": 0,
            "misses": 0,
            "writes": 0,
            "write_failures": 0,
            "network_errors": 0,
            "fallbacks": 0,
            "start_time": time.time(),
        }

    @property
    def state(self) -> GenerationState:
        return self.generation.state

    @property
    def is_active(self) -> bool:
        return self.generation.state is GenerationState.ACTIVE

    @property
    def store(self) -> CacheStore:
        if self._store is None:
            self._store = self.storage.open(self.cache_name)
        return self._store

    def _bump(self, counter: str) -> None:
        with self._stats_lock:
            self.stats[counter] += 1

    # ── Lifecycle ──

    def install(self) -> PrecacheReport:
        """Precache the app shell manifest and signal skip-waiting."""
        if self.generation.state is not GenerationState.UNINSTALLED:
            raise LifecycleError(f"{self.cache_name} is already {self.generation.state.value}")

        logger.info("Installing %s", self.cache_name)
        report = self._precache(self.config.precache_urls)
        self.registration.mark_installed(self.generation)
        self.skip_waiting()
        logger.info(
            "Installed %s: %d cached, %d skipped",
            self.cache_name, len(report.cached), len(report.skipped),
        )
        return report

    def skip_waiting(self) -> None:
        self.generation.skip_waiting = True
        logger.debug("%s will activate without waiting", self.cache_name)

    def activate(self) -> ActivationReport:
        """Drop every other generation's store and take control of open clients."""
        logger.info("Activating %s", self.cache_name)
        previous = self.registration.activate(self.generation)
        report = ActivationReport(
            cache_name=self.cache_name,
            replaced=previous.version_tag if previous else None,
        )

        self._store = self.storage.open(self.cache_name)
        for name in self.storage.keys():
            if name == self.cache_name:
                continue
            try:
                if self.storage.delete(name):
                    logger.info("Deleting old cache: %s", name)
                    report.deleted.append(name)
            except CacheError as e:
                logger.error("Could not delete old cache %s: %s", name, e)

        report.clients_claimed = self.clients.claim(self.cache_name)
        logger.info("%s active, claimed %d clients", self.cache_name, report.clients_claimed)
        return report

    def start(self) -> Tuple[PrecacheReport, ActivationReport]:
        """Install then activate, as a freshly registered worker does."""
        installed = self.install()
        return installed, self.activate()

    # ── Fetch interception ──

    def respond_with(self, request: Request) -> Optional[Response]:
        """
        Answer an intercepted request.

        Returns None when the gateway does not intervene; the caller then
        performs its own network request. Raises NetworkError when the
        network fails and nothing can be served.
        """
        if not self.is_active:
            return None
        if not is_cacheable_request(request):
            return None
        if request.method.upper() != "GET":
            return None

        if self._is_network_first(request):
            return self._network_first(request)
        return self._cache_first(request)

    def fetch(self, request: Request) -> Response:
        """respond_with, with plain network pass-through when not intervening."""
        response = self.respond_with(request)
        if response is None:
            return self.network.fetch(request)
        return response

    def _cache_first(self, request: Request) -> Response:
        started = time.monotonic()
        cached = self.store.match(request)
        if cached is not None:
            self._bump("hits")
            self._record(request, "cache_first", "cache_hit", cached, started)
            return cached

        self._bump("misses")
        try:
            response = self.network.fetch(request)
        except NetworkError:
            self._bump("network_errors")
            self._record(request, "cache_first", "network_error", None, started)
            raise

        stored, error = self._store_response(request, response)
        decision = "network_stored" if stored else "network_unstored"
        self._record(request, "cache_first", decision, response, started, stored, error)
        return response

    def _network_first(self, request: Request) -> Response:
        started = time.monotonic()
        try:
            response = self.network.fetch(request)
        except NetworkError as e:
            self._bump("network_errors")
            cached = self.store.match(request)
            if cached is not None:
                self._bump("fallbacks")
                logger.info("Network failed for %s, serving cached copy: %s", request.url, e)
                self._record(request, "network_first", "cache_fallback", cached, started)
                return cached
            self._record(request, "network_first", "network_error", None, started)
            raise

        stored, error = False, None
        if self._is_cached_api(request):
            stored, error = self._store_response(request, response)
        decision = "network_stored" if stored else "network_unstored"
        self._record(request, "network_first", decision, response, started, stored, error)
        return response

    def _store_response(self, request: Request, response: Response) -> Tuple[bool, Optional[str]]:
        if not is_storable_response(response):
            return False, None
        if self.generation.state is not GenerationState.ACTIVE:
            logger.info("%s is %s, not storing %s",
                        self.cache_name, self.generation.state.value, request.url)
            return False, None
        try:
            self.store.put(request, response)
        except CacheWriteError as e:
            self._bump("write_failures")
            logger.warning("Cache write failed for %s: %s", request.url, e)
            return False, str(e)
        self._bump("writes")
        return True, None

    def _is_network_first(self, request: Request) -> bool:
        path = request.path
        return any(path.startswith(prefix) for prefix in self.config.network_first_prefixes)

    def _is_cached_api(self, request: Request) -> bool:
        path = request.path
        return any(endpoint in path for endpoint in self.config.cached_api_endpoints)

    def _record(self, request: Request, strategy: str, decision: str,
                response: Optional[Response], started: float,
                stored: bool = False, error: Optional[str] = None) -> None:
        record = FetchDecisionRecord(
            request_id=uuid.uuid4().hex[:12],
            method=request.method.upper(),
            url=request.url,
            cache_name=self.cache_name,
            strategy=strategy,
            decision=decision,
            status=response.status if response is not None else None,
            response_type=response.type.value if response is not None else None,
            stored=stored,
            store_error=error,
            latency_ms=round((time.monotonic() - started) * 1000, 3),
        )
        payload = record.to_dict()
        self.decisions.append(payload)
        logger.debug("fetch decision %s", json.dumps(payload))

    # ── Client messages ──

    def handle_message(self, message: Any) -> Optional[PrecacheReport]:
        """Handle SKIP_WAITING and CACHE_URLS messages from the app."""
        if not isinstance(message, dict):
            logger.debug("Ignoring message %r", message)
            return None

        kind = message.get("type")
        if kind == "SKIP_WAITING":
            self.skip_waiting()
            return None

        if kind == "CACHE_URLS":
            urls = message.get("urls")
            if not isinstance(urls, list):
                logger.debug("CACHE_URLS without a url list: %r", message)
                return None
            if self.generation.state is GenerationState.REDUNDANT:
                logger.warning("%s is redundant, not caching %d urls", self.cache_name, len(urls))
                return None
            return self._precache(urls)

        logger.debug("Ignoring message type %r", kind)
        return None

    def _precache(self, urls: Iterable[str]) -> PrecacheReport:
        report = PrecacheReport(cache_name=self.cache_name)
        store = self.store

        for raw_url in urls:
            request = Request(urljoin(self.config.origin, str(raw_url)))
            if not is_cacheable_request(request):
                report.skipped[raw_url] = f"unsupported scheme {request.scheme or '(none)'}"
                continue
            try:
                response = self.network.fetch(request)
            except NetworkError as e:
                report.skipped[raw_url] = str(e)
                continue
            if not is_storable_response(response):
                report.skipped[raw_url] = f"status {response.status} ({response.type.value})"
                continue
            if self.generation.state is GenerationState.REDUNDANT:
                report.skipped[raw_url] = f"{self.cache_name} became redundant"
                continue
            try:
                store.put(request, response)
            except CacheWriteError as e:
                self._bump("write_failures")
                report.skipped[raw_url] = str(e)
                continue
            self._bump("writes")
            report.cached.append(request.url)

        for url, reason in report.skipped.items():
            logger.warning("Precache skipped %s: %s", url, reason)
        return report

    # ── Reporting ──

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            counters = dict(self.stats)
        total = counters["hits"] + counters["misses"]
        hit_rate = (counters["hits"] / total * 100) if total > 0 else 0

        entries = 0
        if self._store is not None and self.generation.state is not GenerationState.REDUNDANT:
            entries = self._store.count()
        stores = self.storage.keys()
        network = self.network.get_stats()
        controlled = [c for c in self.clients.match_all() if c.controller == self.cache_name]

        return {
            "cache_name": self.cache_name,
            "state": self.generation.state.value,
            "hits": counters["hits"],
            "misses": counters["misses"],
            "hit_rate_percent": round(hit_rate, 1),
            "total_requests": total,
            "writes": counters["writes"],
            "write_failures": counters["write_failures"],
            "network_errors": counters["network_errors"],
            "fallbacks": counters["fallbacks"],
            "network_requests": network["requests"],
            "clients_controlled": len(controlled),
            "cache_entries": entries,
            "cache_stores": stores,
            "uptime_seconds": int(time.time() - counters["start_time"]),
        }

    def get_status(self) -> str:
        stats = self.get_stats()
        lines = [f"Offline cache gateway: {stats['cache_name']} [{stats['state']}]"]
        lines.append(f"  Hit rate: {stats['hit_rate_percent']}% ({stats['hits']}/{stats['total_requests']})")
        lines.append(f"  Entries: {stats['cache_entries']} | Writes: {stats['writes']} "
                     f"| Write failures: {stats['write_failures']}")
        lines.append(f"  Network requests: {stats['network_requests']} | Errors: {stats['network_errors']} "
                     f"| Fallbacks: {stats['fallbacks']}")
        lines.append(f"  Clients controlled: {stats['clients_controlled']}")
        lines.append(f"  Stores: {', '.join(stats['cache_stores']) or 'none'}")
        return "\n".join(lines)

    def close(self):
        if self._owns_storage:
            self.storage.close()
        self.network.close()
