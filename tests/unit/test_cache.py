#!/usr/bin/env python3
"""
Unit tests for the offline cache storage
Named stores, request identity, quota, degraded reads
"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from cache.keys import normalize_url, request_key
from cache.store import CacheStorage, CacheWriteError, QuotaExceededError
from gateway.http import Request, Response, ResponseType


def page(body=b"<html>home</html>", status=200, url="https://limo.example/"):
    return Response(
        status=status,
        body=body,
        headers={"Content-Type": "text/html"},
        reason="OK",
        url=url,
    )


class TestRequestKeys:
    """Test request identity."""

    def test_deterministic_keys(self):
        assert request_key("GET", "https://limo.example/") == request_key("get", "https://limo.example/")

    def test_fragment_ignored(self):
        assert request_key("GET", "https://limo.example/book#step-2") == \
            request_key("GET", "https://limo.example/book")

    def test_query_is_significant(self):
        assert request_key("GET", "https://limo.example/fleet?type=suv") != \
            request_key("GET", "https://limo.example/fleet?type=sedan")

    def test_method_is_significant(self):
        assert request_key("GET", "https://limo.example/") != request_key("HEAD", "https://limo.example/")

    def test_host_case_normalized(self):
        assert normalize_url("HTTPS://Limo.Example/Book") == "https://limo.example/Book"

    def test_default_port_dropped(self):
        assert normalize_url("https://limo.example:443/book") == "https://limo.example/book"
        assert normalize_url("http://localhost:80/") == "http://localhost/"
        assert request_key("GET", "https://limo.example:443/") == request_key("GET", "https://limo.example/")

    def test_other_port_kept(self):
        assert normalize_url("https://limo.example:80/") == "https://limo.example:80/"
        assert normalize_url("http://localhost:5000/") == "http://localhost:5000/"


class TestCacheStorage:
    """Test named stores."""

    @pytest.fixture
    def storage(self, tmp_path):
        storage = CacheStorage(str(tmp_path / "caches.db"))
        yield storage
        storage.close()

    def test_open_creates_store(self, storage):
        assert not storage.has("usa-luxury-limo-v1")

        storage.open("usa-luxury-limo-v1")

        assert storage.has("usa-luxury-limo-v1")
        assert storage.keys() == ["usa-luxury-limo-v1"]

    def test_open_is_idempotent(self, storage):
        storage.open("usa-luxury-limo-v1")
        storage.open("usa-luxury-limo-v1")

        assert storage.keys() == ["usa-luxury-limo-v1"]

    def test_delete_drops_entries(self, storage):
        store = storage.open("usa-luxury-limo-v1")
        store.put(Request("https://limo.example/"), page())

        assert storage.delete("usa-luxury-limo-v1") is True
        assert storage.keys() == []
        assert storage.usage_bytes() == 0

        # Reopening gives an empty store
        assert storage.open("usa-luxury-limo-v1").match(Request("https://limo.example/")) is None

    def test_delete_missing_store(self, storage):
        assert storage.delete("nope") is False

    def test_in_memory_database(self):
        storage = CacheStorage(":memory:")
        storage.open("v1")
        assert storage.keys() == ["v1"]
        storage.close()


class TestCacheStore:
    """Test store CRUD."""

    @pytest.fixture
    def storage(self, tmp_path):
        storage = CacheStorage(str(tmp_path / "caches.db"))
        yield storage
        storage.close()

    @pytest.fixture
    def store(self, storage):
        return storage.open("usa-luxury-limo-v1")

    def test_put_and_match(self, store):
        request = Request("https://limo.example/")
        store.put(request, page())

        cached = store.match(request)
        assert cached == page()
        assert cached.type is ResponseType.BASIC
        assert cached.header("content-type") == "text/html"

    def test_miss_returns_none(self, store):
        assert store.match(Request("https://limo.example/missing")) is None

    def test_put_replaces_entry(self, store):
        request = Request("https://limo.example/")
        store.put(request, page(b"old"))
        store.put(request, page(b"new"))

        assert store.match(request).body == b"new"
        assert store.count() == 1

    def test_stores_are_isolated(self, storage, store):
        request = Request("https://limo.example/")
        store.put(request, page())

        assert storage.open("usa-luxury-limo-v2").match(request) is None

    def test_put_into_deleted_store_raises(self, storage, store):
        storage.delete("usa-luxury-limo-v1")

        with pytest.raises(CacheWriteError):
            store.put(Request("https://limo.example/"), page())

        assert storage.usage_bytes() == 0
        assert storage.keys() == []

    def test_keys_in_insert_order(self, store):
        store.put(Request("https://limo.example/"), page())
        store.put(Request("https://limo.example/index.html#top"), page())

        assert store.keys() == [
            ("GET", "https://limo.example/"),
            ("GET", "https://limo.example/index.html"),
        ]

    def test_binary_body_preserved(self, store):
        icon = bytes(range(256))
        request = Request("https://limo.example/logo-192.png")
        store.put(request, page(body=icon, url=request.url))

        assert store.match(request).body == icon

    def test_read_error_is_a_miss(self, storage, store):
        storage.conn.execute("DROP TABLE cache_entries")

        assert store.match(Request("https://limo.example/")) is None

    def test_write_error_raises(self, storage, store):
        storage.conn.execute("DROP TABLE cache_entries")

        with pytest.raises(CacheWriteError):
            store.put(Request("https://limo.example/"), page())


class TestQuota:
    """Test storage quota."""

    @pytest.fixture
    def storage(self, tmp_path):
        storage = CacheStorage(str(tmp_path / "caches.db"), quota_bytes=100)
        yield storage
        storage.close()

    def test_write_within_quota(self, storage):
        store = storage.open("v1")
        store.put(Request("https://limo.example/a"), page(b"x" * 60))

        assert storage.usage_bytes() == 60

    def test_write_over_quota(self, storage):
        store = storage.open("v1")
        store.put(Request("https://limo.example/a"), page(b"x" * 60))

        with pytest.raises(QuotaExceededError):
            store.put(Request("https://limo.example/b"), page(b"x" * 60))

        assert store.match(Request("https://limo.example/b")) is None

    def test_quota_counts_every_store(self, storage):
        storage.open("v1").put(Request("https://limo.example/a"), page(b"x" * 60))

        with pytest.raises(QuotaExceededError):
            storage.open("v2").put(Request("https://limo.example/a"), page(b"x" * 60))

    def test_replacing_entry_not_double_counted(self, storage):
        store = storage.open("v1")
        request = Request("https://limo.example/a")
        store.put(request, page(b"x" * 60))
        store.put(request, page(b"y" * 90))

        assert storage.usage_bytes() == 90

    def test_quota_error_is_a_write_error(self):
        assert issubclass(QuotaExceededError, CacheWriteError)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
