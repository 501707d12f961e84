from pathlib import Path

import pytest

from gateway.config import DEFAULT_PRECACHE_URLS, GatewayConfig, load_config

DEFAULTS_PATH = Path(__file__).parent.parent / "config" / "gateway.defaults.yml"


def test_load_config_defaults(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("origin: https://limo.example", encoding="utf-8")

    cfg = load_config(path)

    assert isinstance(cfg, GatewayConfig)
    assert cfg.origin == "https://limo.example"
    assert cfg.cache_name == "usa-luxury-limo-v1"
    assert cfg.precache_urls == DEFAULT_PRECACHE_URLS
    assert cfg.network_first_prefixes == ()
    assert cfg.network_timeout_sec is None
    assert cfg.quota_bytes == 0


def test_env_overrides(monkeypatch, tmp_path):
    source = tmp_path / "config.yml"
    source.write_text("cache:\n  version: v1\n", encoding="utf-8")

    monkeypatch.setenv("GATEWAY_CACHE_VERSION", "v2")
    monkeypatch.setenv("GATEWAY_QUOTA_BYTES", "1024")
    monkeypatch.setenv("GATEWAY_NETWORK_TIMEOUT_SEC", "2.5")
    monkeypatch.setenv("GATEWAY_DB_PATH", str(tmp_path / "caches.db"))

    cfg = load_config(source)

    assert cfg.cache_name == "usa-luxury-limo-v2"
    assert cfg.quota_bytes == 1024
    assert cfg.network_timeout_sec == 2.5
    assert cfg.db_path == tmp_path / "caches.db"


def test_numeric_version_is_a_string(tmp_path):
    source = tmp_path / "config.yml"
    source.write_text("cache:\n  prefix: limo\n  version: 3\n", encoding="utf-8")

    assert load_config(source).cache_name == "limo-3"


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yml")


def test_shipped_defaults():
    cfg = load_config(DEFAULTS_PATH)

    assert cfg.cache_name == "usa-luxury-limo-v1"
    assert "/" in cfg.precache_urls
    assert "/index.html" in cfg.precache_urls
    assert cfg.network_first_prefixes == ("/api/",)
    assert "/api/vehicle-types" in cfg.cached_api_endpoints
