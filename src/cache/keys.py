#!/usr/bin/env python3
"""
Request Identity: Cache Keys for Intercepted Requests

Implements:
- normalize_url(url) → URL without fragment or default port
- request_key(method, url) → deterministic key

Same method + same URL (fragment ignored, query kept) = same key = cache hit.
"""

import hashlib
import logging
from urllib.parse import urlsplit, urlunsplit

from gateway.http import canonical_netloc

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """Drop the fragment and a default port; scheme and host are lowercased."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme.lower(), canonical_netloc(parts), parts.path, parts.query, ""))


def request_key(method: str, url: str) -> str:
    """
    Generate deterministic cache key.

    Args:
        method: HTTP method (case-insensitive)
        url: Absolute request URL

    Returns:
        SHA-256 hex digest of "METHOD normalized_url"
    """
    key_data = f"{method.upper()} {normalize_url(url)}"
    key = hashlib.sha256(key_data.encode()).hexdigest()
    logger.debug("Generated key: %s (%s)", key[:12], key_data)
    return key
