#!/usr/bin/env python3
"""
Network Fetch Layer

Wraps a requests.Session. Every response comes back as an immutable
Response snapshot tagged basic / cors / opaque relative to the
gateway's origin. Transport failures surface as NetworkError.
"""

import logging
from typing import Optional

import requests

from gateway.http import Request, Response, ResponseType, origin_of

logger = logging.getLogger(__name__)


class NetworkError(Exception):
    """The request could not be completed (DNS, connection, timeout, scheme)."""

    def __init__(self, message: str, request: Optional[Request] = None):
        super().__init__(message)
        self.request = request


class Network:
    """
    Fetches requests on behalf of one origin.

    No timeout unless one is configured: a hung fetch hangs the caller
    until the transport gives up.
    """

    def __init__(self, origin: str, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.origin = origin_of(origin)
        self.timeout = timeout
        self.session = session or requests.Session()
        self._request_count = 0
        self._error_count = 0

    def fetch(self, request: Request) -> Response:
        self._request_count += 1
        try:
            resp = self.session.request(
                request.method,
                request.url,
                headers=request.headers or None,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            self._error_count += 1
            logger.warning("Fetch failed: %s %s: %s", request.method, request.url, e)
            raise NetworkError(f"{request.method} {request.url} failed: {e}", request) from e

        final_url = resp.url or request.url
        return Response(
            status=resp.status_code,
            body=resp.content or b"",
            headers=dict(resp.headers),
            reason=resp.reason or "",
            url=final_url,
            type=self._classify(final_url, resp.headers),
        )

    def _classify(self, url: str, headers) -> ResponseType:
        if origin_of(url) == self.origin:
            return ResponseType.BASIC
        if "access-control-allow-origin" in {k.lower() for k in headers}:
            return ResponseType.CORS
        return ResponseType.OPAQUE

    def get_stats(self) -> dict:
        return {
            "requests": self._request_count,
            "errors": self._error_count,
        }

    def close(self):
        self.session.close()
