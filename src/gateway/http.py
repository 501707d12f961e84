"""Request/response snapshots and the cacheability rules applied to them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional
from urllib.parse import SplitResult, urlsplit

CACHEABLE_SCHEMES = frozenset({"http", "https"})


class ResponseType(Enum):
    BASIC = "basic"      # same-origin
    CORS = "cors"        # cross-origin, readable
    OPAQUE = "opaque"    # cross-origin, not readable


DEFAULT_PORTS = {"http": 80, "https": 443}


def canonical_netloc(parts: SplitResult) -> str:
    """Lowercased host, without the port when it is the scheme's default."""
    netloc = parts.netloc.lower()
    try:
        port = parts.port
    except ValueError:
        return netloc
    if port is None or DEFAULT_PORTS.get(parts.scheme.lower()) != port:
        return netloc
    return netloc.rsplit(":", 1)[0]


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme.lower()}://{canonical_netloc(parts)}"


@dataclass(frozen=True)
class Request:
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme.lower()

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def origin(self) -> str:
        return origin_of(self.url)


@dataclass(frozen=True)
class Response:
    """
    Snapshot of a network response.

    The body is an immutable bytes buffer, so the same object can be
    handed to the caller and written to a cache store.
    """

    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    reason: str = ""
    url: str = ""
    type: ResponseType = ResponseType.BASIC

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


def is_cacheable_request(request: Request) -> bool:
    """Only http(s) requests are intercepted."""
    return request.scheme in CACHEABLE_SCHEMES


def is_storable_response(response: Response) -> bool:
    """Status 200 and same-origin; error, cors and opaque responses are never stored."""
    return response.status == 200 and response.type is ResponseType.BASIC
