"""Fetch decision log schema enforcement."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator

DECISIONS = (
    "cache_hit",
    "network_stored",
    "network_unstored",
    "network_error",
    "cache_fallback",
)

DECISION_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": [
        "request_id",
        "received_at",
        "method",
        "url",
        "cache_name",
        "strategy",
        "decision",
        "status",
        "stored",
        "latency_ms",
    ],
    "properties": {
        "request_id": {"type": "string"},
        "received_at": {"type": "string", "format": "date-time"},
        "method": {"type": "string"},
        "url": {"type": "string"},
        "cache_name": {"type": "string", "minLength": 1},
        "strategy": {"type": "string", "enum": ["cache_first", "network_first"]},
        "decision": {"type": "string", "enum": list(DECISIONS)},
        "status": {"type": ["integer", "null"], "minimum": 0},
        "response_type": {"type": ["string", "null"], "enum": ["basic", "cors", "opaque", None]},
        "stored": {"type": "boolean"},
        "store_error": {"type": ["string", "null"]},
        "latency_ms": {"type": "number", "minimum": 0},
    },
}

_validator = Draft7Validator(DECISION_SCHEMA)


def validate_decision(payload: Dict[str, Any]) -> None:
    errors = sorted(_validator.iter_errors(payload), key=lambda e: e.path)
    if errors:
        messages = ", ".join(error.message for error in errors)
        raise ValueError(f"fetch decision validation failed: {messages}")


@dataclass
class FetchDecisionRecord:
    request_id: str
    method: str
    url: str
    cache_name: str
    strategy: str
    decision: str
    status: Optional[int]
    stored: bool
    latency_ms: float
    response_type: Optional[str] = None
    store_error: Optional[str] = None
    received_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "request_id": self.request_id,
            "received_at": self.received_at,
            "method": self.method,
            "url": self.url,
            "cache_name": self.cache_name,
            "strategy": self.strategy,
            "decision": self.decision,
            "status": self.status,
            "response_type": self.response_type,
            "stored": self.stored,
            "store_error": self.store_error,
            "latency_ms": self.latency_ms,
        }
        validate_decision(payload)
        return payload
