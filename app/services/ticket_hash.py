"""HMAC signing for ticket QR descriptors.

The signed message is the descriptor without its ``hash`` key, serialized
as JSON with sorted keys and no whitespace, so any party holding the secret
reproduces the same bytes regardless of the order fields arrived in.
"""
from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Mapping

from app.core.config import settings
from app.core.errors import TicketSecretMissing

HASH_FIELD = "hash"


def canonicalize(payload: Mapping[str, Any]) -> bytes:
    fields = {k: v for k, v in payload.items() if k != HASH_FIELD}
    return json.dumps(fields, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _secret_bytes(secret: str | None) -> bytes:
    key = settings.TICKET_SECRET if secret is None else secret
    if not key or not key.strip():
        raise TicketSecretMissing("Ticket signing secret is not configured")
    return key.encode("utf-8")


def compute_hash(payload: Mapping[str, Any], secret: str | None = None) -> str:
    key = _secret_bytes(secret)
    return hmac.new(key, canonicalize(payload), hashlib.sha256).hexdigest()


def verify_hash(payload: Mapping[str, Any], candidate: Any, secret: str | None = None) -> bool:
    expected = compute_hash(payload, secret=secret)
    if not isinstance(candidate, str) or not candidate:
        return False
    return hmac.compare_digest(expected.encode("ascii"), candidate.strip().lower().encode("utf-8"))
