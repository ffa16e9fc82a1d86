"""HMAC-SHA256 signatures for outbound webhooks and inbound pipeline events."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

SIGNATURE_HEADER = "X-GrantSignal-Signature"
EVENT_HEADER     = "X-GrantSignal-Event"
DELIVERY_HEADER  = "X-GrantSignal-Delivery"
USER_AGENT       = "GrantSignal-Webhooks/1.0"


def sign(payload: bytes | str, secret: str) -> str:
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify(payload: bytes | str, signature: str, secret: str) -> bool:
    if not signature or not secret:
        return False
    return hmac.compare_digest(sign(payload, secret), signature)


def canonical_json(payload: Any) -> str:
    """Compact, key-stable JSON; the exact bytes that get signed and sent."""
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)
