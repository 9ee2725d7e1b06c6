"""
Signer — HMAC-SHA256 signatures over outbound payloads.

Subscribers verify X-Signature against the raw request body, so the executor
signs exactly the bytes it sends (see ``canonical_json``).
"""
import hashlib
import hmac
import json
import time
from typing import Any

from hookrelay.core.config import settings


def canonical_json(payload: Any) -> bytes:
    """Stable serialisation: sorted keys, compact separators, UTF-8."""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")


def _to_bytes(payload: Any) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return canonical_json(payload)


def sign(payload: Any, secret: str) -> str:
    """Hex HMAC-SHA256 of the payload. Raw bytes/str are signed as given."""
    return hmac.new(secret.encode("utf-8"), _to_bytes(payload), hashlib.sha256).hexdigest()


def verify(payload: Any, signature: str, secret: str) -> bool:
    """Constant-time check of ``signature`` against a fresh HMAC of ``payload``."""
    if not signature or not secret:
        return False
    expected = sign(payload, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def build_headers(payload: Any, secret: str) -> dict[str, str]:
    """Headers for one outbound delivery."""
    return {
        "Content-Type": "application/json",
        "X-Signature": sign(payload, secret),
        "X-Timestamp": str(int(time.time() * 1000)),
        "User-Agent": settings.user_agent,
    }
