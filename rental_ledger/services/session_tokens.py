"""Signed, stateless session tokens.

A token is ``<base64 payload>.<base64 HMAC-SHA256 signature>``; the payload
carries ``userId``, ``role`` and ``expiresAt``. Nothing is stored server side,
so any process sharing the signing secret can validate a token.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import time
from typing import Any


SESSION_TTL_SECONDS = 60 * 60 * 12


def _require_session_secret() -> bytes:
    raw = (os.environ.get("RENTAL_LEDGER_SESSION_SECRET") or "").strip()
    if len(raw) < 32:
        raise RuntimeError("RENTAL_LEDGER_SESSION_SECRET must be set and at least 32 characters long.")
    return raw.encode("utf-8")


_SESSION_SECRET = _require_session_secret()


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(encoded: str) -> bytes:
    return base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))


def _sign(encoded: str) -> bytes:
    return hmac.new(_SESSION_SECRET, encoded.encode("ascii"), hashlib.sha256).digest()


def create_session(payload: dict[str, Any], ttl_seconds: int = SESSION_TTL_SECONDS) -> str:
    session_payload = dict(payload)
    session_payload["expiresAt"] = time.time() + ttl_seconds
    body = json.dumps(session_payload, ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    encoded = _b64encode(body)
    return f"{encoded}.{_b64encode(_sign(encoded))}"


def get_session(token: str | None) -> dict[str, Any] | None:
    if not token:
        return None
    try:
        encoded, encoded_sig = token.split(".", 1)
        if not hmac.compare_digest(_sign(encoded), _b64decode(encoded_sig)):
            return None
        decoded = json.loads(_b64decode(encoded).decode("utf-8"))
    except ValueError:
        return None

    if not isinstance(decoded, dict):
        return None
    if time.time() >= float(decoded.get("expiresAt") or 0.0):
        return None
    return decoded
