"""
JWT-style bearer token creation and verification.

Tokens are base64-encoded JSON payloads signed with HMAC-SHA256.
The secret is ``Settings.jwt_secret`` (env var: ``JWT_SECRET``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import b64decode, b64encode

from connectors.exceptions import AuthenticationError


def create_token(user_id: str, secret: str, expiry_seconds: int = 604800) -> str:
    """Create a signed token containing ``user_id`` and expiry."""
    payload = {
        "user_id": user_id,
        "exp": int(time.time()) + expiry_seconds,
    }
    raw = json.dumps(payload).encode()
    sig = hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
    return b64encode(raw).decode() + "." + sig


def verify_token(token: str, secret: str) -> str:
    """
    Verify token and return ``user_id``.

    Accepts ``user_id`` or the standard ``sub`` claim.  Raises
    ``AuthenticationError`` on invalid or expired tokens.
    """
    if not secret:
        raise AuthenticationError("Token verification is not configured (JWT_SECRET)")
    try:
        encoded, sig = token.split(".", 1)
        raw = b64decode(encoded, validate=True)
        expected_sig = hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(sig, expected_sig):
            raise ValueError("bad signature")
        payload = json.loads(raw)
        if payload.get("exp", 0) < time.time():
            raise ValueError("token expired")
        user_id = payload.get("user_id") or payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise ValueError("no subject")
    except (ValueError, TypeError, AttributeError) as exc:
        raise AuthenticationError(f"Invalid or expired token: {exc}") from exc
    return user_id
