"""
OAuth ``state`` codecs — bind the consent redirect to the requesting user.

``UserIdStateCodec`` sends the bare user id, exactly what the callback
stores the credential under.  It has no freshness check, so a leaked
callback URL can be replayed.  ``SignedStateCodec`` (OAUTH_STATE_MODE=signed)
adds an HMAC signature and an expiry on top of the same user id.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Protocol

from config.settings import Settings
from connectors.exceptions import AuthenticationError


class StateCodec(Protocol):
    def encode(self, user_id: str) -> str: ...

    def decode(self, state: str) -> str: ...


class UserIdStateCodec:
    def encode(self, user_id: str) -> str:
        return user_id

    def decode(self, state: str) -> str:
        if not state or not state.strip():
            raise AuthenticationError("Invalid OAuth state: empty")
        return state


class SignedStateCodec:
    """State = base64(json{user_id, exp}) + "." + truncated HMAC-SHA256."""

    def __init__(self, secret: str, ttl_seconds: int = 600) -> None:
        self._secret = secret.encode()
        self._ttl = ttl_seconds

    def _sign(self, raw: bytes) -> str:
        return hmac.new(self._secret, raw, hashlib.sha256).hexdigest()[:32]

    def encode(self, user_id: str) -> str:
        payload = json.dumps({"user_id": user_id, "exp": int(time.time()) + self._ttl})
        raw = payload.encode()
        return urlsafe_b64encode(raw).decode() + "." + self._sign(raw)

    def decode(self, state: str) -> str:
        """Verify state token, return user_id.  Fails closed on any defect."""
        try:
            encoded, sig = state.split(".", 1)
            raw = urlsafe_b64decode(encoded.encode())
            if not hmac.compare_digest(sig, self._sign(raw)):
                raise ValueError("bad signature")
            payload = json.loads(raw)
            if payload.get("exp", 0) < time.time():
                raise ValueError("state expired")
            user_id = payload["user_id"]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise AuthenticationError(f"Invalid or expired OAuth state: {exc}") from exc
        if not user_id:
            raise AuthenticationError("Invalid OAuth state: empty user id")
        return user_id


def build_state_codec(settings: Settings) -> StateCodec:
    if settings.oauth_state_mode == "signed":
        return SignedStateCodec(settings.oauth_state_secret, settings.oauth_state_ttl_seconds)
    return UserIdStateCodec()
