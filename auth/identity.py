"""
Identity backend — resolve a bearer credential to a ``user_id``.

The connector never checks credentials itself; it asks an
``IdentityBackend``.  ``TokenIdentityBackend`` verifies the HMAC-signed
tokens from ``auth.jwt``; any object with a ``get_user`` coroutine can be
swapped in (e.g. a managed identity service client).
"""

from __future__ import annotations

from typing import Optional, Protocol

from auth.jwt import verify_token
from connectors.exceptions import AuthenticationError


class IdentityBackend(Protocol):
    async def get_user(self, bearer_token: str) -> str: ...


class TokenIdentityBackend:
    def __init__(self, secret: str) -> None:
        self._secret = secret

    async def get_user(self, bearer_token: str) -> str:
        return verify_token(bearer_token, self._secret)


def bearer_from_header(authorization: Optional[str]) -> str:
    """Extract the token from an ``Authorization: Bearer …`` header."""
    if not authorization:
        raise AuthenticationError("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Missing Bearer token")
    return token.strip()


async def resolve_user(identity: IdentityBackend, authorization: Optional[str]) -> str:
    """Header → user_id, raising ``AuthenticationError`` on any failure."""
    user_id = await identity.get_user(bearer_from_header(authorization))
    if not user_id:
        raise AuthenticationError("User not authenticated")
    return user_id
