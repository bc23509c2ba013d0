"""
Error taxonomy for the integration connector.

Every error keeps the original provider / storage message in ``message``
so it can be surfaced verbatim to API callers or the callback redirect.
"""

from __future__ import annotations


class ConnectorError(Exception):
    """Base class; ``status_code`` is the HTTP status the API layer uses."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(ConnectorError):
    """A required secret or URI is missing. Raised at startup."""


class AuthenticationError(ConnectorError):
    status_code = 401


class IntegrationNotConnected(ConnectorError):
    status_code = 404


class ProviderExchangeFailed(ConnectorError):
    """The provider's token endpoint rejected the request."""


class RefreshFailed(ProviderExchangeFailed):
    """A refresh-token exchange failed; the stored credential is untouched."""


class RefreshConflict(ConnectorError):
    """Another refresh rotated the tokens first. Safe to retry."""

    status_code = 409


class ProviderProtocolError(ConnectorError):
    """The provider answered with an unexpected shape."""


class RemoteProtocolError(ProviderProtocolError):
    pass


class RemoteFetchFailed(ConnectorError):
    pass


class RemoteTimeout(ConnectorError):
    status_code = 504


class StorageError(ConnectorError):
    pass
