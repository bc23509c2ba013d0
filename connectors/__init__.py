"""
connectors — OAuth integration module for external CRMs.

Provides a generic connector framework that handles:
  • OAuth2 auth-URL generation and opaque state binding
  • Callback handling (code → token exchange → account lookup → persist)
  • Per-user credential storage & serialized auto-refresh
  • Fernet encryption of tokens at rest

Each provider (HubSpot, …) is a subclass of BaseConnector.
"""
