"""
auth — caller identity resolution.

Provides:
  • Signed bearer token creation & verification
  • ``IdentityBackend`` protocol and the token-based implementation
  • ``resolve_user`` helper for route handlers
"""
