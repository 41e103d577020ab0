"""auth/ -- Identity and access control for the portal gateway.

Credential codecs (local HS256, federated RS256), the session boundary,
GitHub OAuth exchange and the SSO state handshake.

Layer rule: auth/ imports only stdlib, third-party libraries and core.config.
It does NOT import from api/, portal/, or cache/; the SSO handshake takes
its document store as a constructor argument.
api/ imports from auth/, not the other way around.
"""
