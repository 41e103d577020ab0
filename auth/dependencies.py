"""
auth/dependencies.py -- Session boundary and FastAPI Depends() helpers.

Two transports are checked in priority order:
  1. Authorization: Bearer <token> header -- server-to-server and API callers.
  2. "session" cookie -- set by the browser login flows.

The header wins when both are present. A token from either transport is run
through the verifier chain: LocalVerifier first, FederatedVerifier second.
Both are equally authoritative once verified; the first Principal wins.

try_get_principal() is the soft variant (returns None on failure).
get_current_principal() wraps it and raises HTTP 401 if unauthenticated.
require_writer() wraps get_current_principal() and raises HTTP 403 for clients.

Layer rule: no imports from api/, portal/, or cache/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Protocol

from fastapi import HTTPException, Request

from auth.federated import FederatedVerifier, http_jwks_fetcher
from auth.models import CookieDirective, Principal
from auth.tokens import LocalVerifier, create_session_token, session_cookie
from core.config import Settings


class Verifier(Protocol):
    def verify(self, token: str) -> Principal | None: ...


def build_verifiers(settings: Settings) -> list[Verifier]:
    """Return the ordered verifier chain for this deployment.

    The federated verifier is only present when issuer, audience and JWKS URL
    are all configured.
    """
    verifiers: list[Verifier] = [LocalVerifier(settings.secret_key)]
    if settings.federated_enabled:
        verifiers.append(
            FederatedVerifier(
                issuer=settings.federated_issuer,
                audience=settings.federated_audience,
                fetch_jwks=http_jwks_fetcher(settings.federated_jwks_url, settings.http_timeout_seconds),
                role_claim=settings.federated_role_claim,
                ttl_seconds=settings.jwks_ttl_seconds,
            )
        )
    return verifiers


def extract_token(request: Request, cookie_name: str = "session") -> str | None:
    """Return the raw credential from the Bearer header, else from the cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(cookie_name) or None


def verify_token(verifiers: list[Verifier], token: str) -> Principal | None:
    for verifier in verifiers:
        principal = verifier.verify(token)
        if principal is not None:
            return principal
    return None


def try_get_principal(request: Request) -> Principal | None:
    """Resolve the request's Principal. Never raises -- None means unauthenticated."""
    state = request.app.state
    token = extract_token(request, state.settings.session_cookie_name)
    if not token:
        return None
    return verify_token(state.verifiers, token)


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return principal


def require_writer(request: Request) -> Principal:
    """Require associate or admin. 401 if unauthenticated, 403 for clients.

    The two outcomes stay distinct: a client must learn that they lack
    permission, not that they are logged out.
    """
    principal = get_current_principal(request)
    if not principal.can_write:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Associate or admin access required."},
        )
    return principal


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


def issue_session(principal: Principal) -> tuple[str, CookieDirective]:
    """Mint a local credential for principal and the cookie that carries it."""
    token = create_session_token(principal.subject, principal.role)
    return token, session_cookie(token)


def refresh_session(
    verifiers: list[Verifier], token: str | None
) -> tuple[Principal, str, CookieDirective] | None:
    """Re-verify token and mint a fresh local credential with identical claims.

    Returns None (InvalidSession) when the existing credential does not verify.
    Subject and role are copied from the verified credential -- a refresh can
    never change role. A federated credential refreshes into a local one.
    """
    if not token:
        return None
    principal = verify_token(verifiers, token)
    if principal is None:
        return None
    new_token, cookie = issue_session(principal)
    return principal, new_token, cookie
