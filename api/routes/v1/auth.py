"""
api/routes/v1/auth.py -- Login and session lifecycle endpoints.

Routes:
  POST /api/auth/github        -- exchange a GitHub OAuth code; allowed orgs -> associate
  POST /api/auth/admin         -- password login for the operator account -> admin
  GET  /api/session            -- current principal (requires auth)
  POST /api/session/refresh    -- re-mint the credential with identical claims
  POST /api/logout             -- expire the session cookie; always 200

Security:
  [H2] Both login endpoints are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] check_admin_password() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a credential.
  Role is never taken from the request: GitHub logins are associate or 403,
  password logins are admin, refresh copies the verified role.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import AdminLoginRequest, GitHubLoginRequest, MessageResponse, SessionResponse
from auth.dependencies import extract_token, get_current_principal, issue_session, refresh_session
from auth.models import CookieDirective, Principal, Role
from auth.oauth import OAuthExchangeError, fetch_github_identity, role_for_orgs
from auth.tokens import apply_cookie, check_admin_password, expired_cookie
from core.config import get_settings

logger = logging.getLogger("gateway.api.auth")

_LOGIN_LIMIT = get_settings().login_rate_limit

# Auth policy:
# - POST /api/auth/github:       public -- login endpoint must be unauthenticated
# - POST /api/auth/admin:        public -- login endpoint must be unauthenticated
# - POST /api/logout:            public -- clearing a cookie needs no prior auth
# - GET  /api/session:           requires auth (get_current_principal)
# - POST /api/session/refresh:   requires a credential that still verifies
router = APIRouter()


def _session_response(principal: Principal, token: str, cookie: CookieDirective) -> JSONResponse:
    resp = JSONResponse(content=SessionResponse.from_principal(principal, token).model_dump())
    apply_cookie(resp, cookie)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_LOGIN_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/github", response_model=SessionResponse)
def github_login(request: Request, body: GitHubLoginRequest) -> JSONResponse:
    """Exchange a GitHub authorization code for a portal session.

    Members of any GITHUB_ALLOWED_ORGS org become associates. Everyone else
    is refused with 403 -- there is no client role via GitHub.
    """
    cfg = request.app.state.settings
    if not cfg.github_enabled:
        raise HTTPException(
            status_code=400,
            detail={"code": "unknown_provider", "message": "GitHub login is not configured."},
        )
    try:
        identity = fetch_github_identity(body.code)
    except OAuthExchangeError as e:
        logger.info("GitHub login failed: %s", e)
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "GitHub login failed.", "detail": str(e)},
        ) from e

    role = role_for_orgs(identity.orgs, cfg.github_allowed_orgs)
    if role is None:
        logger.warning("GitHub login refused for %s: not in an allowed org", identity.login)
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Access denied: not a member of an allowed organization."},
        )

    principal = Principal(subject=identity.login, role=role)
    token, cookie = issue_session(principal)
    logger.info("GitHub login for %s (%s)", principal.subject, role.value)
    return _session_response(principal, token, cookie)


@limiter.limit(_LOGIN_LIMIT)  # [H2]
@router.post("/auth/admin", response_model=SessionResponse)
def admin_login(request: Request, body: AdminLoginRequest) -> JSONResponse:
    """Password login for the operator account.

    Uses check_admin_password() which costs one bcrypt round whether or not a
    password is configured [C1]. Do NOT inline a string comparison.
    """
    if not check_admin_password(body.password):
        logger.warning("Admin login failed from %s", request.client.host if request.client else "unknown")
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "unauthorized", "message": "Invalid credentials."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    principal = Principal(subject=request.app.state.settings.admin_subject, role=Role.admin)
    token, cookie = issue_session(principal)
    logger.info("Admin login for %s", principal.subject)
    return _session_response(principal, token, cookie)


@router.post("/logout", response_model=MessageResponse)
def logout() -> JSONResponse:
    """Expire the session cookie. Idempotent: succeeds with or without a session."""
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    apply_cookie(resp, expired_cookie())
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/session", response_model=SessionResponse)
def current_session(principal: Principal = Depends(get_current_principal)) -> SessionResponse:
    """Return the principal resolved from the request's credential."""
    return SessionResponse.from_principal(principal)


@router.post("/session/refresh", response_model=SessionResponse)
def refresh(request: Request) -> JSONResponse:
    """Mint a fresh local credential with the same subject and role.

    A federated credential refreshes into a local one: the role has already
    been mapped by the verifier, so nothing is lost.
    """
    state = request.app.state
    token = extract_token(request, state.settings.session_cookie_name)
    refreshed = refresh_session(state.verifiers, token)
    if refreshed is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Session is missing, invalid or expired."},
        )
    principal, new_token, cookie = refreshed
    # The new credential is always local, whatever verified the old one.
    local = Principal(subject=principal.subject, role=principal.role)
    return _session_response(local, new_token, cookie)
