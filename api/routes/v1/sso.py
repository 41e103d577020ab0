"""
api/routes/v1/sso.py -- Delegated SSO launches for external tools.

Routes:
  GET|POST /api/sso/start?provider=                   -- mint a single-use state (requires auth)
  GET      /api/sso/callback?provider=&state=&status= -- redeem the state (public)

The callback is public because the external tool redirects the browser to it;
the state token is the only credential it carries. `status` is echoed back
for display and never drives a decision; any length is accepted and the
handshake truncates it.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import SSOCallbackResponse, SSOStartResponse
from auth.dependencies import get_current_principal
from auth.models import Principal
from auth.sso import InvalidStateError, SSOHandshake, UnknownProviderError

logger = logging.getLogger("gateway.api.sso")

# Auth policy:
# - /api/sso/start:    requires auth (get_current_principal)
# - /api/sso/callback: public -- authorized by the single-use state alone
router = APIRouter()


@router.api_route("/sso/start", methods=["GET", "POST"], response_model=SSOStartResponse)
def sso_start(
    request: Request,
    provider: str = Query(min_length=1, max_length=64),
    principal: Principal = Depends(get_current_principal),
) -> SSOStartResponse:
    """Begin a launch: returns the tool URL carrying a fresh state."""
    handshake: SSOHandshake = request.app.state.sso
    try:
        launch = handshake.start_launch(principal, provider)
    except UnknownProviderError as e:
        raise HTTPException(
            status_code=400,
            detail={"code": "unknown_provider", "message": f"No SSO target configured for {provider!r}."},
        ) from e
    return SSOStartResponse(url=launch.url, state=launch.state)


@router.get("/sso/callback", response_model=SSOCallbackResponse)
def sso_callback(
    request: Request,
    provider: str = Query(default="", max_length=64),
    state: str = Query(default="", max_length=256),
    status: str = Query(default=""),
) -> SSOCallbackResponse:
    """Redeem a state exactly once. Second and later redemptions get 400."""
    handshake: SSOHandshake = request.app.state.sso
    try:
        result = handshake.complete_callback(provider, state, status)
    except InvalidStateError as e:
        logger.info("SSO callback rejected for %r: %s", provider, e)
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_state", "message": "SSO state is invalid, expired or already used."},
        ) from e
    return SSOCallbackResponse(**result)
