"""
auth/oauth.py -- GitHub OAuth code exchange and organisation gate.

The browser performs the GitHub authorize redirect itself and posts the
returned `code` to POST /api/auth/github. This module exchanges that code for
an access token, reads the user's login and organisation memberships, and
decides the role:

  member of an allowed org -> associate
  anything else            -> rejected (403 at the route layer)

authlib's requests-backed OAuth2Session handles the token exchange and
attaches the bearer token to the follow-up API calls. GitHub reports exchange
failures as HTTP 200 with an "error" field; authlib raises AuthlibBaseError.

Layer rule: no imports from api/, portal/, or cache/. Import from core/
is allowed -- core/ is the kernel layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import requests
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session

from auth.models import Role
from core.config import get_settings

logger = logging.getLogger("gateway.auth.oauth")

GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"  # noqa: S105 -- URL, not a password
GITHUB_API = "https://api.github.com"
_USER_AGENT = "portal-gateway"


class OAuthExchangeError(Exception):
    """The code exchange or a follow-up GitHub API call failed."""


@dataclass
class GitHubIdentity:
    login: str
    orgs: list[str] = field(default_factory=list)


def fetch_github_identity(code: str) -> GitHubIdentity:
    """Exchange an OAuth code and return the user's login and org logins.

    Raises:
        OAuthExchangeError: on provider-reported errors, network failures,
            or a response missing the login field.
    """
    cfg = get_settings()
    client = OAuth2Session(cfg.github_client_id, cfg.github_client_secret)
    client.headers["User-Agent"] = _USER_AGENT
    try:
        client.fetch_token(GITHUB_TOKEN_URL, code=code, timeout=cfg.http_timeout_seconds)

        user_resp = client.get(f"{GITHUB_API}/user", timeout=cfg.http_timeout_seconds)
        user_resp.raise_for_status()
        login = user_resp.json().get("login")

        orgs_resp = client.get(f"{GITHUB_API}/user/orgs", timeout=cfg.http_timeout_seconds)
        orgs_resp.raise_for_status()
        orgs = [o["login"] for o in orgs_resp.json() if isinstance(o, dict) and "login" in o]
    except AuthlibBaseError as e:
        raise OAuthExchangeError(e.description or "GitHub handshake failed") from e
    except (requests.RequestException, ValueError) as e:
        logger.warning("GitHub API call failed: %s", e)
        raise OAuthExchangeError("GitHub API unavailable") from e
    finally:
        client.close()

    if not login:
        raise OAuthExchangeError("GitHub profile has no login")
    return GitHubIdentity(login=login, orgs=orgs)


def role_for_orgs(orgs: list[str], allowed: list[str]) -> Role | None:
    """Return associate for members of any allowed org, None otherwise.

    Comparison is case-insensitive: GitHub org logins are.
    """
    allowed_lower = {a.lower() for a in allowed}
    if any(o.lower() in allowed_lower for o in orgs):
        return Role.associate
    return None
