"""
auth/tokens.py -- Local session credentials, password check, and cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Local credentials are signed with SECRET_KEY
       and carry sub, role, iat and exp. Verification returns None on any
       failure -- "could not verify" is a normal branch, never an exception.
       The session layer turns None into 401.

  Passwords: bcrypt. The configured ADMIN_PASSWORD is hashed once at module
       load and every login attempt runs bcrypt exactly once, whether or not
       a password is configured, so response time does not reveal the
       configuration [C1].

  Cookies: the session cookie is httpOnly, SameSite=Lax, Secure (unless
       SECURE_COOKIES=false for local HTTP development), Max-Age matching the
       credential lifetime.

Layer rule: no imports from api/, portal/, or cache/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any

import bcrypt
from jose import JWTError, jwt

from auth.models import CookieDirective, CredentialSource, Principal, Role
from core.config import get_settings

logger = logging.getLogger("gateway.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1]. Used when no admin password is set so
# that an unconfigured deployment costs the same bcrypt round as a real one.
_DUMMY_HASH: str = hash_password("gateway_timing_dummy")
_ADMIN_HASH: str | None = hash_password(_settings.admin_password) if _settings.admin_password else None


def check_admin_password(password: str) -> bool:
    """Constant-cost check of a password-login attempt [C1]."""
    if _ADMIN_HASH is None:
        verify_password(password, _DUMMY_HASH)
        return False
    return verify_password(password, _ADMIN_HASH)


# ---------------------------------------------------------------------------
# Token codec -- local credentials
# ---------------------------------------------------------------------------


def mint(claims: dict[str, Any], key: str) -> str:
    """Sign claims as a compact HS256 JWT (header.payload.signature)."""
    return jwt.encode(claims, key, algorithm=ALGORITHM)


def verify_local(token: str, key: str) -> dict[str, Any] | None:
    """Verify an HS256 credential. Returns the claims dict or None on any failure.

    Covers malformed structure, signature mismatch, non-HS256 headers
    (algorithm confusion), expiry, and missing sub/role claims.
    """
    try:
        claims = jwt.decode(token, key, algorithms=[ALGORITHM], options={"require_exp": True})
    except JWTError:
        return None
    if not isinstance(claims.get("sub"), str) or "role" not in claims:
        return None
    return claims


def session_claims(subject: str, role: Role, ttl_seconds: int = 0) -> dict[str, Any]:
    """Build the claim set for a fresh local session."""
    duration = ttl_seconds if ttl_seconds > 0 else _settings.session_ttl_seconds
    now = int(time.time())
    return {
        "sub": subject,
        "role": role.value,
        "iat": now,
        "exp": now + duration,
    }


def create_session_token(subject: str, role: Role, ttl_seconds: int = 0) -> str:
    """Mint a local credential for subject/role with the configured lifetime."""
    return mint(session_claims(subject, role, ttl_seconds), _settings.secret_key)


class LocalVerifier:
    """Verifier strategy for credentials minted by this gateway."""

    source = CredentialSource.local

    def __init__(self, key: str) -> None:
        self._key = key

    def verify(self, token: str) -> Principal | None:
        claims = verify_local(token, self._key)
        if claims is None:
            return None
        role = Role.parse(claims["role"])
        if role is None:
            logger.warning("Local credential for %s carries unknown role", claims["sub"])
            return None
        return Principal(subject=claims["sub"], role=role, source=self.source)


# ---------------------------------------------------------------------------
# Webhook signatures
# ---------------------------------------------------------------------------


def verify_webhook_signature(secret: str, body: bytes, signature_header: str) -> bool:
    """Check an X-Hub-Signature-256 style header: "sha256=<hex hmac>"."""
    expected = "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header or "")


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def session_cookie(token: str, max_age: int = 0) -> CookieDirective:
    """Directive carrying a session credential (secure, httpOnly, lax, 24h)."""
    return CookieDirective(
        name=_settings.session_cookie_name,
        value=token,
        max_age=max_age if max_age > 0 else _settings.session_ttl_seconds,
        secure=_settings.secure_cookies,
    )


def expired_cookie() -> CookieDirective:
    """Directive that immediately expires the session cookie."""
    return CookieDirective(
        name=_settings.session_cookie_name,
        value="",
        max_age=0,
        secure=_settings.secure_cookies,
    )


def apply_cookie(response, directive: CookieDirective) -> None:
    """Write a CookieDirective onto a FastAPI/Starlette response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    """
    response.set_cookie(
        directive.name,
        value=directive.value,
        httponly=directive.httponly,
        samesite=directive.samesite,
        secure=directive.secure,
        max_age=directive.max_age,
    )
