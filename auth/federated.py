"""
auth/federated.py -- Verification of credentials issued by an external IdP.

Enterprise SSO users arrive with an RS256 JWT minted by the identity provider,
not by this gateway. We verify it against the provider's published JSON Web
Key Set (JWKS):

  1. Read `kid` from the unverified header. No kid -> not ours, return None.
  2. Look the kid up in the cached key set (TTL JWKS_TTL_SECONDS, default 1h).
     An unknown kid forces one refetch so a freshly rotated key is picked up
     without waiting out the TTL.
  3. jose verifies the RS256 signature, `iss`, `aud` and `exp` in one call.
  4. The role claim is mapped onto Role; anything unrecognised becomes client
     (least privilege).

Every failure path returns None. A JWKS fetch failure is logged and treated
as "could not verify", never as a server error.

Layer rule: no imports from api/, portal/, or cache/.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

import requests
from jose import JWTError, jwt

from auth.models import CredentialSource, Principal, Role

logger = logging.getLogger("gateway.auth.federated")

ALGORITHMS = ["RS256"]
_MIN_REFETCH_SECONDS = 60

JwksFetcher = Callable[[], dict[str, Any]]

_session = requests.Session()
_session.max_redirects = 3


def http_jwks_fetcher(url: str, timeout: float = 10.0) -> JwksFetcher:
    """Return a fetcher that GETs the JWKS document from url."""

    def _fetch() -> dict[str, Any]:
        resp = _session.get(url, timeout=timeout)
        resp.raise_for_status()
        return resp.json()

    return _fetch


class FederatedVerifier:
    """Verifier strategy for IdP-issued RS256 credentials.

    The JWKS is memoized per instance. The lock only guards the cache fields;
    the network fetch happens outside it so a slow IdP never serialises
    unrelated verifications behind one request.
    """

    source = CredentialSource.federated

    def __init__(
        self,
        issuer: str,
        audience: str,
        fetch_jwks: JwksFetcher,
        role_claim: str = "role",
        ttl_seconds: int = 3600,
    ) -> None:
        self.issuer = issuer
        self.audience = audience
        self.role_claim = role_claim
        self.ttl = ttl_seconds
        self._fetch_jwks = fetch_jwks
        self._keys: dict[str, dict[str, Any]] = {}
        self._fetched_at: float = 0.0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Key set
    # ------------------------------------------------------------------

    def _refresh_keys(self) -> None:
        try:
            document = self._fetch_jwks()
            keys = {k["kid"]: k for k in document.get("keys", []) if isinstance(k, dict) and "kid" in k}
        except (requests.RequestException, ValueError, AttributeError) as e:
            logger.warning("JWKS fetch failed for issuer %s: %s", self.issuer, e)
            return
        with self._lock:
            self._keys = keys
            self._fetched_at = time.time()
        logger.info("JWKS loaded for issuer %s (%d keys)", self.issuer, len(keys))

    def _key_for(self, kid: str) -> dict[str, Any] | None:
        now = time.time()
        with self._lock:
            fresh = now - self._fetched_at < self.ttl
            key = self._keys.get(kid)
            # Unknown kid on a fresh set: the IdP may have rotated keys. At most
            # one forced refetch per interval, so random kids cannot turn every
            # request into a JWKS download.
            may_force = now - self._fetched_at >= _MIN_REFETCH_SECONDS
        if fresh and key is not None:
            return key
        if fresh and not may_force:
            return None
        self._refresh_keys()
        with self._lock:
            return self._keys.get(kid)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_claims(self, token: str) -> dict[str, Any] | None:
        """Return verified claims or None. Never raises."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            return None
        kid = header.get("kid")
        if not kid or header.get("alg") not in ALGORITHMS:
            return None
        key = self._key_for(kid)
        if key is None:
            return None
        try:
            return jwt.decode(
                token,
                key,
                algorithms=ALGORITHMS,
                audience=self.audience,
                issuer=self.issuer,
                options={"require_exp": True, "require_sub": True},
            )
        except JWTError:
            return None

    def verify(self, token: str) -> Principal | None:
        claims = self.verify_claims(token)
        if claims is None:
            return None
        role = Role.parse(claims.get(self.role_claim)) or Role.client
        return Principal(subject=str(claims["sub"]), role=role, source=self.source)
