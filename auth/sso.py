"""
auth/sso.py -- Single-use state handshake for external tool launches.

A principal asks to launch an external tool (Notion, Linear, ...). We mint an
opaque state token, store {provider, target, createdAt} under it with a TTL,
and hand back the tool URL carrying the state. When the tool redirects back
to the callback, the state is the only thing that binds "a launch was
requested" to "this callback is legitimate".

State machine:
  ISSUED -> REDEEMED   (callback with matching provider; record deleted)
  ISSUED -> EXPIRED    (TTL elapsed; record reads as missing)

Redemption is a version-checked delete, so two racing callbacks with the same
state cannot both succeed. A state minted for one provider never redeems for
another.

The callback's `status` query parameter is caller-supplied and unverified. It
is echoed back for cosmetic messaging only and never drives a decision.

Layer rule: no imports from api/, portal/, or cache/. The document store is
passed in (duck-typed: get / put_if_version_matches / delete_if_version_matches).
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from auth.models import Principal

logger = logging.getLogger("gateway.auth.sso")

_KEY_PREFIX = "sso_state:"
_MAX_STATUS_LENGTH = 64


class UnknownProviderError(Exception):
    """No external URL is configured for the requested provider."""


class InvalidStateError(Exception):
    """State was never issued, already redeemed, expired, or for another provider."""


@dataclass(frozen=True)
class Launch:
    url: str
    state: str


def _with_state(url: str, state: str) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("state", state))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class SSOHandshake:
    def __init__(self, documents, tool_urls: dict[str, str], ttl_seconds: int = 600) -> None:
        self.documents = documents
        self.tool_urls = tool_urls
        self.ttl = ttl_seconds

    def start_launch(self, principal: Principal, provider: str) -> Launch:
        """Mint a state for provider and return the launch URL.

        Raises:
            UnknownProviderError: provider has no configured URL.
        """
        target = self.tool_urls.get(provider)
        if not target:
            raise UnknownProviderError(provider)

        record = {
            "provider": provider,
            "target": target,
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }
        # 256-bit token; a collision would make the insert fail rather than
        # overwrite another launch.
        while True:
            state = secrets.token_urlsafe(32)
            if self.documents.put_if_version_matches(_KEY_PREFIX + state, record, 0, ttl_seconds=self.ttl):
                break
        logger.info("SSO launch issued for %s -> %s", principal.subject, provider)
        return Launch(url=_with_state(target, state), state=state)

    def complete_callback(self, provider: str, state: str, status: str | None = None) -> dict[str, Any]:
        """Redeem state exactly once.

        Raises:
            InvalidStateError: missing, redeemed, expired, or provider mismatch.
        """
        if not state:
            raise InvalidStateError("missing state")
        key = _KEY_PREFIX + state
        doc = self.documents.get(key)
        if doc is None:
            raise InvalidStateError("unknown or expired state")
        if doc.value.get("provider") != provider:
            # Leave the record in place: the legitimate callback may still arrive.
            logger.warning("SSO state presented for %s but minted for %s", provider, doc.value.get("provider"))
            raise InvalidStateError("provider mismatch")
        if not self.documents.delete_if_version_matches(key, doc.version):
            raise InvalidStateError("state already redeemed")
        logger.info("SSO callback redeemed for %s", provider)
        return {
            "success": True,
            "provider": provider,
            "status": (status or "")[:_MAX_STATUS_LENGTH],
        }
