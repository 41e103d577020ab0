"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Mirrors the
approach in portal/models.py -- dataclasses own domain shape; verifiers,
stores and routes do the work.

Layer rule: no imports from api/, core/, portal/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Three-level role lattice: client < associate ~ admin."""

    client = "client"
    associate = "associate"
    admin = "admin"

    @classmethod
    def parse(cls, value: object) -> Role | None:
        """Return the Role for a raw claim value, or None if unrecognised."""
        try:
            return cls(str(value))
        except ValueError:
            return None


class CredentialSource(str, Enum):
    local = "local"
    federated = "federated"


@dataclass(frozen=True)
class Principal:
    """The authenticated identity for one request.

    A projection of verified token claims -- never persisted independently.
    Built only by the verifier chain in auth/dependencies.py.
    """

    subject: str
    role: Role
    source: CredentialSource = CredentialSource.local

    @property
    def is_client(self) -> bool:
        return self.role is Role.client

    @property
    def can_write(self) -> bool:
        """Associates and admins may mutate portal records."""
        return self.role in (Role.associate, Role.admin)


@dataclass(frozen=True)
class CookieDirective:
    """How the response should set (or expire) the session cookie.

    Kept separate from the Starlette response so session logic stays
    testable without an ASGI round trip. apply_cookie() in auth/tokens.py
    writes it onto a response.
    """

    name: str
    value: str
    max_age: int
    secure: bool
    httponly: bool = True
    samesite: str = "lax"
