"""
portal/documents.py -- Versioned key/value document repository.

Every portal collection (UPDATES_LIST, GOALS_LIST, ORG_MATRIX) and every SSO
state record is one JSON document under one key. Callers read-modify-write
whole documents, so each row carries a version counter:

    doc = store.get("UPDATES_LIST")                    # value + version
    ok = store.put_if_version_matches(key, new, doc.version)

put_if_version_matches() is a compare-and-swap: the UPDATE only matches when
the stored version equals the caller's, so two concurrent writers can no
longer silently overwrite each other. Version 0 means "must not exist yet".

Documents may carry a TTL (expires_at). Expired rows read as missing and are
purged opportunistically.

Uses SQLAlchemy Core (not ORM), like the other stores: swapping SQLite for
PostgreSQL is a connection string change.

Security: all queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/, auth/, or cache/.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

logger = logging.getLogger("gateway.documents")

DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'gateway.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_documents = Table(
    "documents",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("value", Text, nullable=False),  # JSON
    Column("version", Integer, nullable=False),
    Column("expires_at", Float),  # epoch seconds; NULL = no TTL
    Column("updated_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety (set per connection)."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class VersionedDocument:
    value: Any
    version: int


class DocumentStore:
    """Repository for versioned JSON documents.

    Usage:
        store = DocumentStore()
        store.seed("UPDATES_LIST", [])
        doc = store.get("UPDATES_LIST")
        store.put_if_version_matches("UPDATES_LIST", doc.value + [item], doc.version)
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str) -> VersionedDocument | None:
        """Return the live document for key, or None if missing or expired."""
        with self.engine.connect() as conn:
            row = conn.execute(_documents.select().where(_documents.c.key == key)).fetchone()
        if row is None:
            return None
        if row.expires_at is not None and row.expires_at <= time.time():
            return None
        return VersionedDocument(value=json.loads(row.value), version=row.version)

    # ------------------------------------------------------------------
    # Conditional writes
    # ------------------------------------------------------------------

    def put_if_version_matches(
        self,
        key: str,
        value: Any,
        expected_version: int,
        ttl_seconds: float | None = None,
    ) -> bool:
        """Write value only if the stored version equals expected_version.

        expected_version=0 creates the document and fails if a live one
        exists. Returns True on success, False on a version conflict.
        """
        payload = json.dumps(value)
        expires_at = time.time() + ttl_seconds if ttl_seconds else None
        with self.engine.connect() as conn:
            if expected_version == 0:
                # An expired row still occupies the primary key.
                conn.execute(
                    _documents.delete().where(
                        (_documents.c.key == key)
                        & _documents.c.expires_at.is_not(None)
                        & (_documents.c.expires_at <= time.time())
                    )
                )
                try:
                    conn.execute(
                        _documents.insert().values(
                            key=key,
                            value=payload,
                            version=1,
                            expires_at=expires_at,
                            updated_at=_now_iso(),
                        )
                    )
                except IntegrityError:
                    conn.rollback()
                    return False
                conn.commit()
                return True

            result = conn.execute(
                _documents.update()
                .where((_documents.c.key == key) & (_documents.c.version == expected_version))
                .values(
                    value=payload,
                    version=expected_version + 1,
                    expires_at=expires_at,
                    updated_at=_now_iso(),
                )
            )
            conn.commit()
        return result.rowcount == 1

    def delete_if_version_matches(self, key: str, expected_version: int) -> bool:
        """Delete a live document only if its version matches. True if deleted."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _documents.delete().where(
                    (_documents.c.key == key)
                    & (_documents.c.version == expected_version)
                    & (_documents.c.expires_at.is_(None) | (_documents.c.expires_at > time.time()))
                )
            )
            conn.commit()
        return result.rowcount == 1

    def seed(self, key: str, value: Any) -> bool:
        """Create key with value unless a live document already exists."""
        created = self.put_if_version_matches(key, value, 0)
        if created:
            logger.info("Seeded document %s", key)
        return created

    def purge_expired(self) -> int:
        """Delete all expired documents. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _documents.delete().where(
                    _documents.c.expires_at.is_not(None) & (_documents.c.expires_at <= time.time())
                )
            )
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()
