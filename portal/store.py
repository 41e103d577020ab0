"""
portal/store.py -- Access-controlled portal store (updates, comments, goals, org).

Pattern: Repository. PortalStore is the only code that reads or writes portal
documents; route handlers never touch the DocumentStore directly.

RBAC rules enforced here (route dependencies enforce them too -- the store
must stay safe when called from anywhere else):
  list_updates    -- admin/associate see everything; client sees only
                     visibility "client" or "both". Filtering happens after
                     the whole collection is loaded: one source of truth,
                     no separate restricted copy.
  patch_update    -- client -> ForbiddenError, record untouched.
  append_comment  -- author/timestamp/id always built server-side from the
                     principal. A client cannot comment on an update hidden
                     from them (reported as not found).

Writes are read-modify-write on the whole UPDATES_LIST document guarded by
the document version. A version conflict re-reads and re-applies the change,
up to _MAX_WRITE_ATTEMPTS, then raises ConflictError.

Goals come from the relational `goals` table (GOALS_TABLE, written by the
project sync outside this service) when it has rows, otherwise from the
GOALS_LIST document, otherwise from the built-in seed.

Layer rule: no imports from api/ or cache/. auth.models is imported for type
hints only.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional, TypeVar

from sqlalchemy import Column, Float, MetaData, String, Table, Text
from sqlalchemy.exc import SQLAlchemyError

from portal.documents import DocumentStore
from portal.models import Comment, Goal, Update, validate_update_record
from portal.seed import DEFAULT_GOALS, DEFAULT_ORG_MATRIX, GOALS_KEY, ORG_MATRIX_KEY, UPDATES_KEY

if TYPE_CHECKING:
    from auth.models import Principal

logger = logging.getLogger("gateway.portal")

_MAX_WRITE_ATTEMPTS = 5

# Fields a PATCH may never set. updatedAt is always stamped server-side.
PROTECTED_FIELDS = frozenset({"id", "updatedAt", "comments"})

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Relational goals table
# ---------------------------------------------------------------------------

_metadata = MetaData()

GOALS_TABLE = Table(
    "goals",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("title", String(255), nullable=False),
    Column("owner", String(255), nullable=False),
    Column("status", String(20), nullable=False, server_default="on_track"),
    Column("progress", Float, nullable=False, server_default="0"),
    Column("due_date", String(10)),
    Column("description", Text),
    Column("last_sync", String(32)),
    Column("project_name", String(255)),
)


def _row_to_goal(row) -> Goal:
    """Data Mapper: goals row -> Goal, through the same normalization as documents."""
    return Goal.from_dict(
        {
            "id": row.id,
            "title": row.title,
            "owner": row.owner,
            "status": row.status,
            "progress": row.progress,
            "dueDate": row.due_date,
            "description": row.description,
            "lastSync": row.last_sync,
            "projectName": row.project_name,
        }
    )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ForbiddenError(Exception):
    """The principal's role does not allow this operation."""


class ConflictError(Exception):
    """Concurrent writers kept winning; the change was not applied."""


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PortalStore:
    """Repository for portal updates, goals and the org directory.

    Usage:
        store = PortalStore(DocumentStore())
        updates = store.list_updates(principal)
        store.patch_update("u1", principal, {"title": "New"})
    """

    def __init__(self, documents: DocumentStore, goals_visible_to_clients: bool = True) -> None:
        self.documents = documents
        self.goals_visible_to_clients = goals_visible_to_clients
        _metadata.create_all(documents.engine)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def _load_updates(self) -> list[dict]:
        doc = self.documents.get(UPDATES_KEY)
        return list(doc.value) if doc is not None else []

    def _mutate_updates(self, mutate: Callable[[list[dict]], Optional[T]]) -> Optional[T]:
        """Apply mutate to the UPDATES_LIST document with compare-and-swap.

        mutate edits the list in place and returns a result, or None to
        signal "nothing to write" (e.g. record not found).
        """
        for attempt in range(1, _MAX_WRITE_ATTEMPTS + 1):
            doc = self.documents.get(UPDATES_KEY)
            items = list(doc.value) if doc is not None else []
            version = doc.version if doc is not None else 0
            result = mutate(items)
            if result is None:
                return None
            if self.documents.put_if_version_matches(UPDATES_KEY, items, version):
                return result
            logger.info("Version conflict writing %s (attempt %d)", UPDATES_KEY, attempt)
        raise ConflictError(f"{UPDATES_KEY} changed concurrently {_MAX_WRITE_ATTEMPTS} times")

    def list_updates(self, principal: Principal) -> list[Update]:
        """Return the updates this principal may read, in stored order."""
        updates = [Update.from_dict(item) for item in self._load_updates()]
        if principal.is_client:
            return [u for u in updates if u.visible_to_client()]
        return updates

    def get_update(self, update_id: str) -> Update | None:
        for item in self._load_updates():
            if str(item.get("id")) == update_id:
                return Update.from_dict(item)
        return None

    def patch_update(self, update_id: str, principal: Principal, fields: dict[str, Any]) -> Update | None:
        """Merge fields into an update and stamp updatedAt.

        Returns the updated record, or None if update_id does not exist.

        Raises:
            ForbiddenError: principal is a client.
            ValueError: fields include id, updatedAt or comments, or the merged
                record fails validate_update_record (nothing is written).
            ConflictError: the write lost every compare-and-swap attempt.
        """
        if not principal.can_write:
            raise ForbiddenError("Clients cannot modify updates.")
        protected = PROTECTED_FIELDS.intersection(fields)
        if protected:
            raise ValueError(f"Fields cannot be set directly: {', '.join(sorted(protected))}")

        def _apply(items: list[dict]) -> Update | None:
            for index, item in enumerate(items):
                if str(item.get("id")) == update_id:
                    merged = {**item, **fields, "updatedAt": _now_iso()}
                    validate_update_record(merged)
                    items[index] = merged
                    return Update.from_dict(merged)
            return None

        updated = self._mutate_updates(_apply)
        if updated is not None:
            logger.info("Update %s patched by %s (%s)", update_id, principal.subject, ", ".join(sorted(fields)))
        return updated

    def append_comment(self, update_id: str, principal: Principal, text: str) -> list[Comment] | None:
        """Append a comment authored by principal. Returns the full comment list.

        Returns None if the update does not exist or is hidden from a client
        principal -- both read as "not found" to the caller.
        """
        comment = Comment(
            id=f"c-{uuid.uuid4().hex[:12]}",
            author=principal.subject,
            text=text,
            timestamp=_now_iso(),
        )

        def _apply(items: list[dict]) -> list[Comment] | None:
            for item in items:
                if str(item.get("id")) != update_id:
                    continue
                if principal.is_client and not Update.from_dict(item).visible_to_client():
                    return None
                comments = list(item.get("comments") or [])
                comments.append(comment.to_dict())
                item["comments"] = comments
                return [Comment.from_dict(c) for c in comments]
            return None

        return self._mutate_updates(_apply)

    def append_update(self, record: dict[str, Any]) -> Update:
        """Append a new update record (webhook ingestion). id must be unique."""
        record = {**record, "updatedAt": _now_iso()}

        def _apply(items: list[dict]) -> Update:
            items.append(record)
            return Update.from_dict(record)

        created = self._mutate_updates(_apply)
        logger.info("Update %s appended", record["id"])
        return created

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def _relational_goals(self) -> list[Goal]:
        try:
            with self.documents.engine.connect() as conn:
                rows = conn.execute(GOALS_TABLE.select().order_by(GOALS_TABLE.c.id)).fetchall()
        except SQLAlchemyError as e:
            logger.warning("Goals table unavailable, using document fallback: %s", e)
            return []
        return [_row_to_goal(r) for r in rows]

    def list_goals(self, principal: Principal) -> list[Goal]:
        """Return goals for any authenticated principal.

        Goals carry no visibility field. Whether clients see them at all is
        the goals_visible_to_clients policy switch (GOALS_VISIBLE_TO_CLIENTS).
        """
        if principal.is_client and not self.goals_visible_to_clients:
            return []
        goals = self._relational_goals()
        if goals:
            return goals
        doc = self.documents.get(GOALS_KEY)
        items = doc.value if doc is not None else DEFAULT_GOALS
        return [Goal.from_dict(item) for item in items]

    # ------------------------------------------------------------------
    # Org directory
    # ------------------------------------------------------------------

    def get_org_matrix(self) -> dict[str, Any]:
        doc = self.documents.get(ORG_MATRIX_KEY)
        return doc.value if doc is not None else DEFAULT_ORG_MATRIX
