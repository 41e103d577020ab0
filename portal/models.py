"""
portal/models.py -- Domain dataclasses for portal records.

Pattern: Data class + mapper functions. The document store holds plain JSON
in the wire shape the frontend consumes (camelCase keys); from_dict and
validate_update_record are the only places that know about that shape.

Layer rule: no imports from api/, auth/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

UPDATE_TYPES = ("progress", "decision", "risk", "note")
CONFIDENCE_LEVELS = ("low", "medium", "high")
VISIBILITIES = ("client", "associate", "both")
PRIORITIES = ("low", "medium", "high", "critical")
GOAL_STATUSES = ("on_track", "at_risk", "blocked", "done")

# Visibility values a client principal may read.
CLIENT_VISIBLE = frozenset({"client", "both"})

_ENUM_FIELDS = {
    "type": UPDATE_TYPES,
    "confidence": CONFIDENCE_LEVELS,
    "visibility": VISIBILITIES,
    "priority": PRIORITIES,
}
_TEXT_FIELDS = ("title", "content", "date", "author")


def validate_update_record(data: dict[str, Any]) -> None:
    """Raise ValueError unless data is a storable update record.

    Checked on every write that merges caller-supplied fields, so a bad value
    is refused before it reaches the document store.
    """
    for name, allowed in _ENUM_FIELDS.items():
        if data.get(name) not in allowed:
            raise ValueError(f"{name} must be one of {', '.join(allowed)}")
    for name in _TEXT_FIELDS:
        if name in data and not isinstance(data[name], str):
            raise ValueError(f"{name} must be a string")
    if not data.get("title"):
        raise ValueError("title must not be empty")
    tags = data.get("tags", [])
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ValueError("tags must be a list of strings")


def _text(value: Any, default: str = "") -> str:
    return default if value is None else str(value)


@dataclass
class Comment:
    id: str
    author: str
    text: str
    timestamp: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Comment:
        return cls(
            id=_text(data.get("id")),
            author=_text(data.get("author")),
            text=_text(data.get("text")),
            timestamp=_text(data.get("timestamp")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "author": self.author, "text": self.text, "timestamp": self.timestamp}


@dataclass
class Update:
    """A portal update: progress note, decision, risk or general note.

    visibility controls who may read it: "client" and "both" are visible to
    clients; "associate" is internal. An unknown visibility reads as
    "associate", so a damaged record is never shown to a client.
    """

    id: str
    title: str
    content: str = ""
    date: str = ""
    updated_at: str = ""
    type: str = "note"
    confidence: str = "medium"
    visibility: str = "associate"
    priority: str = "medium"
    author: str = ""
    tags: list[str] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Update:
        return cls(
            id=str(data["id"]),
            title=_text(data.get("title")),
            content=_text(data.get("content")),
            date=_text(data.get("date")),
            updated_at=_text(data.get("updatedAt")),
            type=_choice(data.get("type"), UPDATE_TYPES, "note"),
            confidence=_choice(data.get("confidence"), CONFIDENCE_LEVELS, "medium"),
            visibility=_choice(data.get("visibility"), VISIBILITIES, "associate"),
            priority=_choice(data.get("priority"), PRIORITIES, "medium"),
            author=_text(data.get("author")),
            tags=[str(t) for t in data.get("tags") or []],
            comments=[Comment.from_dict(c) for c in data.get("comments") or []],
        )

    def visible_to_client(self) -> bool:
        return self.visibility in CLIENT_VISIBLE


@dataclass
class Goal:
    id: str
    title: str
    owner: str
    status: str = "on_track"
    progress: float = 0.0  # 0.0 - 1.0
    due_date: Optional[str] = None
    description: Optional[str] = None
    last_sync: Optional[str] = None
    project_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Goal:
        return cls(
            id=str(data["id"]),
            title=_text(data.get("title")),
            owner=_text(data.get("owner")),
            status=_choice(data.get("status"), GOAL_STATUSES, "on_track"),
            progress=_clamp_progress(data.get("progress", 0.0)),
            due_date=data.get("dueDate"),
            description=data.get("description"),
            last_sync=data.get("lastSync"),
            project_name=data.get("projectName"),
        )


def _choice(value: Any, allowed: tuple[str, ...], default: str) -> str:
    return value if value in allowed else default


def _clamp_progress(value: Any) -> float:
    try:
        progress = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(max(progress, 0.0), 1.0)
