"""
API request and response models for the portal gateway REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in portal/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two.

The frontend speaks camelCase, so portal models use an alias generator and
are dumped with by_alias=True.

Separation of concerns: portal/ models = domain truth; api/ models = API contract.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Principal
from portal.models import Comment, Goal, Update

UpdateType = Literal["progress", "decision", "risk", "note"]
Confidence = Literal["low", "medium", "high"]
Visibility = Literal["client", "associate", "both"]
Priority = Literal["low", "medium", "high", "critical"]

_CAMEL = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


# ---------------------------------------------------------------------------
# Auth / session
# ---------------------------------------------------------------------------


class AdminLoginRequest(BaseModel):
    """Request body for POST /api/auth/admin."""

    password: str = Field(min_length=1, max_length=1024)


class GitHubLoginRequest(BaseModel):
    """Request body for POST /api/auth/github -- the code from the authorize redirect."""

    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(min_length=1, max_length=512)


class SessionResponse(BaseModel):
    """Current principal. Returned by login, refresh and GET /api/session.

    token is only present on responses that mint a credential, for callers
    that prefer the Bearer header over the cookie.
    """

    model_config = ConfigDict(frozen=True)

    user: str
    role: str
    source: str
    token: Optional[str] = None

    @classmethod
    def from_principal(cls, principal: Principal, token: Optional[str] = None) -> "SessionResponse":
        return cls(user=principal.subject, role=principal.role.value, source=principal.source.value, token=token)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Portal
# ---------------------------------------------------------------------------


class CommentResponse(BaseModel):
    model_config = _CAMEL

    id: str
    author: str
    text: str
    timestamp: str

    @classmethod
    def from_comment(cls, comment: Comment) -> "CommentResponse":
        return cls(id=comment.id, author=comment.author, text=comment.text, timestamp=comment.timestamp)


class UpdateResponse(BaseModel):
    """One portal update in the wire shape the dashboard renders."""

    model_config = _CAMEL

    id: str
    title: str
    content: str
    date: str
    updated_at: str
    type: str
    confidence: str
    visibility: str
    priority: str
    author: str
    tags: list[str]
    comments: list[CommentResponse]

    @classmethod
    def from_update(cls, update: Update) -> "UpdateResponse":
        """Factory Method -- the mapping lives beside the output model."""
        return cls(
            id=update.id,
            title=update.title,
            content=update.content,
            date=update.date,
            updated_at=update.updated_at,
            type=update.type,
            confidence=update.confidence,
            visibility=update.visibility,
            priority=update.priority,
            author=update.author,
            tags=list(update.tags),
            comments=[CommentResponse.from_comment(c) for c in update.comments],
        )


class UpdatePatch(BaseModel):
    """Request body for PATCH /api/portal/updates/{id}.

    Every field is optional; only the fields sent are merged. id, updatedAt
    and comments are not declared, and extra="forbid" turns any attempt to
    send them into a 400. A field may be left out but never sent as null:
    null would clear a required value in the stored record.
    """

    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    content: Optional[str] = Field(default=None, max_length=20000)
    date: Optional[str] = Field(default=None, max_length=32)
    type: Optional[UpdateType] = None
    confidence: Optional[Confidence] = None
    visibility: Optional[Visibility] = None
    priority: Optional[Priority] = None
    author: Optional[str] = Field(default=None, max_length=255)
    tags: Optional[list[str]] = Field(default=None, max_length=20)

    @field_validator("*")
    @classmethod
    def _reject_null(cls, value: Any) -> Any:
        # Defaults are not validated, so this only fires on an explicit null.
        if value is None:
            raise ValueError("may be omitted but not null")
        return value

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually sent, keyed by their stored (camelCase) names."""
        return self.model_dump(exclude_unset=True, by_alias=True)


class CommentCreate(BaseModel):
    """Request body for POST /api/portal/updates/{id}/comments.

    Only text is read. An author or timestamp in the payload is ignored:
    both are set server-side from the verified principal.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    text: str = Field(min_length=1, max_length=5000)


class GoalResponse(BaseModel):
    model_config = _CAMEL

    id: str
    title: str
    owner: str
    status: str
    progress: float
    due_date: Optional[str] = None
    description: Optional[str] = None
    last_sync: Optional[str] = None
    project_name: Optional[str] = None

    @classmethod
    def from_goal(cls, goal: Goal) -> "GoalResponse":
        return cls(
            id=goal.id,
            title=goal.title,
            owner=goal.owner,
            status=goal.status,
            progress=goal.progress,
            due_date=goal.due_date,
            description=goal.description,
            last_sync=goal.last_sync,
            project_name=goal.project_name,
        )


class ToolLink(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str
    url: str


class SearchHit(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    kind: str
    url: Optional[str] = None
    score: int


class SearchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    results: list[SearchHit]


# ---------------------------------------------------------------------------
# SSO
# ---------------------------------------------------------------------------


class SSOStartResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    state: str


class SSOCallbackResponse(BaseModel):
    """status is echoed from the query string for display only."""

    model_config = ConfigDict(frozen=True)

    success: bool
    provider: str
    status: str


# ---------------------------------------------------------------------------
# Integrations / status
# ---------------------------------------------------------------------------


class IntegrationStatus(BaseModel):
    model_config = _CAMEL

    configured: bool
    cached: bool
    fresh: bool
    cached_at: Optional[float] = None


class StatusResponse(BaseModel):
    """Response for GET /api/status."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    integrations: dict[str, IntegrationStatus]
    federated: bool
    github: bool


class WebhookAccepted(BaseModel):
    model_config = ConfigDict(frozen=True)

    accepted: bool = True
    id: str
