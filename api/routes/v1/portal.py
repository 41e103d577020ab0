"""
api/routes/v1/portal.py -- Portal updates, comments, goals and tool links.

Routes:
  GET   /api/portal/updates                  -- RBAC-filtered list
  PATCH /api/portal/updates/{update_id}      -- partial update (associate/admin)
  POST  /api/portal/updates/{update_id}/comments -- append a comment
  GET   /api/portal/goals                    -- goal list
  GET   /api/portal/tools                    -- configured external tool URLs

Visibility filtering and server-side field stamping live in PortalStore; the
handlers here translate its outcomes to HTTP:
  None            -> 404 not_found
  ForbiddenError  -> 403 forbidden
  ValueError      -> 400 validation_error
  ConflictError   -> 409 conflict
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import CommentCreate, CommentResponse, GoalResponse, ToolLink, UpdatePatch, UpdateResponse
from auth.dependencies import get_current_principal, require_writer
from auth.models import Principal
from portal.store import ConflictError, ForbiddenError, PortalStore

# Auth policy:
# - every route requires a principal (router-level dependency)
# - PATCH additionally requires associate or admin (require_writer -> 403)
router = APIRouter(dependencies=[Depends(get_current_principal)])


def _not_found(update_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "not_found", "message": f"Update {update_id} not found."},
    )


def _conflict(exc: ConflictError) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"code": "conflict", "message": "The record changed concurrently. Retry.", "detail": str(exc)},
    )


@router.get("/portal/updates", response_model=list[UpdateResponse])
def list_updates(request: Request, principal: Principal = Depends(get_current_principal)) -> list[UpdateResponse]:
    """Return every update the principal may read, in stored order."""
    store: PortalStore = request.app.state.portal
    return [UpdateResponse.from_update(u) for u in store.list_updates(principal)]


@router.patch("/portal/updates/{update_id}", response_model=UpdateResponse)
def patch_update(
    request: Request,
    update_id: str,
    body: UpdatePatch,
    principal: Principal = Depends(require_writer),
) -> UpdateResponse:
    """Merge the sent fields into an update. updatedAt is stamped server-side."""
    store: PortalStore = request.app.state.portal
    try:
        updated = store.patch_update(update_id, principal, body.changes())
    except ForbiddenError as e:
        raise HTTPException(status_code=403, detail={"code": "forbidden", "message": str(e)}) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"code": "validation_error", "message": str(e)}) from e
    except ConflictError as e:
        raise _conflict(e) from e
    if updated is None:
        raise _not_found(update_id)
    return UpdateResponse.from_update(updated)


@router.post("/portal/updates/{update_id}/comments", response_model=list[CommentResponse])
def add_comment(
    request: Request,
    update_id: str,
    body: CommentCreate,
    principal: Principal = Depends(get_current_principal),
) -> list[CommentResponse]:
    """Append a comment and return the update's full comment list.

    Author, timestamp and id come from the server. Anything the payload says
    about them is ignored.
    """
    store: PortalStore = request.app.state.portal
    try:
        comments = store.append_comment(update_id, principal, body.text)
    except ConflictError as e:
        raise _conflict(e) from e
    if comments is None:
        raise _not_found(update_id)
    return [CommentResponse.from_comment(c) for c in comments]


@router.get("/portal/goals", response_model=list[GoalResponse])
def list_goals(request: Request, principal: Principal = Depends(get_current_principal)) -> list[GoalResponse]:
    store: PortalStore = request.app.state.portal
    return [GoalResponse.from_goal(g) for g in store.list_goals(principal)]


@router.get("/portal/tools", response_model=list[ToolLink])
def list_tools(request: Request) -> list[ToolLink]:
    """External tools an SSO launch can target (TOOL_URLS)."""
    tool_urls: dict[str, str] = request.app.state.settings.tool_urls
    return [ToolLink(provider=name, url=url) for name, url in sorted(tool_urls.items())]
