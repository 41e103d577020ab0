"""
api/routes/v1/directory.py -- Org directory and keyword search.

Routes:
  GET /api/org/matrix       -- team / project directory
  GET /api/search?q=        -- keyword search over what the principal can read

Search builds its index from PortalStore's RBAC-filtered reads, so a client
can never find an associate-only update by searching for it.
"""

from fastapi import APIRouter, Depends, Query, Request

from api.models import SearchHit, SearchResponse
from auth.dependencies import get_current_principal
from auth.models import Principal
from portal.search import build_index
from portal.store import PortalStore

# Auth policy:
# - GET /api/org/matrix: requires auth
# - GET /api/search:     requires auth; results are filtered per principal
router = APIRouter(dependencies=[Depends(get_current_principal)])


@router.get("/org/matrix")
def org_matrix(request: Request) -> dict:
    store: PortalStore = request.app.state.portal
    return store.get_org_matrix()


@router.get("/search", response_model=SearchResponse)
def search(
    request: Request,
    q: str = Query(default="", max_length=200),
    limit: int = Query(default=20, ge=1, le=50),
    principal: Principal = Depends(get_current_principal),
) -> SearchResponse:
    """Rank updates, goals, teams and projects against the query terms."""
    store: PortalStore = request.app.state.portal
    index = build_index(store.list_updates(principal), store.list_goals(principal), store.get_org_matrix())
    hits = index.search(q, limit=limit)
    return SearchResponse(query=q, results=[SearchHit(**h) for h in hits])
