"""
api/routes/v1/integrations.py -- Cached third-party feeds and the status snapshot.

Routes:
  GET /api/linear/tasks   -- Linear issues via IntegrationCache (requires auth)
  GET /api/notion/pages   -- Notion pages via IntegrationCache (requires auth)
  GET /api/status         -- per-integration configuration and cache freshness (public)

Upstream failures never reach the caller as a 5xx. IntegrationCache serves a
stale entry when it has one; with nothing cached the route returns [], and
that [] is cached for the TTL window like any other result.
"""

from typing import Any, Callable

from fastapi import APIRouter, Depends, Request

from api.models import IntegrationStatus, StatusResponse
from auth.dependencies import get_current_principal
from cache.store import IntegrationCache
from core.config import Settings
from core.fetcher import fetch_linear_tasks, fetch_notion_pages


API_VERSION = "1.0.0"

LINEAR_KEY = "linear"
NOTION_KEY = "notion"

# Auth policy:
# - GET /api/linear/tasks, /api/notion/pages: requires auth
# - GET /api/status: public -- reports configuration flags only, no data
router = APIRouter()


def _configured(settings: Settings) -> dict[str, bool]:
    return {LINEAR_KEY: bool(settings.linear_api_key), NOTION_KEY: bool(settings.notion_token)}


def _cached_feed(request: Request, key: str, fetcher: Callable[[], list[dict[str, Any]]]) -> list[dict[str, Any]]:
    if not _configured(request.app.state.settings)[key]:
        return []
    cache: IntegrationCache = request.app.state.cache
    # An outage with nothing cached stores [] for the TTL window, so a
    # dashboard load never queues behind repeated upstream timeouts.
    return cache.get_cached(key, fetcher, fallback=[])


@router.get("/linear/tasks", dependencies=[Depends(get_current_principal)])
def linear_tasks(request: Request) -> list[dict[str, Any]]:
    cfg: Settings = request.app.state.settings
    return _cached_feed(
        request,
        LINEAR_KEY,
        lambda: fetch_linear_tasks(cfg.linear_api_key, cfg.http_timeout_seconds),
    )


@router.get("/notion/pages", dependencies=[Depends(get_current_principal)])
def notion_pages(request: Request) -> list[dict[str, Any]]:
    cfg: Settings = request.app.state.settings
    return _cached_feed(
        request,
        NOTION_KEY,
        lambda: fetch_notion_pages(cfg.notion_token, cfg.http_timeout_seconds),
    )


@router.get("/status", response_model=StatusResponse)
def status(request: Request) -> StatusResponse:
    """Integration health snapshot. Never calls an upstream."""
    cfg: Settings = request.app.state.settings
    cache: IntegrationCache = request.app.state.cache
    integrations = {
        key: IntegrationStatus(configured=configured, **cache.status(key))
        for key, configured in _configured(cfg).items()
    }
    return StatusResponse(
        version=API_VERSION,
        integrations=integrations,
        federated=cfg.federated_enabled,
        github=cfg.github_enabled,
    )
