"""
fetcher.py -- External integration fetching (Linear, Notion).

Each integration has two halves:
  fetch_*      -- the network call. Raises UpstreamUnavailable on transport
                  errors, timeouts, non-2xx responses or non-JSON bodies.
  normalize_*  -- pure function from the upstream JSON to our own DTO list.
                  Schema drift fails closed: anything unrecognisable yields
                  an empty list (or skips the offending item), never raises.

Callers put the fetch behind IntegrationCache and degrade to [] when it
raises, so an upstream outage leaves a dashboard section empty instead of
breaking the response.
"""

import logging
from typing import Any, Optional

import requests

logger = logging.getLogger("gateway.fetcher")

LINEAR_API = "https://api.linear.app/graphql"
NOTION_SEARCH_API = "https://api.notion.com/v1/search"
NOTION_VERSION = "2022-06-28"

_LINEAR_QUERY = """
query PortalIssues {
  issues(first: 50, orderBy: updatedAt) {
    nodes {
      id
      identifier
      title
      url
      priority
      updatedAt
      dueDate
      state { name type }
      assignee { name }
      project { name }
    }
  }
}
"""

# Module-level session shared across all fetcher calls for connection pooling.
# max_redirects=3 replaces the requests default of 30 -- these are known APIs.
_session = requests.Session()
_session.max_redirects = 3


class UpstreamUnavailable(Exception):
    """A third-party integration could not be reached or answered badly."""


def _post_json(url: str, payload: dict, headers: dict[str, str], timeout: float) -> Any:
    try:
        resp = _session.post(url, json=payload, headers=headers, timeout=timeout)
        resp.raise_for_status()
        return resp.json()
    except (requests.RequestException, ValueError) as e:
        raise UpstreamUnavailable(f"{url}: {e}") from e


# ---------------------------------------------------------------------------
# Linear
# ---------------------------------------------------------------------------


def fetch_linear_tasks(api_key: str, timeout: float = 10.0) -> list[dict[str, Any]]:
    """Fetch recent Linear issues and normalize them into task DTOs."""
    if not api_key:
        raise UpstreamUnavailable("Linear is not configured")
    body = _post_json(
        LINEAR_API,
        {"query": _LINEAR_QUERY},
        {"Authorization": api_key, "Content-Type": "application/json"},
        timeout,
    )
    return normalize_linear_tasks(body)


def normalize_linear_tasks(body: Any) -> list[dict[str, Any]]:
    """Map a Linear GraphQL response onto task DTOs. [] on schema drift."""
    try:
        nodes = body["data"]["issues"]["nodes"]
    except (KeyError, TypeError):
        logger.warning("Linear response did not match the expected shape")
        return []
    if not isinstance(nodes, list):
        return []

    tasks: list[dict[str, Any]] = []
    for node in nodes:
        if not isinstance(node, dict) or not node.get("id") or not node.get("title"):
            continue
        state = node.get("state") or {}
        tasks.append(
            {
                "id": node["id"],
                "identifier": node.get("identifier"),
                "title": node["title"],
                "url": node.get("url"),
                "status": state.get("name") if isinstance(state, dict) else None,
                "priority": node.get("priority"),
                "assignee": _nested_name(node.get("assignee")),
                "project": _nested_name(node.get("project")),
                "dueDate": node.get("dueDate"),
                "updatedAt": node.get("updatedAt"),
            }
        )
    return tasks


def _nested_name(value: Any) -> Optional[str]:
    return value.get("name") if isinstance(value, dict) else None


# ---------------------------------------------------------------------------
# Notion
# ---------------------------------------------------------------------------


def fetch_notion_pages(token: str, timeout: float = 10.0) -> list[dict[str, Any]]:
    """Search the Notion workspace for recently edited pages."""
    if not token:
        raise UpstreamUnavailable("Notion is not configured")
    body = _post_json(
        NOTION_SEARCH_API,
        {
            "filter": {"property": "object", "value": "page"},
            "sort": {"direction": "descending", "timestamp": "last_edited_time"},
            "page_size": 50,
        },
        {
            "Authorization": f"Bearer {token}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        },
        timeout,
    )
    return normalize_notion_pages(body)


def normalize_notion_pages(body: Any) -> list[dict[str, Any]]:
    """Map a Notion search response onto page DTOs. [] on schema drift."""
    results = body.get("results") if isinstance(body, dict) else None
    if not isinstance(results, list):
        logger.warning("Notion response did not match the expected shape")
        return []

    pages: list[dict[str, Any]] = []
    for item in results:
        if not isinstance(item, dict) or item.get("object") != "page" or not item.get("id"):
            continue
        pages.append(
            {
                "id": item["id"],
                "title": _notion_title(item.get("properties")),
                "url": item.get("url"),
                "lastEdited": item.get("last_edited_time"),
                "archived": bool(item.get("archived", False)),
            }
        )
    return pages


def _notion_title(properties: Any) -> str:
    """Return the plain text of the page's title property, or "Untitled"."""
    if not isinstance(properties, dict):
        return "Untitled"
    for prop in properties.values():
        if isinstance(prop, dict) and prop.get("type") == "title":
            parts = prop.get("title") or []
            text = "".join(p.get("plain_text", "") for p in parts if isinstance(p, dict))
            return text or "Untitled"
    return "Untitled"
