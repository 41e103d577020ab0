"""
portal/webhooks.py -- Turn inbound integration events into portal updates.

summarize_event() knows a few payload shapes (GitHub push / pull_request,
Linear issue events). Anything it cannot read degrades to a truncated dump
of the raw payload, so ingestion never fails because summarization did.

synthesize_update() builds the stored record. Security-relevant fields are
fixed here: author is always "webhook:<source>" and visibility is always
"associate", whatever the payload claims.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("gateway.portal.webhooks")

_RAW_SUMMARY_LIMIT = 500
_TITLE_LIMIT = 120
_SOURCE_RE = re.compile(r"[^a-z0-9_-]+")


def normalize_source(source: str | None) -> str:
    cleaned = _SOURCE_RE.sub("", (source or "").lower())[:32]
    return cleaned or "unknown"


def _raw_summary(payload: Any) -> str:
    try:
        text = json.dumps(payload, sort_keys=True, default=str)
    except (TypeError, ValueError):
        text = repr(payload)
    if len(text) > _RAW_SUMMARY_LIMIT:
        text = text[: _RAW_SUMMARY_LIMIT - 3] + "..."
    return text


def _summarize_github(event: str, payload: dict) -> tuple[str, str]:
    repo = payload["repository"]["full_name"]
    if event == "push":
        commits = payload.get("commits") or []
        branch = str(payload["ref"]).rsplit("/", 1)[-1]
        lines = [f"- {c['message'].splitlines()[0]}" for c in commits[:5]]
        title = f"{len(commits)} commit(s) pushed to {repo}:{branch}"
        return title, "\n".join(lines) or "No commit messages."
    if event == "pull_request":
        pr = payload["pull_request"]
        title = f"PR #{pr['number']} {payload['action']}: {pr['title']}"
        return title, f"{repo} -- {pr.get('html_url', '')}".strip(" -")
    raise ValueError(f"unsupported github event {event!r}")


def _summarize_linear(payload: dict) -> tuple[str, str]:
    data = payload["data"]
    kind = payload.get("type", "Issue")
    title = f"{kind} {payload['action']}: {data['title']}"
    state = (data.get("state") or {}).get("name")
    body = data.get("description") or ""
    if state:
        body = f"State: {state}\n{body}".strip()
    return title, body or "No description."


def summarize_event(source: str, event: str | None, payload: Any) -> tuple[str, str]:
    """Return (title, content) for an inbound event. Never raises."""
    try:
        if source == "github":
            return _summarize_github(event or "", payload)
        if source == "linear":
            return _summarize_linear(payload)
    except (KeyError, TypeError, ValueError, AttributeError, IndexError) as e:
        logger.info("Falling back to raw summary for %s event %s: %s", source, event, e)
    label = f"{source} {event}" if event else source
    return f"Webhook event from {label}", _raw_summary(payload)


def synthesize_update(source: str | None, event: str | None, payload: Any) -> dict[str, Any]:
    """Build a new update record for an inbound event."""
    source = normalize_source(source)
    title, content = summarize_event(source, event, payload)
    now = datetime.now(timezone.utc)
    return {
        "id": f"wh-{uuid.uuid4().hex[:12]}",
        "title": title[:_TITLE_LIMIT],
        "content": content,
        "date": now.date().isoformat(),
        "type": "note",
        "confidence": "medium",
        "visibility": "associate",
        "priority": "low",
        "author": f"webhook:{source}",
        "tags": [source],
        "comments": [],
    }
