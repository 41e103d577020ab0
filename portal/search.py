"""
portal/search.py -- Keyword search over the portal's small in-memory index.

The index is rebuilt per request from what the principal may already read
(RBAC-filtered updates, goals, teams, projects). There is no persistent index
and no separate restricted copy, so search can never reveal a record that the
list endpoints would hide.

Scoring: each query term scores 3 for a title hit and 1 for a keyword hit.
Entries scoring 0 are dropped; ties keep index order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from portal.models import Goal, Update

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_TITLE_WEIGHT = 3
DEFAULT_LIMIT = 20


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


@dataclass
class SearchEntry:
    id: str
    title: str
    kind: str
    url: str | None = None
    keywords: set[str] = field(default_factory=set)

    def score(self, terms: Iterable[str]) -> int:
        title_terms = set(tokenize(self.title))
        total = 0
        for term in terms:
            if term in title_terms:
                total += _TITLE_WEIGHT
            elif any(k.startswith(term) for k in self.keywords):
                total += 1
        return total

    def to_dict(self, score: int) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "kind": self.kind, "url": self.url, "score": score}


class SearchIndex:
    def __init__(self) -> None:
        self.entries: list[SearchEntry] = []

    def add(self, entry_id: str, title: str, kind: str, *texts: str | None, url: str | None = None) -> None:
        keywords: set[str] = set(tokenize(title))
        for text in texts:
            if text:
                keywords.update(tokenize(text))
        self.entries.append(SearchEntry(id=entry_id, title=title, kind=kind, url=url, keywords=keywords))

    def search(self, query: str, limit: int = DEFAULT_LIMIT) -> list[dict[str, Any]]:
        terms = tokenize(query)
        if not terms:
            return []
        scored = [(entry.score(terms), i, entry) for i, entry in enumerate(self.entries)]
        hits = sorted((s for s in scored if s[0] > 0), key=lambda s: (-s[0], s[1]))
        return [entry.to_dict(score) for score, _, entry in hits[:limit]]


def build_index(
    updates: Iterable[Update],
    goals: Iterable[Goal],
    org_matrix: dict[str, Any],
) -> SearchIndex:
    """Index records the caller is already allowed to see."""
    index = SearchIndex()
    for u in updates:
        index.add(u.id, u.title, "update", u.content, u.type, " ".join(u.tags), u.author)
    for g in goals:
        index.add(g.id, g.title, "goal", g.description, g.owner, g.project_name, g.status)
    for team in org_matrix.get("teams", []):
        index.add(str(team.get("id")), str(team.get("name", "")), "team", team.get("lead"), " ".join(team.get("members", [])))
    for project in org_matrix.get("projects", []):
        index.add(str(project.get("id")), str(project.get("name", "")), "project", project.get("status"))
    return index
