"""
portal/seed.py -- Demo records loaded into an empty document store.

The gateway has no create endpoint for updates or goals: records are
pre-seeded. These defaults are written on first startup when SEED_DEMO_DATA
is true and the documents do not exist yet; existing data is never touched.
"""

from __future__ import annotations

UPDATES_KEY = "UPDATES_LIST"
GOALS_KEY = "GOALS_LIST"
ORG_MATRIX_KEY = "ORG_MATRIX"

DEFAULT_UPDATES: list[dict] = [
    {
        "id": "1",
        "title": "System Migration: Phase 2",
        "content": "Migration of the legacy user database to the new KV store is 80% complete. Expected downtime: None.",
        "date": "2024-03-04",
        "updatedAt": "2024-03-04T09:00:00+00:00",
        "type": "progress",
        "confidence": "high",
        "visibility": "both",
        "priority": "high",
        "author": "Sunyata",
        "tags": ["Infra", "KV"],
        "comments": [],
    },
    {
        "id": "2",
        "title": "Architecture Decision: No SQL",
        "content": "We are dropping SQL support for the pilot. KV constraints force better data discipline.",
        "date": "2023-10-24",
        "updatedAt": "2023-10-24T10:00:00+00:00",
        "type": "decision",
        "confidence": "medium",
        "visibility": "associate",
        "priority": "medium",
        "author": "Admin",
        "tags": ["Arch"],
        "comments": [
            {"id": "c1", "author": "Client", "text": "Does this impact export?", "timestamp": "2023-10-25T09:00:00+00:00"}
        ],
    },
    {
        "id": "3",
        "title": "Risk: Auth Rate Limiting",
        "content": "Strict mode at the edge might block valid client IPs during the demo.",
        "date": "2023-10-26",
        "updatedAt": "2023-10-26T14:30:00+00:00",
        "type": "risk",
        "confidence": "high",
        "visibility": "associate",
        "priority": "critical",
        "author": "SecOps",
        "tags": ["Security"],
        "comments": [],
    },
    {
        "id": "4",
        "title": "Milestone Reached: Alpha Release",
        "content": "The portal is live for internal testing.",
        "date": "2023-10-27",
        "updatedAt": "2023-10-27T16:00:00+00:00",
        "type": "progress",
        "confidence": "high",
        "visibility": "client",
        "priority": "medium",
        "author": "Sunyata",
        "tags": ["Milestone"],
        "comments": [],
    },
]

DEFAULT_GOALS: list[dict] = [
    {
        "id": "g1",
        "title": "Portal general availability",
        "owner": "Sunyata",
        "status": "on_track",
        "progress": 0.7,
        "dueDate": "2024-06-30",
        "description": "Ship the client portal with SSO launches and live integration feeds.",
        "projectName": "Client Portal",
    },
    {
        "id": "g2",
        "title": "Knowledge graph ingestion",
        "owner": "Research",
        "status": "at_risk",
        "progress": 0.35,
        "dueDate": "2024-05-15",
        "description": "Ingest decision logs into the knowledge graph nightly.",
        "projectName": "Knowledge Graph",
    },
    {
        "id": "g3",
        "title": "SOC 2 readiness review",
        "owner": "SecOps",
        "status": "blocked",
        "progress": 0.1,
        "projectName": "Compliance",
    },
]

DEFAULT_ORG_MATRIX: dict = {
    "teams": [
        {"id": "strategy", "name": "Strategy", "lead": "Sunyata", "members": ["Sunyata", "Admin"]},
        {"id": "engineering", "name": "Engineering", "lead": "Admin", "members": ["Admin", "SecOps"]},
        {"id": "research", "name": "Research", "lead": "Research", "members": ["Research"]},
    ],
    "projects": [
        {"id": "portal", "name": "Client Portal", "teams": ["engineering", "strategy"], "status": "active"},
        {"id": "graph", "name": "Knowledge Graph", "teams": ["research"], "status": "active"},
        {"id": "compliance", "name": "Compliance", "teams": ["engineering"], "status": "planned"},
    ],
}


def seed_defaults(documents) -> None:
    """Write the demo documents that do not exist yet."""
    documents.seed(UPDATES_KEY, DEFAULT_UPDATES)
    documents.seed(GOALS_KEY, DEFAULT_GOALS)
    documents.seed(ORG_MATRIX_KEY, DEFAULT_ORG_MATRIX)
