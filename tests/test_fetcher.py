"""
tests/test_fetcher.py -- Linear / Notion fetchers and their normalizers.

Network calls are patched at the module-level requests Session; normalizers
are exercised directly with representative and drifted payloads.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from core.fetcher import (
    NOTION_VERSION,
    UpstreamUnavailable,
    fetch_linear_tasks,
    fetch_notion_pages,
    normalize_linear_tasks,
    normalize_notion_pages,
)

LINEAR_BODY = {
    "data": {
        "issues": {
            "nodes": [
                {
                    "id": "issue-1",
                    "identifier": "ENG-12",
                    "title": "Wire SSO callback",
                    "url": "https://linear.app/x/issue/ENG-12",
                    "priority": 2,
                    "updatedAt": "2024-03-01T10:00:00Z",
                    "dueDate": None,
                    "state": {"name": "In Progress", "type": "started"},
                    "assignee": {"name": "Ada"},
                    "project": None,
                },
                {"id": "issue-2"},  # no title -- skipped
                "garbage",
            ]
        }
    }
}

NOTION_BODY = {
    "object": "list",
    "results": [
        {
            "object": "page",
            "id": "page-1",
            "url": "https://notion.so/page-1",
            "last_edited_time": "2024-03-02T09:00:00.000Z",
            "archived": False,
            "properties": {
                "Name": {"type": "title", "title": [{"plain_text": "Runbook"}, {"plain_text": " v2"}]},
                "Tags": {"type": "multi_select", "multi_select": []},
            },
        },
        {"object": "database", "id": "db-1"},  # not a page -- skipped
        {"object": "page", "id": "page-2", "properties": {}},
    ],
}


def _response(body=None, status: int = 200, json_error: bool = False) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    if json_error:
        resp.json.side_effect = ValueError("not json")
    else:
        resp.json.return_value = body
    return resp


class TestNormalizeLinear:
    def test_maps_known_fields(self):
        tasks = normalize_linear_tasks(LINEAR_BODY)
        assert tasks == [
            {
                "id": "issue-1",
                "identifier": "ENG-12",
                "title": "Wire SSO callback",
                "url": "https://linear.app/x/issue/ENG-12",
                "status": "In Progress",
                "priority": 2,
                "assignee": "Ada",
                "project": None,
                "dueDate": None,
                "updatedAt": "2024-03-01T10:00:00Z",
            }
        ]

    @pytest.mark.parametrize(
        "body",
        [None, {}, {"data": None}, {"data": {"issues": {}}}, {"data": {"issues": {"nodes": "x"}}}, ["list"]],
    )
    def test_schema_drift_yields_empty(self, body):
        assert normalize_linear_tasks(body) == []


class TestNormalizeNotion:
    def test_maps_pages_only(self):
        pages = normalize_notion_pages(NOTION_BODY)
        assert [p["id"] for p in pages] == ["page-1", "page-2"]
        assert pages[0]["title"] == "Runbook v2"
        assert pages[0]["lastEdited"] == "2024-03-02T09:00:00.000Z"
        assert pages[1]["title"] == "Untitled"

    @pytest.mark.parametrize("body", [None, {}, {"results": None}, {"results": {}}, "text"])
    def test_schema_drift_yields_empty(self, body):
        assert normalize_notion_pages(body) == []


class TestFetchLinear:
    def test_unconfigured_raises(self):
        with pytest.raises(UpstreamUnavailable):
            fetch_linear_tasks("")

    def test_posts_graphql_with_timeout(self):
        with patch("core.fetcher._session.post", return_value=_response(LINEAR_BODY)) as post:
            tasks = fetch_linear_tasks("lin_api_key", timeout=3)
        assert tasks[0]["id"] == "issue-1"
        kwargs = post.call_args.kwargs
        assert kwargs["timeout"] == 3
        assert kwargs["headers"]["Authorization"] == "lin_api_key"
        assert "issues" in kwargs["json"]["query"]

    @pytest.mark.parametrize(
        "effect",
        [requests.ConnectionError("refused"), requests.Timeout("slow")],
    )
    def test_transport_errors_wrapped(self, effect):
        with patch("core.fetcher._session.post", side_effect=effect):
            with pytest.raises(UpstreamUnavailable):
                fetch_linear_tasks("key")

    def test_http_error_wrapped(self):
        with patch("core.fetcher._session.post", return_value=_response(status=500)):
            with pytest.raises(UpstreamUnavailable):
                fetch_linear_tasks("key")


class TestFetchNotion:
    def test_sends_version_header(self):
        with patch("core.fetcher._session.post", return_value=_response(NOTION_BODY)) as post:
            pages = fetch_notion_pages("secret_abc")
        headers = post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret_abc"
        assert headers["Notion-Version"] == NOTION_VERSION
        assert len(pages) == 2

    def test_non_json_body_wrapped(self):
        with patch("core.fetcher._session.post", return_value=_response(json_error=True)):
            with pytest.raises(UpstreamUnavailable):
                fetch_notion_pages("secret_abc")
