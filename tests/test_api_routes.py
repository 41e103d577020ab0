"""
tests/test_api_routes.py -- Integration tests for the gateway HTTP surface.

Uses the module-scoped api_client fixture from conftest.py: real routes,
isolated in-memory stores, UPDATES_LIST seeded with u1 (associate), u2
(client) and u3 (both). Tests that mutate records each use their own record
so test order does not matter.
"""

from __future__ import annotations

import hashlib
import hmac
import json

import pytest

from api.main import app

ORIGIN = "https://portal.example.com"


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _ids(resp) -> list[str]:
    return [u["id"] for u in resp.json()]


# ---------------------------------------------------------------------------
# Authentication and RBAC
# ---------------------------------------------------------------------------


class TestAuthBoundary:
    """401 means "no valid credential"; 403 means "valid, but not allowed"."""

    def test_no_credential_is_401(self, api_client):
        resp = api_client.get("/api/portal/updates")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_garbage_token_is_401(self, api_client):
        resp = api_client.get("/api/portal/updates", headers=auth_header("not-a-token"))
        assert resp.status_code == 401

    def test_client_patch_is_403(self, api_client, tokens):
        resp = api_client.patch("/api/portal/updates/u2", json={"title": "x"}, headers=auth_header(tokens["client"]))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_anonymous_patch_is_401_not_403(self, api_client):
        resp = api_client.patch("/api/portal/updates/u2", json={"title": "x"})
        assert resp.status_code == 401

    def test_bearer_header_wins_over_cookie(self, api_client, tokens):
        headers = {**auth_header(tokens["client"]), "Cookie": f"session={tokens['admin']}"}
        resp = api_client.get("/api/session", headers=headers)
        assert resp.json()["role"] == "client"

    def test_cookie_alone_authenticates(self, api_client, tokens):
        resp = api_client.get("/api/session", headers={"Cookie": f"session={tokens['associate']}"})
        assert resp.status_code == 200
        assert resp.json() == {"user": "associate-user", "role": "associate", "source": "local", "token": None}


class TestAdminLogin:
    def test_correct_password_sets_cookie(self, api_client):
        resp = api_client.post("/api/auth/admin", json={"password": "test-admin-password"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["role"] == "admin"
        assert body["user"] == "Sunyata"
        assert body["token"]
        cookie = resp.headers["set-cookie"].lower()
        assert cookie.startswith("session=")
        for attr in ("httponly", "secure", "samesite=lax", "max-age=86400"):
            assert attr in cookie
        assert resp.headers["cache-control"] == "no-store"

    def test_issued_token_authenticates(self, api_client):
        token = api_client.post("/api/auth/admin", json={"password": "test-admin-password"}).json()["token"]
        assert api_client.get("/api/session", headers=auth_header(token)).json()["role"] == "admin"

    def test_wrong_password_is_401(self, api_client):
        resp = api_client.post("/api/auth/admin", json={"password": "guess"})
        assert resp.status_code == 401
        assert "set-cookie" not in resp.headers

    def test_missing_body_is_400(self, api_client):
        resp = api_client.post("/api/auth/admin", json={})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_github_unconfigured_is_400(self, api_client):
        resp = api_client.post("/api/auth/github", json={"code": "abc"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unknown_provider"


class TestSessionLifecycle:
    def test_refresh_keeps_role(self, api_client, tokens):
        resp = api_client.post("/api/session/refresh", headers=auth_header(tokens["client"]))
        assert resp.status_code == 200
        body = resp.json()
        assert body["role"] == "client"
        assert body["user"] == "client-user"
        assert "session=" in resp.headers["set-cookie"]

    def test_refresh_without_credential_is_401(self, api_client):
        assert api_client.post("/api/session/refresh").status_code == 401

    def test_logout_expires_cookie_without_auth(self, api_client):
        resp = api_client.post("/api/logout")
        assert resp.status_code == 200
        cookie = resp.headers["set-cookie"].lower()
        assert "max-age=0" in cookie
        assert "httponly" in cookie

    def test_logout_is_idempotent(self, api_client, tokens):
        assert api_client.post("/api/logout", headers=auth_header(tokens["client"])).status_code == 200
        assert api_client.post("/api/logout").status_code == 200


# ---------------------------------------------------------------------------
# Portal updates
# ---------------------------------------------------------------------------


class TestUpdates:
    def test_client_list_excludes_associate_update(self, api_client, tokens):
        resp = api_client.get("/api/portal/updates", headers=auth_header(tokens["client"]))
        assert resp.status_code == 200
        assert "u1" not in _ids(resp)
        assert all(u["visibility"] in ("client", "both") for u in resp.json() if u["id"].startswith("u"))

    def test_associate_list_includes_associate_update(self, api_client, tokens):
        resp = api_client.get("/api/portal/updates", headers=auth_header(tokens["associate"]))
        assert "u1" in _ids(resp)

    def test_response_is_camel_case(self, api_client, tokens):
        update = api_client.get("/api/portal/updates", headers=auth_header(tokens["admin"])).json()[0]
        assert "updatedAt" in update
        assert "updated_at" not in update

    def test_associate_patch_merges(self, api_client, tokens):
        resp = api_client.patch(
            "/api/portal/updates/u3",
            json={"title": "Migration risk review (revised)", "confidence": "high"},
            headers=auth_header(tokens["associate"]),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["title"] == "Migration risk review (revised)"
        assert body["confidence"] == "high"
        assert body["content"] == "Shared risk log for the data migration."
        assert body["updatedAt"]

    @pytest.mark.parametrize("field", ["id", "updatedAt", "comments"])
    def test_patch_cannot_set_protected_fields(self, api_client, tokens, field):
        resp = api_client.patch("/api/portal/updates/u3", json={field: "x"}, headers=auth_header(tokens["admin"]))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_patch_rejects_unknown_enum(self, api_client, tokens):
        resp = api_client.patch("/api/portal/updates/u3", json={"visibility": "public"}, headers=auth_header(tokens["admin"]))
        assert resp.status_code == 400

    def test_patch_unknown_id_is_404(self, api_client, tokens):
        resp = api_client.patch("/api/portal/updates/nope", json={"title": "x"}, headers=auth_header(tokens["admin"]))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_client_patch_leaves_record_unmodified(self, api_client, tokens):
        before = [u for u in api_client.get("/api/portal/updates", headers=auth_header(tokens["client"])).json() if u["id"] == "u2"]
        api_client.patch("/api/portal/updates/u2", json={"title": "Hijacked"}, headers=auth_header(tokens["client"]))
        after = [u for u in api_client.get("/api/portal/updates", headers=auth_header(tokens["client"])).json() if u["id"] == "u2"]
        assert before == after

    @pytest.mark.parametrize("field", ["type", "visibility", "title", "priority", "tags"])
    def test_patch_null_is_400_and_nothing_stored(self, api_client, tokens, field):
        before = next(u for u in api_client.get("/api/portal/updates", headers=auth_header(tokens["admin"])).json() if u["id"] == "u2")
        resp = api_client.patch("/api/portal/updates/u2", json={field: None}, headers=auth_header(tokens["associate"]))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

        for role in ("client", "associate", "admin"):
            listing = api_client.get("/api/portal/updates", headers=auth_header(tokens[role]))
            assert listing.status_code == 200
        after = next(u for u in api_client.get("/api/portal/updates", headers=auth_header(tokens["admin"])).json() if u["id"] == "u2")
        assert after == before

    def test_patch_empty_title_is_400(self, api_client, tokens):
        resp = api_client.patch("/api/portal/updates/u2", json={"title": "   "}, headers=auth_header(tokens["admin"]))
        assert resp.status_code == 400


class TestComments:
    def test_author_comes_from_principal(self, api_client, tokens):
        resp = api_client.post(
            "/api/portal/updates/u2/comments",
            json={"text": "Great progress", "author": "Sunyata", "timestamp": "1999-01-01"},
            headers=auth_header(tokens["client"]),
        )
        assert resp.status_code == 200
        last = resp.json()[-1]
        assert last["author"] == "client-user"
        assert last["text"] == "Great progress"
        assert last["timestamp"] != "1999-01-01"

    def test_client_on_hidden_update_is_404(self, api_client, tokens):
        resp = api_client.post("/api/portal/updates/u1/comments", json={"text": "peek"}, headers=auth_header(tokens["client"]))
        assert resp.status_code == 404

    def test_unknown_update_is_404(self, api_client, tokens):
        resp = api_client.post("/api/portal/updates/zzz/comments", json={"text": "hi"}, headers=auth_header(tokens["admin"]))
        assert resp.status_code == 404

    def test_empty_text_is_400(self, api_client, tokens):
        resp = api_client.post("/api/portal/updates/u2/comments", json={"text": ""}, headers=auth_header(tokens["admin"]))
        assert resp.status_code == 400

    def test_anonymous_is_401(self, api_client):
        assert api_client.post("/api/portal/updates/u2/comments", json={"text": "hi"}).status_code == 401


# ---------------------------------------------------------------------------
# Goals, tools, directory, search
# ---------------------------------------------------------------------------


class TestReadOnlyData:
    def test_goals_visible_to_clients(self, api_client, tokens):
        resp = api_client.get("/api/portal/goals", headers=auth_header(tokens["client"]))
        assert resp.status_code == 200
        goals = resp.json()
        assert goals
        assert {"id", "title", "owner", "status", "progress", "dueDate"} <= set(goals[0])

    def test_tools_lists_configured_urls(self, api_client, tokens):
        resp = api_client.get("/api/portal/tools", headers=auth_header(tokens["client"]))
        assert resp.json() == [{"provider": "notion", "url": "https://notion.example.com/sso?team=core"}]

    def test_org_matrix(self, api_client, tokens):
        body = api_client.get("/api/org/matrix", headers=auth_header(tokens["client"])).json()
        assert {"teams", "projects"} <= set(body)

    def test_search_respects_visibility(self, api_client, tokens):
        client_hits = api_client.get("/api/search", params={"q": "staffing"}, headers=auth_header(tokens["client"])).json()
        assert client_hits["results"] == []
        associate_hits = api_client.get(
            "/api/search", params={"q": "staffing"}, headers=auth_header(tokens["associate"])
        ).json()
        assert [h["id"] for h in associate_hits["results"]] == ["u1"]

    def test_search_requires_auth(self, api_client):
        assert api_client.get("/api/search", params={"q": "x"}).status_code == 401


# ---------------------------------------------------------------------------
# SSO
# ---------------------------------------------------------------------------


class TestSSO:
    def test_unconfigured_provider_is_400(self, api_client, tokens):
        resp = api_client.post("/api/sso/start", params={"provider": "miro"}, headers=auth_header(tokens["associate"]))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unknown_provider"

    def test_full_handshake(self, api_client, tokens):
        start = api_client.post("/api/sso/start", params={"provider": "notion"}, headers=auth_header(tokens["associate"]))
        assert start.status_code == 200
        body = start.json()
        assert set(body) == {"url", "state"}
        assert f"state={body['state']}" in body["url"]

        params = {"provider": "notion", "state": body["state"], "status": "ok"}
        first = api_client.get("/api/sso/callback", params=params)
        assert first.status_code == 200
        assert first.json() == {"success": True, "provider": "notion", "status": "ok"}

        repeat = api_client.get("/api/sso/callback", params=params)
        assert repeat.status_code == 400
        assert repeat.json()["error"]["code"] == "invalid_state"

    def test_start_accepts_get(self, api_client, tokens):
        resp = api_client.get("/api/sso/start", params={"provider": "notion"}, headers=auth_header(tokens["client"]))
        assert resp.status_code == 200

    def test_start_requires_auth(self, api_client):
        assert api_client.post("/api/sso/start", params={"provider": "notion"}).status_code == 401

    def test_callback_with_other_provider_is_400(self, api_client, tokens):
        state = api_client.post(
            "/api/sso/start", params={"provider": "notion"}, headers=auth_header(tokens["associate"])
        ).json()["state"]
        resp = api_client.get("/api/sso/callback", params={"provider": "linear", "state": state})
        assert resp.status_code == 400

    def test_long_status_is_truncated_not_refused(self, api_client, tokens):
        state = api_client.post(
            "/api/sso/start", params={"provider": "notion"}, headers=auth_header(tokens["associate"])
        ).json()["state"]
        resp = api_client.get("/api/sso/callback", params={"provider": "notion", "state": state, "status": "x" * 1000})
        assert resp.status_code == 200
        assert resp.json()["status"] == "x" * 64


# ---------------------------------------------------------------------------
# Integrations and status
# ---------------------------------------------------------------------------


class TestIntegrations:
    def test_unconfigured_feeds_are_empty(self, api_client, tokens):
        for path in ("/api/linear/tasks", "/api/notion/pages"):
            resp = api_client.get(path, headers=auth_header(tokens["client"]))
            assert resp.status_code == 200
            assert resp.json() == []

    def test_feeds_require_auth(self, api_client):
        assert api_client.get("/api/linear/tasks").status_code == 401

    def test_configured_feed_is_cached(self, api_client, tokens, monkeypatch):
        calls = []

        def fake_fetch(api_key, timeout):
            calls.append(api_key)
            return [{"id": "issue-1", "title": "Wire SSO"}]

        monkeypatch.setattr(app.state.settings, "linear_api_key", "lin_test")
        monkeypatch.setattr("api.routes.v1.integrations.fetch_linear_tasks", fake_fetch)
        for _ in range(3):
            resp = api_client.get("/api/linear/tasks", headers=auth_header(tokens["client"]))
            assert resp.json() == [{"id": "issue-1", "title": "Wire SSO"}]
        assert calls == ["lin_test"]

    def test_upstream_failure_degrades_to_empty_once_per_window(self, api_client, tokens, monkeypatch):
        from core.fetcher import UpstreamUnavailable

        calls = []

        def failing_fetch(token, timeout):
            calls.append(token)
            raise UpstreamUnavailable("notion down")

        monkeypatch.setattr(app.state.settings, "notion_token", "secret_test")
        monkeypatch.setattr("api.routes.v1.integrations.fetch_notion_pages", failing_fetch)
        for _ in range(3):
            resp = api_client.get("/api/notion/pages", headers=auth_header(tokens["client"]))
            assert resp.status_code == 200
            assert resp.json() == []
        assert calls == ["secret_test"]

    def test_status_is_public(self, api_client):
        resp = api_client.get("/api/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert set(body["integrations"]) == {"linear", "notion"}
        assert {"configured", "cached", "fresh", "cachedAt"} <= set(body["integrations"]["notion"])


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class TestWebhooks:
    def test_event_becomes_associate_note(self, api_client, tokens):
        payload = {"action": "opened", "repository": {"full_name": "org/repo"}, "pull_request": {"number": 7, "title": "Tidy"}}
        resp = api_client.post("/api/webhooks", json=payload, headers={"X-GitHub-Event": "pull_request"})
        assert resp.status_code == 202
        update_id = resp.json()["id"]

        admin_view = api_client.get("/api/portal/updates", headers=auth_header(tokens["admin"])).json()
        created = next(u for u in admin_view if u["id"] == update_id)
        assert created["author"] == "webhook:github"
        assert created["visibility"] == "associate"
        assert created["type"] == "note"
        assert created["title"] == "PR #7 opened: Tidy"

        client_view = api_client.get("/api/portal/updates", headers=auth_header(tokens["client"]))
        assert update_id not in _ids(client_view)

    def test_non_json_body_is_accepted(self, api_client):
        resp = api_client.post("/api/webhooks", content=b"not json at all", params={"source": "custom"})
        assert resp.status_code == 202

    def test_signature_enforced_when_secret_set(self, api_client, monkeypatch):
        monkeypatch.setattr(app.state.settings, "webhook_secret", "hook-secret")
        body = json.dumps({"hello": "world"}).encode()
        bad = api_client.post("/api/webhooks", content=body, headers={"X-Hub-Signature-256": "sha256=00"})
        assert bad.status_code == 401

        sig = "sha256=" + hmac.new(b"hook-secret", body, hashlib.sha256).hexdigest()
        good = api_client.post("/api/webhooks", content=body, headers={"X-Hub-Signature-256": sig})
        assert good.status_code == 202


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


class TestCORS:
    def test_preflight_is_204_without_auth(self, api_client):
        resp = api_client.options(
            "/api/portal/updates",
            headers={"Origin": ORIGIN, "Access-Control-Request-Method": "PATCH"},
        )
        assert resp.status_code == 204
        assert resp.headers["access-control-allow-origin"] == ORIGIN
        assert resp.headers["access-control-allow-credentials"] == "true"

    def test_preflight_on_unknown_path_is_204(self, api_client):
        assert api_client.options("/api/does-not-exist").status_code == 204

    def test_origin_echoed_on_simple_request(self, api_client):
        resp = api_client.get("/api/status", headers={"Origin": ORIGIN})
        assert resp.headers["access-control-allow-origin"] == ORIGIN
        assert resp.headers["access-control-allow-credentials"] == "true"
