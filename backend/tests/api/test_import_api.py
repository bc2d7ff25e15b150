"""Tests for the /api/import endpoints."""

import json

from tests.fixtures import discord_author, discord_message, make_discord_export, make_slack_export


def _upload(payload, filename="export.json"):
    return {"file": (filename, json.dumps(payload).encode(), "application/json")}


def _discord_export():
    alice = discord_author("1", "alice")
    return make_discord_export([
        discord_message("m1", alice, "hello"),
        discord_message("m2", alice, "again"),
    ])


class TestHealth:

    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestPreviewEndpoint:

    async def test_preview_returns_summary(self, client):
        resp = await client.post("/api/import/preview", files=_upload(make_slack_export()))
        assert resp.status_code == 200
        data = resp.json()
        assert data["format_detected"] == "slack"
        assert data["channel_count"] == 3
        assert data["message_count"] == 6

    async def test_invalid_json_returns_422(self, client):
        resp = await client.post(
            "/api/import/preview",
            files={"file": ("broken.json", b"{not json", "application/json")},
        )
        assert resp.status_code == 422

    async def test_wrong_format_hint_returns_422(self, client):
        resp = await client.post(
            "/api/import/preview?format=discord", files=_upload(make_slack_export())
        )
        assert resp.status_code == 422

    async def test_unknown_format_returns_422(self, client):
        resp = await client.post(
            "/api/import/preview?format=teams", files=_upload(_discord_export())
        )
        assert resp.status_code == 422
        assert "Unknown format" in resp.json()["detail"]


class TestImportEndpoints:

    async def test_start_then_poll(self, client, import_service):
        resp = await client.post(
            "/api/import",
            files=_upload(_discord_export()),
            data={"config": json.dumps({"import_files": False})},
        )
        assert resp.status_code == 202
        started = resp.json()
        assert started["platform"] == "discord"
        assert started["status"] == "importing"

        await import_service.wait(started["run_id"])
        resp = await client.get(f"/api/import/{started['run_id']}")
        assert resp.status_code == 200
        run = resp.json()
        assert run["status"] == "completed"
        assert run["stats"]["messages"]["imported"] == 2
        assert run["progress"]["total_steps"] == 6
        assert run["filename"] == "export.json"

    async def test_invalid_config_returns_422(self, client):
        resp = await client.post(
            "/api/import",
            files=_upload(_discord_export()),
            data={"config": json.dumps({"file_concurrency": 0})},
        )
        assert resp.status_code == 422
        assert resp.json()["detail"][0]["loc"] == ["file_concurrency"]

    async def test_malformed_export_returns_422(self, client):
        resp = await client.post(
            "/api/import",
            files={"file": ("data.json", b"[]", "application/json")},
        )
        assert resp.status_code == 422

    async def test_list_runs(self, client, import_service):
        resp = await client.post("/api/import", files=_upload(_discord_export()))
        await import_service.wait(resp.json()["run_id"])

        resp = await client.get("/api/import")
        assert resp.status_code == 200
        assert len(resp.json()) == 1

    async def test_get_unknown_run(self, client):
        resp = await client.get("/api/import/does-not-exist")
        assert resp.status_code == 404

    async def test_cancel_unknown_run(self, client):
        resp = await client.post("/api/import/does-not-exist/cancel")
        assert resp.status_code == 404

    async def test_cancel_finished_run(self, client, import_service):
        resp = await client.post("/api/import", files=_upload(_discord_export()))
        run_id = resp.json()["run_id"]
        await import_service.wait(run_id)

        resp = await client.post(f"/api/import/{run_id}/cancel")
        assert resp.status_code == 409
