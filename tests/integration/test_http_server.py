"""
Integration tests for the HTTP API.

Tests cover:
- Document CRUD with snapshot on overwrite
- Version listing, content and restore
- Backup create/list/info/restore
- Error mapping to status codes
- CORS headers and health
"""

import json
import tempfile
from pathlib import Path

import pytest
from aiohttp.test_utils import TestClient, TestServer

from backend.vault_server.api import VaultServicer, create_http_app
from backend.vault_server.config import HttpConfig
from backend.vault_server.store import StoreLayout


class TestHttpApi:
    """Integration tests for create_http_app."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    def servicer(self, data_dir):
        return VaultServicer.from_layout(StoreLayout.under(data_dir))

    def client_for(self, servicer):
        return TestClient(TestServer(create_http_app(servicer, HttpConfig())))

    @pytest.mark.asyncio
    async def test_document_crud(self, servicer):
        async with self.client_for(servicer) as client:
            resp = await client.post(
                "/api/workflows", json={"id": "wf-1", "name": "Flow", "nodes": [], "edges": []}
            )
            assert resp.status == 201

            resp = await client.put(
                "/api/workflows/wf-1", json={"name": "Flow v2", "nodes": [{"id": "n1"}]}
            )
            assert resp.status == 200
            assert (await resp.json())["id"] == "wf-1"

            resp = await client.get("/api/workflows/wf-1")
            assert (await resp.json())["name"] == "Flow v2"

            resp = await client.get("/api/workflows")
            summaries = await resp.json()
            assert summaries == [
                {
                    "id": "wf-1",
                    "name": "Flow v2",
                    "nodes": 1,
                    "tags": [],
                    "teamId": None,
                    "ownerId": None,
                }
            ]

            resp = await client.delete("/api/workflows/wf-1")
            assert resp.status == 204

            resp = await client.get("/api/workflows/wf-1")
            assert resp.status == 404
            body = await resp.json()
            assert body["error_code"] == "NOT_FOUND"
            assert body["resource_type"] == "document"

    @pytest.mark.asyncio
    async def test_versions_flow(self, servicer):
        async with self.client_for(servicer) as client:
            for name in ("first", "second", "third"):
                await client.put("/api/workflows/wf-1", json={"name": name, "nodes": []})

            resp = await client.get("/admin/workflow-versions", params={"document_id": "wf-1"})
            versions = await resp.json()
            assert [v["name"] for v in versions] == ["second", "first"]
            assert [v["version"] for v in versions] == [1, 2]
            assert all(v["id"] == "wf-1" for v in versions)

            resp = await client.get("/admin/workflow-versions")
            assert len(await resp.json()) == 2

            oldest = versions[-1]["file"]
            resp = await client.get(f"/admin/workflow-versions/{oldest}")
            assert (await resp.json())["name"] == "first"

            resp = await client.post(f"/admin/workflow-versions/restore/{oldest}")
            assert resp.status == 200
            body = await resp.json()
            assert body["success"] is True
            assert body["id"] == "wf-1"

            resp = await client.get("/api/workflows/wf-1")
            assert (await resp.json())["name"] == "first"

            resp = await client.get("/admin/workflow-versions", params={"document_id": "wf-1"})
            assert len(await resp.json()) == 2

    @pytest.mark.asyncio
    async def test_version_listing_skips_corrupt_payload(self, servicer):
        async with self.client_for(servicer) as client:
            await client.put("/api/workflows/wf-1", json={"name": "a", "nodes": []})
            await client.put("/api/workflows/wf-1", json={"name": "b", "nodes": []})
            bad = servicer.ledger.versions_dir / "wf-1_20000101_000000000000.json"
            bad.write_text("{corrupt")

            resp = await client.get("/admin/workflow-versions", params={"document_id": "wf-1"})
            assert [v["name"] for v in await resp.json()] == ["a"]

            resp = await client.get(f"/admin/workflow-versions/{bad.name}")
            assert resp.status == 422
            assert (await resp.json())["error_code"] == "CORRUPT_ENTRY"

    @pytest.mark.asyncio
    async def test_unknown_version(self, servicer):
        async with self.client_for(servicer) as client:
            resp = await client.get("/admin/workflow-versions/wf-1_20250101_000000000000.json")
            assert resp.status == 404

            resp = await client.post("/admin/workflow-versions/restore/garbage")
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_invalid_requests(self, servicer):
        async with self.client_for(servicer) as client:
            resp = await client.post(
                "/api/workflows", data="{not json", headers={"Content-Type": "application/json"}
            )
            assert resp.status == 400
            assert (await resp.json())["error_code"] == "INVALID_ARGUMENT"

            resp = await client.post("/api/workflows", json=["not", "an", "object"])
            assert resp.status == 400

            resp = await client.post("/api/workflows", json={"name": "no id"})
            assert resp.status == 400

            resp = await client.put("/api/workflows/tags", json={"nodes": []})
            assert resp.status == 400

            resp = await client.put("/api/workflows/wf-1", json={"nodes": "nope"})
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_backup_flow(self, servicer, data_dir):
        async with self.client_for(servicer) as client:
            await client.put("/api/workflows/wf-1", json={"name": "keep", "nodes": [1, 2]})
            (data_dir / "tags.json").write_text(json.dumps(["x", "y"]))

            resp = await client.post("/admin/backup")
            assert resp.status == 200
            created = await resp.json()
            assert created["success"] is True
            assert created["file"].startswith("data_backup_")

            resp = await client.get("/admin/backups")
            listed = await resp.json()
            assert [b["file"] for b in listed] == [created["file"]]

            resp = await client.get(f"/admin/backups/{created['file']}/info")
            assert await resp.json() == {"teams": 0, "owners": 0, "tags": 2, "workflows": 1, "nodes": 2}

            await client.put("/api/workflows/wf-1", json={"name": "lose", "nodes": []})
            await client.put("/api/workflows/wf-2", json={"name": "extra", "nodes": []})

            resp = await client.post(f"/admin/backups/{created['file']}/restore")
            assert resp.status == 200
            restored = await resp.json()
            assert restored["success"] is True
            assert restored["safety_backup"].startswith("data_backup_")

            resp = await client.get("/api/workflows/wf-1")
            assert (await resp.json())["name"] == "keep"
            resp = await client.get("/api/workflows/wf-2")
            assert resp.status == 404

            resp = await client.get("/admin/backups")
            assert len(await resp.json()) == 2

    @pytest.mark.asyncio
    async def test_backup_errors(self, servicer, data_dir):
        async with self.client_for(servicer) as client:
            resp = await client.get("/admin/backups/data_backup_20250101_000000000000.tar.gz/info")
            assert resp.status == 404

            resp = await client.post("/admin/backups/nope.tar.gz/restore")
            assert resp.status == 404

            corrupt = "data_backup_20250101_000000000000.tar.gz"
            (data_dir / "backups" / corrupt).write_bytes(b"not gzip")
            resp = await client.get(f"/admin/backups/{corrupt}/info")
            assert resp.status == 422

    @pytest.mark.asyncio
    async def test_restore_failure_reports_safety_backup(self, servicer, monkeypatch):
        async with self.client_for(servicer) as client:
            await client.put("/api/workflows/wf-1", json={"nodes": []})
            created = await (await client.post("/admin/backup")).json()

            def broken_extract(archive_path):
                raise OSError("disk error")

            monkeypatch.setattr(servicer.restorer, "_extract_sync", broken_extract)

            resp = await client.post(f"/admin/backups/{created['file']}/restore")
            assert resp.status == 500
            body = await resp.json()
            assert body["success"] is False
            assert body["error_code"] == "RESTORE_FAILED"
            assert body["stage"] == "extract"
            assert body["safety_backup"].startswith("data_backup_")
            assert body["safety_backup"] != created["file"]

    @pytest.mark.asyncio
    async def test_health_and_cors(self, servicer):
        async with self.client_for(servicer) as client:
            resp = await client.get("/health", headers={"Origin": "http://localhost:3000"})
            assert resp.status == 200
            body = await resp.json()
            assert body["healthy"] is True
            assert body["missing"] == []
            assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"

            resp = await client.options("/api/workflows")
            assert resp.status == 200
            assert "PUT" in resp.headers["Access-Control-Allow-Methods"]

            resp = await client.get("/api/workflows/missing")
            assert resp.status == 404
            assert "Access-Control-Allow-Origin" in resp.headers
