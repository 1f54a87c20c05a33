"""
Integration tests for the admin HTTP surface.

Tests cover:
- Route wiring to the service
- Status codes (200, 400, 404, 500)
- Request validation
"""

import tempfile
from pathlib import Path

import pytest
from aiohttp.test_utils import TestClient, TestServer

from pitr.recovery_server.api import create_admin_app
from pitr.recovery_server.config import ServerConfig, StorageConfig
from pitr.recovery_server.service import RecoveryService


class TestAdminHttp:
    """Integration tests for create_admin_app."""

    @pytest.fixture
    async def service(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = ServerConfig(
                storage=StorageConfig(
                    datastore_path=str(Path(tmpdir) / "datastore.db"),
                    backup_dir=str(Path(tmpdir) / "backups"),
                )
            )
            service = RecoveryService.from_config(config)
            await service.open()
            yield service
            await service.close()

    @pytest.fixture
    async def client(self, service):
        async with TestClient(TestServer(create_admin_app(service))) as client:
            yield client

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/v1/health")

        assert resp.status == 200
        body = await resp.json()
        assert body["healthy"] is True
        assert body["restore_in_progress"] is False

    @pytest.mark.asyncio
    async def test_create_list_get_delete(self, client):
        resp = await client.post("/v1/recovery-points", json={"name": "nightly", "create_backup": True})
        assert resp.status == 200
        point = (await resp.json())["recovery_point"]

        resp = await client.get("/v1/recovery-points", params={"page_size": "10"})
        listed = await resp.json()
        assert resp.status == 200
        assert listed["total"] == 1
        assert listed["page_size"] == 10

        resp = await client.get(f"/v1/recovery-points/{point['id']}")
        assert resp.status == 200
        assert (await resp.json())["recovery_point"]["name"] == "nightly"

        resp = await client.delete(f"/v1/recovery-points/{point['id']}")
        assert resp.status == 200

        resp = await client.get(f"/v1/recovery-points/{point['id']}")
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_verify_and_restore(self, client):
        resp = await client.post("/v1/recovery-points", json={"create_backup": True})
        point = (await resp.json())["recovery_point"]

        resp = await client.post(f"/v1/recovery-points/{point['id']}/verify")
        assert resp.status == 200
        assert (await resp.json())["valid"] is True

        resp = await client.post(
            f"/v1/recovery-points/{point['id']}/restore",
            json={"create_backup_before_restore": False},
        )
        body = await resp.json()
        assert resp.status == 200
        assert body["success"] is True
        assert body["backup_path"] is None

    @pytest.mark.asyncio
    async def test_restore_without_backup_is_400(self, client):
        resp = await client.post("/v1/recovery-points", json={})
        point = (await resp.json())["recovery_point"]

        resp = await client.post(f"/v1/recovery-points/{point['id']}/restore")

        assert resp.status == 400
        assert (await resp.json())["error_code"] == "NO_BACKUP_AVAILABLE"

    @pytest.mark.asyncio
    async def test_verify_unknown_point_is_404(self, client):
        resp = await client.post("/v1/recovery-points/77/verify")

        assert resp.status == 404
        assert (await resp.json())["valid"] is False

    @pytest.mark.asyncio
    async def test_invalid_id_is_400(self, client):
        resp = await client.get("/v1/recovery-points/abc")

        assert resp.status == 400
        assert (await resp.json())["error_code"] == "INVALID_ARGUMENT"

    @pytest.mark.asyncio
    async def test_invalid_json_is_400(self, client):
        resp = await client.post(
            "/v1/recovery-points",
            data="{not json",
            headers={"Content-Type": "application/json"},
        )

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_transaction_logs_and_cleanup(self, client):
        resp = await client.get("/v1/transaction-logs", params={"table": "products"})
        assert resp.status == 200
        assert (await resp.json())["logs"] == []

        resp = await client.post("/v1/transaction-logs/cleanup", json={"days_to_keep": 30})
        assert resp.status == 200
        assert (await resp.json())["deleted_count"] == 0

        resp = await client.get("/v1/transaction-logs", params={"page": "x"})
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_unexpected_error_is_500(self, client, service, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(service, "get_recovery_point", broken)

        resp = await client.get("/v1/recovery-points/1")

        assert resp.status == 500
        assert (await resp.json())["error_code"] == "INTERNAL_ERROR"
