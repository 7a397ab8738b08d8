"""
tests/test_health.py -- GET /api/v1/health and behaviour with the database gone.

Each test runs the app over its own on-disk store (file_services). Removing
the store's folder after closing it leaves the database unreachable, which
exercises the degraded health report and the 503 mapping for TransientError.
"""

from __future__ import annotations

import shutil

from api.main import VERSION
from auth.services import Services


def _take_database_down(services: Services, tmp_path) -> None:
    services.store.close()
    shutil.rmtree(tmp_path / "data")


class TestHealth:
    def test_reports_healthy_without_auth(self, file_services: Services, client_for) -> None:
        client = client_for(file_services)
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json() == {
            "status": "healthy",
            "version": VERSION,
            "components": {"app": "ok", "database": "ok"},
        }

    def test_reports_degraded_when_database_unreachable(self, file_services: Services, client_for, tmp_path) -> None:
        client = client_for(file_services)
        _take_database_down(file_services, tmp_path)

        resp = client.get("/api/v1/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "degraded"
        assert data["components"] == {"app": "ok", "database": "unavailable"}


class TestStorageUnavailable:
    def test_authenticated_request_is_503_with_generic_message(
        self, file_services: Services, client_for, tmp_path
    ) -> None:
        user = file_services.directory.create_user("bob", "bob@example.com", "pw")
        token = file_services.tokens.issue(user.id)
        client = client_for(file_services)
        _take_database_down(file_services, tmp_path)

        resp = client.get("/api/v1/users", headers={"Authorization": f"Bearer {token}"})

        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "unavailable"
        assert resp.json()["error"]["message"] == "The service is temporarily unavailable."
        assert "gatehouse.db" not in resp.text
