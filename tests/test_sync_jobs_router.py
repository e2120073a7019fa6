from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.core.errors import RequestError
from app.jobs.asaas_charge_sync import AsaasChargeSyncRunner
from app.jobs.projudi_sync import ProjudiSyncRunner
from app.jobs.registry import RunnerRegistry, get_registry
from app.main import app
from app.services.sync_job_status_store import sync_job_status_store

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeResult:
    def to_dict(self):
        return {"inserted": 3}


class FakeProjudiService:
    def __init__(self, configured=True, error=None):
        self.configured = configured
        self.error = error

    def is_configured(self):
        return self.configured

    def fetch_new_intimacoes(self, db, reference):
        if self.error:
            raise self.error
        return FakeResult()


class FakeAsaasService:
    def is_configured(self):
        return False

    def sync_pending_charges(self, db):
        raise AssertionError("should not run")


def _client(session_factory, projudi_service):
    registry = RunnerRegistry(
        runners={
            "projudi_intimacoes": ProjudiSyncRunner(
                service=projudi_service, session_factory=session_factory, env={}, clock=lambda: NOW
            ),
            "asaas_charges": AsaasChargeSyncRunner(
                service=FakeAsaasService(), session_factory=session_factory, env={}
            ),
        }
    )
    app.dependency_overrides[get_registry] = lambda: registry
    return TestClient(app)


@pytest.fixture(autouse=True)
def _reset_overrides():
    yield
    app.dependency_overrides.clear()


def test_health():
    assert TestClient(app).get("/health").json() == {"status": "ok"}


def test_list_jobs_before_any_run(session_factory):
    resp = _client(session_factory, FakeProjudiService()).get("/sync-jobs")
    assert resp.status_code == 200
    body = resp.json()
    assert [j["job_name"] for j in body] == ["asaas_charges", "projudi_intimacoes"]
    assert all(j["running"] is False for j in body)


def test_status_unknown_job_is_404(session_factory):
    resp = _client(session_factory, FakeProjudiService()).get("/sync-jobs/nope/status")
    assert resp.status_code == 404


def test_trigger_runs_and_returns_status(session_factory):
    client = _client(session_factory, FakeProjudiService())

    resp = client.post("/sync-jobs/projudi_intimacoes/trigger")

    assert resp.status_code == 200
    body = resp.json()
    assert body["triggered"] is True
    assert body["status"]["running"] is False
    assert body["status"]["last_result"] == {"inserted": 3}
    assert body["status"]["last_manual_trigger_at"] is not None

    status = client.get("/sync-jobs/projudi_intimacoes/status").json()
    assert status["last_success_at"] is not None
    assert status["next_run_at"] is not None


def test_trigger_while_running_is_not_triggered(session_factory, db):
    client = _client(session_factory, FakeProjudiService())
    sync_job_status_store.start_run(
        db, "projudi_intimacoes", defaults=ProjudiSyncRunner.defaults.as_defaults()
    )

    resp = client.post("/sync-jobs/projudi_intimacoes/trigger")

    assert resp.status_code == 200
    assert resp.json()["triggered"] is False
    assert resp.json()["status"]["running"] is True


def test_trigger_not_configured_is_400(session_factory):
    resp = _client(session_factory, FakeProjudiService()).post("/sync-jobs/asaas_charges/trigger")
    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert "not configured" in detail["message"]
    assert detail["status"]["job_name"] == "asaas_charges"


def test_trigger_failure_is_500_with_recorded_error(session_factory):
    service = FakeProjudiService(error=RequestError("boom", status_code=502))
    resp = _client(session_factory, service).post("/sync-jobs/projudi_intimacoes/trigger")

    assert resp.status_code == 500
    detail = resp.json()["detail"]
    assert detail["message"] == "RequestError: boom"
    assert detail["status"]["running"] is False
    assert detail["status"]["last_error_message"] == "RequestError: boom"


def test_put_config_persists_values(session_factory):
    client = _client(session_factory, FakeProjudiService())

    resp = client.put("/sync-jobs/projudi_intimacoes/config", json={"enabled": False, "interval_ms": 120000})
    assert resp.status_code == 200
    assert resp.json()["enabled"] is False
    assert resp.json()["interval_ms"] == 120000

    resp = client.put("/sync-jobs/projudi_intimacoes/config", json={"overlap_ms": 0})
    assert resp.json()["enabled"] is False
    assert resp.json()["overlap_ms"] == 0


def test_put_config_validates_payload(session_factory):
    resp = _client(session_factory, FakeProjudiService()).put(
        "/sync-jobs/projudi_intimacoes/config", json={"interval_ms": 0}
    )
    assert resp.status_code == 422


def test_admin_token_required_when_configured(session_factory, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_TOKEN", "s3cret")
    client = _client(session_factory, FakeProjudiService())

    assert client.get("/sync-jobs").status_code == 401
    assert client.get("/sync-jobs", headers={"X-Admin-Token": "wrong"}).status_code == 401
    assert client.get("/sync-jobs", headers={"X-Admin-Token": "s3cret"}).status_code == 200


def test_list_jobs_merges_stored_rows_with_registry(session_factory, db):
    client = _client(session_factory, FakeProjudiService())
    client.post("/sync-jobs/projudi_intimacoes/trigger")
    # fila de un job que ya no está registrado: no se lista
    sync_job_status_store.upsert_configuration(db, "retired_job", enabled=False)

    body = client.get("/sync-jobs").json()

    by_name = {j["job_name"]: j for j in body}
    assert sorted(by_name) == ["asaas_charges", "projudi_intimacoes"]
    assert by_name["projudi_intimacoes"]["last_success_at"] is not None
    assert by_name["asaas_charges"]["last_run_at"] is None
