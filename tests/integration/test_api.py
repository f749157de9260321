from types import SimpleNamespace

import pytest

from canarywatch.api import routes
from canarywatch.core.config import get_settings
from canarywatch.db.session import get_session_maker
from canarywatch.models.entities import AuditLog, Job, JobStatus, JobType, PipelineRun
from canarywatch.services.runs import acquire_run_lock, release_run_lock


class FakeTask:
    def __init__(self):
        self.calls = []

    def delay(self, *args):
        self.calls.append(args)
        return SimpleNamespace(id=f"task-{len(self.calls)}")


@pytest.fixture
def fake_drain(monkeypatch):
    task = FakeTask()
    monkeypatch.setattr(routes, "drain_pipeline", task)
    return task


@pytest.fixture
def session(client):
    db = get_session_maker()()
    try:
        yield db
    finally:
        db.close()


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "env": "test"}


def test_metrics_endpoint(client):
    client.get("/healthz")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "canarywatch_api_requests_total" in resp.text


def test_list_jobs_envelope(client):
    resp = client.get("/v1/jobs?limit=10")
    assert resp.status_code == 200
    body = resp.json()
    assert body["error"] is None
    assert isinstance(body["data"], list)
    assert body["meta"]["limit"] == 10


def test_job_stats_counts_every_status(client):
    resp = client.get("/v1/jobs/stats")
    assert resp.status_code == 200
    assert set(resp.json()["data"]) == {status.value for status in JobStatus}


def test_pipeline_run_requires_idempotency_key(client, fake_drain):
    resp = client.post("/v1/pipeline/run", json={})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "HTTP_ERROR"
    assert fake_drain.calls == []


def test_pipeline_run_idempotent_replay(client, fake_drain):
    headers = {"Idempotency-Key": "pipeline-run-replay"}
    payload = {"source_groups": ["TIER_0"], "time_budget_seconds": 600}
    first = client.post("/v1/pipeline/run", json=payload, headers=headers)
    second = client.post("/v1/pipeline/run", json=payload, headers=headers)

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["data"] == second.json()["data"]
    assert first.json()["data"]["source_groups"] == ["TIER_0"]
    assert fake_drain.calls == [(["TIER_0"], 600)]


def test_pipeline_run_key_reused_with_different_payload(client, fake_drain):
    headers = {"Idempotency-Key": "pipeline-run-conflict"}
    first = client.post("/v1/pipeline/run", json={"source_groups": ["TIER_0"]}, headers=headers)
    second = client.post("/v1/pipeline/run", json={"source_groups": ["TIER_1"]}, headers=headers)
    assert first.status_code == 200
    assert second.status_code == 409


def test_pipeline_run_rejects_unknown_groups(client, fake_drain):
    resp = client.post(
        "/v1/pipeline/run",
        json={"source_groups": ["EVERYTHING"]},
        headers={"Idempotency-Key": "pipeline-run-bad-groups"},
    )
    assert resp.status_code == 422
    assert fake_drain.calls == []


def test_pipeline_run_conflicts_with_running_drain(client, fake_drain, session):
    settings = get_settings()
    assert acquire_run_lock(session, "busy-drain", settings.run_lock_stale_minutes)
    try:
        resp = client.post("/v1/pipeline/run", json={}, headers={"Idempotency-Key": "pipeline-run-busy"})
    finally:
        release_run_lock(session, "busy-drain")
    assert resp.status_code == 409
    assert fake_drain.calls == []


def test_requeue_unknown_job_is_404(client):
    resp = client.post("/v1/jobs/999999/requeue", json={}, headers={"Idempotency-Key": "requeue-missing"})
    assert resp.status_code == 404


def test_requeue_dead_job(client, session):
    run = PipelineRun()
    session.add(run)
    session.flush()
    job = Job(run_id=run.id, type=JobType.fetch, payload={"item_id": 1}, status=JobStatus.dead, attempts=5, last_error="boom")
    session.add(job)
    session.commit()
    job_id = job.id

    headers = {"Idempotency-Key": f"requeue-{job_id}"}
    body = {"operator": "alice", "reason": "source back online"}
    first = client.post(f"/v1/jobs/{job_id}/requeue", json=body, headers=headers)
    assert first.status_code == 200
    assert first.json()["data"]["status"] == "pending"
    assert first.json()["data"]["attempts"] == 0

    replay = client.post(f"/v1/jobs/{job_id}/requeue", json=body, headers=headers)
    assert replay.status_code == 200
    assert replay.json()["data"] == first.json()["data"]

    again = client.post(f"/v1/jobs/{job_id}/requeue", json=body, headers={"Idempotency-Key": f"requeue-{job_id}-again"})
    assert again.status_code == 409

    audits = session.query(AuditLog).filter(AuditLog.action == "requeue", AuditLog.entity_id == str(job_id)).all()
    assert [audit.actor for audit in audits] == ["alice"]


def test_snapshot_rebuild_runs_eagerly(client):
    resp = client.post("/v1/snapshots/2026-03-02/rebuild", headers={"Idempotency-Key": "rebuild-2026-03-02"})
    assert resp.status_code == 200
    assert resp.json()["data"]["date"] == "2026-03-02"

    snapshot = client.get("/v1/snapshots/2026-03-02")
    assert snapshot.status_code == 200
    assert snapshot.json()["data"]["signal_ids"] == []

    latest = client.get("/v1/snapshots/latest")
    assert latest.status_code == 200


def test_unknown_snapshot_date_is_404(client):
    resp = client.get("/v1/snapshots/1999-01-01")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "HTTP_ERROR"


def test_invalid_snapshot_date_is_validation_error(client):
    resp = client.get("/v1/snapshots/not-a-date")
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_runs_listing(client):
    resp = client.get("/v1/runs")
    assert resp.status_code == 200
    assert "total" in resp.json()["meta"]


def test_task_status_endpoint(client, monkeypatch):
    monkeypatch.setattr(
        routes,
        "AsyncResult",
        lambda task_id, app=None: SimpleNamespace(state="SUCCESS", result={"jobs_done": 3}),
    )
    resp = client.get("/v1/tasks/task-123")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"task_id": "task-123", "state": "SUCCESS", "result": {"jobs_done": 3}}


def test_mutations_require_api_key_when_auth_enabled(client, monkeypatch):
    monkeypatch.setenv("API_AUTH_ENABLED", "true")
    monkeypatch.setenv("API_AUTH_TOKEN", "secret")
    get_settings.cache_clear()
    try:
        denied = client.post("/v1/pipeline/run", json={}, headers={"Idempotency-Key": "auth-denied"})
        reads = client.get("/v1/jobs")
    finally:
        monkeypatch.undo()
        get_settings.cache_clear()
    assert denied.status_code == 401
    assert denied.json()["error"]["code"] == "AUTH_ERROR"
    assert reads.status_code == 200
