from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from tms_sync.context import assemble_context
from tms_sync.main import create_app


SCHEDULER_PATHS = [
    "/api/internal/scheduler/reconcile",
    "/api/internal/scheduler/dlq-retry",
    "/api/internal/scheduler/cleanup",
]


def _client_with(settings, fake_db, fake_redis, notifier, portpro_api):
    engine = assemble_context(
        settings,
        supabase_client=fake_db,
        redis_client=fake_redis,
        client=portpro_api.client(),
        notifier=notifier,
    )
    return TestClient(create_app(context=engine))


@pytest.mark.parametrize("path", SCHEDULER_PATHS)
def test_scheduler_endpoints_return_503_when_secret_not_configured(
    path, settings_factory, fake_db, fake_redis, notifier, portpro_api
):
    client = _client_with(settings_factory(cron_secret=None), fake_db, fake_redis, notifier, portpro_api)

    response = client.post(path, headers={"Authorization": "Bearer anything"})

    assert response.status_code == 503
    assert response.json()["detail"] == "scheduler secret is not configured"


@pytest.mark.parametrize("path", SCHEDULER_PATHS)
@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "cron-secret"}])
def test_scheduler_endpoints_reject_missing_or_wrong_token(path, headers, engine):
    client = TestClient(create_app(context=engine))

    response = client.post(path, headers=headers)

    assert response.status_code == 401
    assert response.json()["detail"] == "invalid scheduler secret"


def test_scheduled_reconcile_runs_with_valid_token(engine, portpro_api):
    portpro_api.loads = [{"reference_number": "REF-1", "containerNo": "MSCU1", "status": "PENDING"}]
    client = TestClient(create_app(context=engine))

    response = client.post("/api/internal/scheduler/reconcile", headers={"Authorization": "Bearer cron-secret"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["triggered_by"] == "scheduler"
    assert body["records_created"] == 1


def test_scheduled_reconcile_conflicts_with_running_run(engine, fake_db):
    fake_db.tables["reconciliation_runs"] = [
        {"id": "run-1", "status": "running", "started_at": datetime.now(timezone.utc).isoformat()}
    ]
    client = TestClient(create_app(context=engine))

    response = client.post("/api/internal/scheduler/reconcile", headers={"Authorization": "Bearer cron-secret"})

    assert response.status_code == 409


def test_scheduled_reconcile_maps_upstream_failure(engine, portpro_api):
    portpro_api.valid_token = "other"
    portpro_api.refresh_ok = False
    client = TestClient(create_app(context=engine))

    response = client.post("/api/internal/scheduler/reconcile", headers={"Authorization": "Bearer cron-secret"})

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["type"] == "upstream_error"
    assert detail["provider"] == "portpro"
    assert detail["retryable"] is False


def test_scheduled_dlq_retry_and_cleanup(engine, fake_db):
    old = "2000-01-01T00:00:00+00:00"
    fake_db.tables["portpro_webhook_logs"] = [{"id": "w-1", "created_at": old}]
    fake_db.tables["reconciliation_runs"] = [{"id": "r-1", "status": "completed", "started_at": old}]
    client = TestClient(create_app(context=engine))
    headers = {"Authorization": "Bearer cron-secret"}

    sweep = client.post("/api/internal/scheduler/dlq-retry", headers=headers)
    cleanup = client.post("/api/internal/scheduler/cleanup", headers=headers)

    assert sweep.status_code == 200
    assert sweep.json()["retried"] == 0
    assert cleanup.status_code == 200
    assert cleanup.json() == {
        "webhook_logs_deleted": 1,
        "reconciliation_runs_deleted": 1,
        "dlq_items_purged": 0,
    }
