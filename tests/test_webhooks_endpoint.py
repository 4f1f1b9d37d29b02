from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from tms_sync.context import assemble_context
from tms_sync.main import create_app
from tms_sync.observability import metrics_snapshot


def _created_payload(reference="REF-1"):
    return {
        "event_type": "load#created",
        "data": {
            "reference_number": reference,
            "containerNo": "MSCU1234567",
            "status": "PENDING",
            "createdAt": "2024-01-01T00:00:00Z",
        },
    }


def _status_payload(reference="REF-1", status="COMPLETED", updated_at="2024-01-02T00:00:00Z"):
    return {
        "event_type": "load#status_updated",
        "reference_number": reference,
        "data": {"status": status, "updatedAt": updated_at},
    }


def _client(engine):
    return TestClient(create_app(context=engine))


def _dlq_items(engine):
    return engine.dlq.list_items()


def test_load_created_creates_one_booked_shipment(engine, fake_db):
    client = _client(engine)

    response = client.post("/api/webhooks/portpro", json=_created_payload())

    assert response.status_code == 200
    assert response.json() == {"success": True, "event": "load#created"}
    assert response.headers["X-Request-ID"]
    loads = fake_db.rows("loads")
    assert len(loads) == 1
    assert loads[0]["status"] == "booked"
    assert len(fake_db.rows("portpro_webhook_logs")) == 1


def test_same_status_event_twice_is_applied_once(engine, fake_db):
    client = _client(engine)
    client.post("/api/webhooks/portpro", json=_created_payload())

    first = client.post("/api/webhooks/portpro", json=_status_payload())
    second = client.post("/api/webhooks/portpro", json=_status_payload())

    assert first.json() == {"success": True, "event": "load#status_updated"}
    assert second.json() == {"success": True, "duplicate": True, "event": "load#status_updated"}
    delivered_events = [e for e in fake_db.rows("load_events") if e["status"] == "delivered"]
    assert len(delivered_events) == 1
    assert metrics_snapshot().get("webhook.events.duplicate|event_type=load#status_updated") == 1


def test_handler_failure_queues_event_with_first_backoff(engine, fake_db, fake_redis, monkeypatch):
    client = _client(engine)
    client.post("/api/webhooks/portpro", json=_created_payload())

    def _boom(event, request_id=None):
        raise RuntimeError("database timeout")

    monkeypatch.setattr(engine.handlers, "dispatch", _boom)
    before = datetime.now(timezone.utc)
    response = client.post("/api/webhooks/portpro", json=_status_payload())

    assert response.status_code == 200
    assert response.json() == {"success": False, "queued": True, "event": "load#status_updated"}
    items = _dlq_items(engine)
    assert len(items) == 1
    assert items[0].attempts == 1
    assert items[0].error == "database timeout"
    assert timedelta(seconds=59) <= items[0].next_retry_at - before <= timedelta(seconds=61)
    assert not any(key.startswith("portpro:dedup:load_status_updated") for key in fake_redis.values)


def test_schema_violation_is_dead_lettered_as_permanent(engine, fake_redis):
    client = _client(engine)

    response = client.post("/api/webhooks/portpro", json={"event_type": "load#created", "data": "oops"})

    assert response.json()["queued"] is True
    items = _dlq_items(engine)
    assert items[0].permanent is True
    assert items[0].attempts == engine.dlq.max_retries
    assert items[0].next_retry_at is None


def test_unparseable_body_is_acknowledged_without_retry(engine, fake_redis):
    client = _client(engine)

    response = client.post(
        "/api/webhooks/portpro",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"success": False, "event": "unknown"}
    assert _dlq_items(engine) == []


def test_unknown_event_type_is_acknowledged(engine, fake_db):
    client = _client(engine)

    response = client.post("/api/webhooks/portpro", json={"event_type": "driver#assigned", "data": {}})

    assert response.json() == {"success": True, "event": "driver#assigned"}
    assert fake_db.rows("loads") == []


def test_signature_checked_only_when_header_and_secret_present(
    settings_factory, fake_db, fake_redis, notifier, portpro_api
):
    engine = assemble_context(
        settings_factory(portpro_webhook_secret="hook-secret"),
        supabase_client=fake_db,
        redis_client=fake_redis,
        client=portpro_api.client(),
        notifier=notifier,
    )
    client = _client(engine)

    rejected = client.post(
        "/api/webhooks/portpro",
        json=_created_payload("REF-9"),
        headers={"X-Hub-Signature": "sha1=wrong"},
    )
    accepted = client.post(
        "/api/webhooks/portpro",
        json=_created_payload("REF-9"),
        headers={"X-Hub-Signature": "sha1=hook-secret"},
    )
    unsigned = client.post("/api/webhooks/portpro", json=_created_payload("REF-10"))

    assert rejected.status_code == 401
    assert accepted.status_code == 200
    assert unsigned.status_code == 200
    assert {row["portpro_reference"] for row in fake_db.rows("loads")} == {"REF-9", "REF-10"}


def test_dedup_outage_still_processes_event(engine, fake_db, fake_redis):
    client = _client(engine)
    fake_redis.down = True

    response = client.post("/api/webhooks/portpro", json=_created_payload())

    assert response.json() == {"success": True, "event": "load#created"}
    assert len(fake_db.rows("loads")) == 1


def test_audit_log_failure_does_not_fail_request(engine, fake_db):
    client = _client(engine)
    fake_db.failing_tables.add("portpro_webhook_logs")

    response = client.post("/api/webhooks/portpro", json=_created_payload())

    assert response.json()["success"] is True
    assert len(fake_db.rows("loads")) == 1


def test_unsupported_provider_and_liveness(engine):
    client = _client(engine)

    assert client.post("/api/webhooks/other", json=_created_payload()).status_code == 404
    response = client.get("/api/webhooks/portpro")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["webhook"] == "portpro"
    assert body["timestamp"]
