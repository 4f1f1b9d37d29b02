import json
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from tms_sync.main import create_app
from tms_sync.retry import RetryDriver


def _created_raw(reference="REF-1"):
    return json.dumps(
        {
            "event_type": "load#created",
            "data": {"reference_number": reference, "containerNo": "MSCU1", "status": "DISPATCHED"},
        }
    )


def test_sweep_replays_due_items_and_deletes_successes(engine, fake_db):
    t0 = datetime.now(timezone.utc) - timedelta(minutes=5)
    due = engine.dlq.push("load#created", _created_raw(), "timeout", now=t0)
    not_due = engine.dlq.push("load#created", _created_raw("REF-2"), "timeout", now=datetime.now(timezone.utc))

    result = engine.retry_driver.run_sweep()

    assert result.retried == 1
    assert result.succeeded == 1
    assert result.failed == 0
    assert engine.dlq.get(due.id) is None
    assert engine.dlq.get(not_due.id) is not None
    assert [row["portpro_reference"] for row in fake_db.rows("loads")] == ["REF-1"]
    assert fake_db.rows("loads")[0]["status"] == "in_transit"


def test_sweep_records_failure_with_next_backoff(engine, fake_db):
    t0 = datetime.now(timezone.utc) - timedelta(minutes=5)
    item = engine.dlq.push("load#created", _created_raw(), "timeout", now=t0)
    fake_db.failing_tables.add("loads")

    result = engine.retry_driver.run_sweep()

    assert result.failed == 1
    failed = engine.dlq.get(item.id)
    assert failed.attempts == 2
    assert failed.next_retry_at - failed.last_attempt_at == timedelta(seconds=300)


def test_sweep_alerts_when_queue_overflows(engine, notifier, fake_redis):
    driver = RetryDriver(
        dlq=engine.dlq,
        handlers=engine.handlers,
        idempotency=engine.idempotency,
        notifier=notifier,
        alert_threshold=3,
    )
    now = datetime.now(timezone.utc)
    for _ in range(3):
        engine.dlq.push("load#created", "{}", "bad", permanent=True, now=now)

    result = driver.run_sweep()

    assert result.overflow_alerted is True
    assert notifier.sent[0][0] == "dlq_overflow"
    assert notifier.sent[0][1]["count"] == 3


def test_manual_retry_succeeds_and_removes_item(engine, fake_db):
    item = engine.dlq.push("load#created", _created_raw(), "timeout")

    result = engine.retry_driver.retry_one(item.id)

    assert result.success is True
    assert engine.dlq.get(item.id) is None
    assert len(fake_db.rows("loads")) == 1


def test_manual_retry_of_exhausted_item_keeps_attempts_capped(engine):
    item = engine.dlq.push("load#created", "not json", "bad", permanent=True)

    result = engine.retry_driver.retry_one(item.id)

    assert result.success is False
    assert result.attempts == engine.dlq.max_retries
    assert "not valid JSON" in result.error


def test_manual_retry_of_missing_item_returns_none(engine):
    assert engine.retry_driver.retry_one("missing") is None


def test_redelivery_after_successful_retry_is_a_duplicate(engine, fake_db):
    client = TestClient(create_app(context=engine))
    client.post("/api/webhooks/portpro", json=json.loads(_created_raw()))
    document = {
        "event_type": "document#delivery_order_added",
        "data": {"reference_number": "REF-1", "createdAt": "2024-01-03T00:00:00Z"},
    }
    item = engine.dlq.push("document#delivery_order_added", json.dumps(document), "database timeout")

    assert engine.retry_driver.retry_one(item.id).success is True
    response = client.post("/api/webhooks/portpro", json=document)

    assert response.json() == {"success": True, "duplicate": True, "event": "document#delivery_order_added"}
    descriptions = [e["description"] for e in fake_db.rows("load_events")]
    assert descriptions.count("DO document added") == 1


def test_failed_retry_records_no_idempotency_key(engine, fake_db, fake_redis):
    item = engine.dlq.push("load#created", _created_raw(), "timeout")
    fake_db.failing_tables.add("loads")

    assert engine.retry_driver.retry_one(item.id).success is False
    assert not any(key.startswith("portpro:dedup:") for key in fake_redis.values)
