from tms_sync.domain.idempotency import ClaimResult, IdempotencyStore, generate_idempotency_key
from tms_sync.observability import metrics_snapshot


def test_idempotency_key_is_deterministic_and_sanitized():
    key = generate_idempotency_key("load#status_updated", "REF 1/2", "2024-01-01T00:00:00.000Z")
    assert key == "load_status_updated:REF_1_2:2024-01-01T00:00:00_000Z"
    assert key == generate_idempotency_key("load#status_updated", "REF 1/2", "2024-01-01T00:00:00.000Z")


def test_idempotency_key_defaults_missing_parts():
    assert generate_idempotency_key("load#created", None, None) == "load_created:unknown:"


def test_claim_then_duplicate_then_release(fake_redis):
    store = IdempotencyStore(fake_redis, ttl_seconds=86400, claim_ttl_seconds=300)

    assert store.claim("k1") == ClaimResult.CLAIMED
    assert fake_redis.expirations["portpro:dedup:k1"] == 300
    assert store.claim("k1") == ClaimResult.DUPLICATE

    assert store.release("k1") is True
    assert store.claim("k1") == ClaimResult.CLAIMED


def test_mark_processed_extends_to_full_ttl(fake_redis):
    store = IdempotencyStore(fake_redis, ttl_seconds=86400, claim_ttl_seconds=300)
    store.claim("k2")

    assert store.mark_processed("k2") is True
    assert fake_redis.expirations["portpro:dedup:k2"] == 86400
    assert store.claim("k2") == ClaimResult.DUPLICATE


def test_unreachable_store_reports_unavailable(fake_redis):
    store = IdempotencyStore(fake_redis, ttl_seconds=86400, claim_ttl_seconds=300)
    fake_redis.down = True

    assert store.claim("k3") == ClaimResult.UNAVAILABLE
    assert store.mark_processed("k3") is False
    assert store.release("k3") is False
    assert metrics_snapshot().get("dedup.unavailable") == 1
