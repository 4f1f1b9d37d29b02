from datetime import datetime, timezone

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from tms_sync.config import Settings
from tms_sync.context import assemble_context
from tms_sync.notifier import AlertNotifier
from tms_sync.observability import reset_metrics
from tms_sync.providers.portpro.client import PortProClient


_UNIQUE_COLUMNS = {"loads": "portpro_reference"}


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, table_name: str, db: "FakeSupabase"):
        self.table_name = table_name
        self.db = db
        self.operation = "select"
        self.insert_payload = None
        self.update_payload = None
        self.filters = []
        self.order_by = None
        self.row_limit = None

    def select(self, _fields: str):
        self.operation = "select"
        return self

    def insert(self, payload: dict):
        self.operation = "insert"
        self.insert_payload = payload
        return self

    def update(self, payload: dict):
        self.operation = "update"
        self.update_payload = payload
        return self

    def delete(self):
        self.operation = "delete"
        return self

    def eq(self, key: str, value):
        self.filters.append(("eq", key, value))
        return self

    def is_(self, key: str, value):
        self.filters.append(("is", key, value))
        return self

    def gte(self, key: str, value):
        self.filters.append(("gte", key, value))
        return self

    def lt(self, key: str, value):
        self.filters.append(("lt", key, value))
        return self

    def order(self, key: str, desc: bool = False):
        self.order_by = (key, desc)
        return self

    def limit(self, count: int):
        self.row_limit = count
        return self

    def _matches(self, row: dict) -> bool:
        for kind, key, value in self.filters:
            if kind == "eq" and row.get(key) != value:
                return False
            if kind == "is" and value == "null" and row.get(key) is not None:
                return False
            if kind == "gte" and (row.get(key) is None or row.get(key) < value):
                return False
            if kind == "lt" and (row.get(key) is None or row.get(key) >= value):
                return False
        return True

    def execute(self):
        if self.table_name in self.db.failing_tables:
            raise Exception(f"connection to {self.table_name} refused")
        table = self.db.tables.setdefault(self.table_name, [])
        if self.operation == "insert":
            unique_column = _UNIQUE_COLUMNS.get(self.table_name)
            if unique_column:
                for row in table:
                    if row.get(unique_column) == self.insert_payload.get(unique_column):
                        raise Exception("duplicate key value violates unique constraint")
            row = dict(self.insert_payload or {})
            row.setdefault("id", f"{self.table_name}-{len(table)+1}")
            row.setdefault("created_at", _ts())
            table.append(row)
            return FakeResponse([dict(row)])

        if self.operation == "update":
            updated = []
            for row in table:
                if self._matches(row):
                    row.update(self.update_payload or {})
                    updated.append(dict(row))
            return FakeResponse(updated)

        if self.operation == "delete":
            removed = [row for row in table if self._matches(row)]
            self.db.tables[self.table_name] = [row for row in table if not self._matches(row)]
            return FakeResponse([dict(row) for row in removed])

        rows = [dict(row) for row in table if self._matches(row)]
        if self.order_by:
            key, desc = self.order_by
            rows.sort(key=lambda row: row.get(key) or "", reverse=desc)
        if self.row_limit is not None:
            rows = rows[: self.row_limit]
        return FakeResponse(rows)


class FakeSupabase:
    def __init__(self, tables: dict | None = None):
        self.tables = tables or {}
        self.failing_tables: set[str] = set()

    def table(self, table_name: str):
        return FakeQuery(table_name, self)

    def rows(self, table_name: str) -> list[dict]:
        return self.tables.get(table_name, [])


class FakeRedis:
    """In-memory stand-in for the handful of redis-py calls the engine makes."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.expirations: dict[str, int] = {}
        self.down = False

    def _check(self):
        if self.down:
            raise RedisConnectionError("redis is down")

    def set(self, key, value, nx=False, ex=None):
        self._check()
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex is not None:
            self.expirations[key] = ex
        return True

    def get(self, key):
        self._check()
        return self.values.get(key)

    def delete(self, *keys):
        self._check()
        return sum(1 for key in keys if self.values.pop(key, None) is not None)

    def hset(self, name, key, value):
        self._check()
        self.hashes.setdefault(name, {})[key] = value
        return 1

    def hget(self, name, key):
        self._check()
        return self.hashes.get(name, {}).get(key)

    def hgetall(self, name):
        self._check()
        return dict(self.hashes.get(name, {}))

    def hdel(self, name, *keys):
        self._check()
        bucket = self.hashes.get(name, {})
        return sum(1 for key in keys if bucket.pop(key, None) is not None)

    def expire(self, name, seconds):
        self._check()
        self.expirations[name] = seconds
        return True

    def close(self):
        return None


class RecordingNotifier(AlertNotifier):
    def __init__(self):
        super().__init__(None)
        self.sent: list[tuple[str, dict]] = []

    def send(self, alert_type, details):
        self.sent.append((alert_type, details))
        return True


class FakePortProApi:
    """Serves ``/loads`` pages and ``/auth/refresh`` through ``httpx.MockTransport``."""

    def __init__(self, loads: list[dict] | None = None):
        self.loads = loads or []
        self.requests: list[httpx.Request] = []
        self.valid_token = "access-1"
        self.refreshed_token = "access-2"
        self.refresh_ok = True

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/auth/refresh"):
            if not self.refresh_ok:
                return httpx.Response(400, json={"error": "bad refresh token"})
            self.valid_token = self.refreshed_token
            return httpx.Response(200, json={"accessToken": self.refreshed_token})
        if request.headers.get("Authorization") != f"Bearer {self.valid_token}":
            return httpx.Response(401, json={"error": "expired"})
        if request.url.path.endswith("/loads"):
            skip = int(request.url.params.get("skip", 0))
            limit = int(request.url.params.get("limit", 100))
            return httpx.Response(200, json={"data": self.loads[skip : skip + limit]})
        reference = request.url.path.rsplit("/", 1)[-1]
        for load in self.loads:
            if load.get("reference_number") == reference:
                return httpx.Response(200, json={"data": load})
        return httpx.Response(404, json={"error": "not found"})

    def client(self) -> PortProClient:
        return PortProClient(
            access_token="access-1",
            refresh_token="refresh-1",
            base_url="https://portpro.example/v1",
            http_client=httpx.Client(transport=httpx.MockTransport(self.handler)),
        )


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_settings(**overrides) -> Settings:
    values = {
        "supabase_url": "https://supabase.example",
        "supabase_service_role_key": "service-role",
        "redis_url": "redis://localhost:6379/0",
        "jwt_secret": "test-jwt-secret",
        "portpro_access_token": "access-1",
        "portpro_refresh_token": "refresh-1",
        "portpro_webhook_secret": None,
        "cron_secret": "cron-secret",
        "slack_webhook_url": None,
        "reconciliation_page_delay_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def portpro_api():
    return FakePortProApi()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def engine(settings, fake_db, fake_redis, notifier, portpro_api):
    return assemble_context(
        settings,
        supabase_client=fake_db,
        redis_client=fake_redis,
        client=portpro_api.client(),
        notifier=notifier,
    )


@pytest.fixture
def settings_factory():
    return make_settings
