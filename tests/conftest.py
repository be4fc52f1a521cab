"""Pytest configuration and fixtures"""
import asyncio
import copy
import os
import uuid
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from orderpay.config import GatewayConfig, Settings
from orderpay.payments.gateway import PaymentGateway
from orderpay.payments.signing import build_xml, parse_xml, sign_params
from orderpay.routers.deps import build_services
from orderpay.services.alerts import FailureReporter
from orderpay.services.database import Database
from orderpay.services.domains.points import calculate_user_level

# Set test environment variables
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test_key")
os.environ.setdefault("CRON_SECRET", "test_cron_secret")

PAY_KEY = "0123456789abcdef0123456789abcdef"
GATEWAY_BASE_URL = "https://gateway.test"


# ==================== IN-MEMORY SUPABASE ====================


class _Result:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
        except ValueError:
            pass
    if isinstance(value, (int, float, str, Decimal)) and not isinstance(value, bool):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            pass
    return value


def _matches(stored: Any, expected: Any) -> bool:
    if stored == expected:
        return True
    if stored is None or expected is None:
        return False
    return _comparable(stored) == _comparable(expected)


class FakeQuery:
    """Subset of the PostgREST query builder used by the repositories."""

    def __init__(self, client: "FakeSupabaseClient", table: str):
        self.client = client
        self.table = table
        self._mode = "select"
        self._payload: Any = None
        self._filters: List[Callable[[dict], bool]] = []
        self._order: List[tuple] = []
        self._limit: Optional[int] = None
        self._range: Optional[tuple] = None

    def select(self, *_columns, count=None):
        self._mode = "select"
        return self

    def insert(self, data):
        self._mode = "insert"
        self._payload = data
        return self

    def update(self, data: Dict[str, Any]):
        self._mode = "update"
        self._payload = data
        return self

    def eq(self, column: str, value: Any):
        self._filters.append(lambda row: _matches(row.get(column), value))
        return self

    def is_(self, column: str, value: str):
        assert value == "null"
        self._filters.append(lambda row: row.get(column) is None)
        return self

    def in_(self, column: str, values):
        values = list(values)
        self._filters.append(lambda row: row.get(column) in values)
        return self

    def lt(self, column: str, value: Any):
        self._filters.append(
            lambda row: row.get(column) is not None and _comparable(row[column]) < _comparable(value)
        )
        return self

    def gte(self, column: str, value: Any):
        self._filters.append(
            lambda row: row.get(column) is not None and _comparable(row[column]) >= _comparable(value)
        )
        return self

    def order(self, column: str, desc: bool = False):
        self._order.append((column, desc))
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    async def execute(self):
        # Yield first so concurrent callers interleave, then apply atomically
        await asyncio.sleep(0)
        self.client.calls.append((self.table, self._mode))
        rows = self.client.tables.setdefault(self.table, [])

        if self._mode == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = [self.client.new_row(self.table, item) for item in payload]
            rows.extend(inserted)
            return _Result(copy.deepcopy(inserted))

        matched = [row for row in rows if all(f(row) for f in self._filters)]

        if self._mode == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return _Result(copy.deepcopy(matched))

        for column, desc in reversed(self._order):
            matched.sort(key=lambda row: _comparable(row.get(column)), reverse=desc)
        if self._range is not None:
            start, end = self._range
            matched = matched[start : end + 1]
        if self._limit is not None:
            matched = matched[: self._limit]
        return _Result(copy.deepcopy(matched), count=len(matched))


class FakeRpc:
    """Postgres function call; the body runs atomically after one yield."""

    def __init__(self, client: "FakeSupabaseClient", name: str, params: Dict[str, Any]):
        self.client = client
        self.name = name
        self.params = params

    async def execute(self):
        await asyncio.sleep(0)
        self.client.calls.append((self.name, "rpc"))
        handler = getattr(self.client, f"_rpc_{self.name}")
        return _Result(copy.deepcopy(handler(**self.params)))


class FakeSupabaseClient:
    """In-memory stand-in for the async Supabase client."""

    INT_ID_TABLES = {"point_records"}

    def __init__(self):
        self.tables: Dict[str, List[dict]] = {}
        self.calls: List[tuple] = []
        self._next_int_id = 1

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def new_row(self, table: str, data: dict) -> dict:
        row = copy.deepcopy(data)
        if row.get("id") is None:
            if table in self.INT_ID_TABLES:
                row["id"] = self._next_int_id
                self._next_int_id += 1
            else:
                row["id"] = str(uuid.uuid4())
        if row.get("created_at") is None:
            row["created_at"] = datetime.now(UTC).isoformat()
        return row

    def seed(self, table: str, *rows: dict) -> None:
        for row in rows:
            self.tables.setdefault(table, []).append(self.new_row(table, row))

    def row(self, table: str, row_id: Any) -> dict:
        for row in self.tables.get(table, []):
            if row["id"] == row_id:
                return row
        raise KeyError(row_id)

    def rpc(self, name: str, params: Dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)

    def _rpc_apply_user_ledger(
        self,
        p_user_id,
        p_points_delta,
        p_type,
        p_reason,
        p_order_no,
        p_counts_lifetime,
        p_spent_delta,
        p_idempotency_key,
        p_signed_in_at,
        p_sign_in_count,
    ) -> dict:
        user = next((row for row in self.tables.get("users", []) if row["id"] == p_user_id), None)
        if user is None:
            return {"status": "not_found", "user": None, "record": None}

        keys = self.tables.setdefault("ledger_keys", [])
        if p_idempotency_key is not None and any(k["key"] == p_idempotency_key for k in keys):
            record = next(
                (
                    row
                    for row in self.tables.get("point_records", [])
                    if row.get("idempotency_key") == p_idempotency_key
                ),
                None,
            )
            return {"status": "duplicate", "user": user, "record": record}

        points = user.get("points", 0) + p_points_delta
        if points < 0:
            return {"status": "insufficient", "user": user, "record": None}

        user["points"] = points
        if p_counts_lifetime and p_points_delta > 0:
            user["total_points"] = user.get("total_points", 0) + p_points_delta
        total_spent = Decimal(str(user.get("total_spent") or "0")) + Decimal(p_spent_delta)
        user["total_spent"] = str(total_spent.quantize(Decimal("0.01")))
        user["level"] = calculate_user_level(total_spent).value
        if p_signed_in_at is not None:
            user["last_sign_in_at"] = p_signed_in_at
            user["sign_in_count"] = p_sign_in_count
        if p_idempotency_key is not None:
            keys.append({"key": p_idempotency_key, "user_id": p_user_id})

        record = None
        if p_points_delta != 0:
            record = self.new_row(
                "point_records",
                {
                    "user_id": p_user_id,
                    "type": p_type,
                    "points": p_points_delta,
                    "reason": p_reason,
                    "balance": points,
                    "order_no": p_order_no,
                    "idempotency_key": p_idempotency_key,
                },
            )
            self.tables.setdefault("point_records", []).append(record)
        return {"status": "applied", "user": user, "record": record}


# ==================== FAKE GATEWAY ====================


class FakeGatewayServer:
    """httpx MockTransport handler speaking the signed XML protocol."""

    def __init__(self, pay_key: str = PAY_KEY):
        self.pay_key = pay_key
        self.requests: List[tuple] = []
        self.responses: Dict[str, Any] = {}

    def signed_xml(self, fields: Dict[str, Any]) -> str:
        payload = dict(fields)
        payload["sign"] = sign_params(payload, self.pay_key)
        return build_xml(payload)

    def respond(self, path: str, fields_or_callable) -> None:
        self.responses[path] = fields_or_callable

    def paths(self) -> List[str]:
        return [path for path, _ in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        params = parse_xml(request.content)
        self.requests.append((request.url.path, params))
        response = self.responses.get(request.url.path)
        if response is None:
            return httpx.Response(404, text="not found")
        if callable(response):
            response = response(params)
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, text=self.signed_xml(response))


class RecordingReporter(FailureReporter):
    """FailureReporter that keeps the reported titles for assertions."""

    def __init__(self):
        super().__init__()
        self.reports: List[tuple] = []

    async def report(self, title, error=None, severity="error", metadata=None):
        self.reports.append((title, error))
        return await super().report(title, error, severity, metadata)


# ==================== FIXTURES ====================


@pytest.fixture
def gateway_config():
    return GatewayConfig(
        app_id="wx-test-app",
        mch_id="1900000001",
        pay_key=PAY_KEY,
        notify_url="https://shop.test/api/payment/notify",
        refund_notify_url="https://shop.test/api/payment/refund-notify",
        api_url=GATEWAY_BASE_URL,
    )


@pytest.fixture
def settings(gateway_config):
    return Settings(gateway=gateway_config, cron_secret="test_cron_secret")


@pytest.fixture
def fake_client():
    return FakeSupabaseClient()


@pytest.fixture
def db(fake_client):
    return Database(fake_client)


@pytest.fixture
def gateway_server():
    return FakeGatewayServer()


@pytest.fixture
def gateway(gateway_config, gateway_server):
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(gateway_server.handler),
        base_url=GATEWAY_BASE_URL,
    )
    return PaymentGateway(gateway_config, http_client=http_client)


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def services(settings, db, gateway, reporter):
    return build_services(settings, db, gateway=gateway, reporter=reporter)


@pytest.fixture
def catalog(fake_client):
    """Merchant with three dishes and a user holding 500 points."""
    fake_client.seed(
        "merchants",
        {
            "id": "merchant-1",
            "name": "Noodle Bar",
            "status": "active",
            "delivery_fee": "5.00",
            "free_delivery_threshold": "200.00",
            "min_order_amount": "20.00",
        },
    )
    fake_client.seed(
        "dishes",
        {
            "id": "dish-noodles",
            "merchant_id": "merchant-1",
            "name": "Beef Noodles",
            "price": "40.00",
            "status": "active",
            "stock": 10,
            "specifications": [{"id": "large", "name": "Large", "price": "45.00"}],
            "addons": [{"id": "egg", "name": "Egg", "price": "2.00"}],
            "images": ["https://cdn.test/noodles.jpg"],
        },
        {
            "id": "dish-tea",
            "merchant_id": "merchant-1",
            "name": "Iced Tea",
            "price": "3.00",
            "status": "active",
            "stock": -1,
            "addons": [{"id": "lemon", "name": "Lemon", "price": "2.00"}],
        },
        {
            "id": "dish-soup",
            "merchant_id": "merchant-1",
            "name": "Soup",
            "price": "12.00",
            "status": "active",
            "stock": 1,
        },
    )
    fake_client.seed(
        "users",
        {
            "id": "user-1",
            "openid": "openid-user-1",
            "level": "bronze",
            "points": 500,
            "total_points": 500,
            "total_spent": "0.00",
            "sign_in_count": 0,
            "last_sign_in_at": None,
        },
    )
    return fake_client
