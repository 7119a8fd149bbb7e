"""
Shared fixtures: an in-memory Firestore stand-in, a recording email provider
and a TestClient wired through dependency overrides. Nothing here touches
Firebase, PayPal or an email service.
"""
import copy
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from google.api_core.exceptions import AlreadyExists, NotFound
from google.cloud.firestore_v1 import SERVER_TIMESTAMP

from storefront.config import get_db, settings
from storefront.core.auth import get_principal, get_token_verifier
from storefront.core.deps import get_email_provider, get_paypal_client, get_webhook_verifier
from storefront.integrations.email_provider import EmailSendError
from storefront.main import app
from storefront.schemas.order import OrderState
from storefront.schemas.principal import Principal
from storefront.services.lifecycle import status_fields
from storefront.services.mailer import Mailer
from storefront.services.notifications import ConnectionRegistry, NotificationService
from storefront.services.payment_events import PaymentEventProcessor


# ──────────────────────────────────────────────────────────────────────────────
# In-memory Firestore
# ──────────────────────────────────────────────────────────────────────────────

_MISSING = object()


def _lookup(data: Dict[str, Any], path: str) -> Any:
    cur: Any = data
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


def _matches(data: Dict[str, Any], flt) -> bool:
    value = _lookup(data, flt.field_path)
    if value is _MISSING:
        return False
    op, expected = flt.op_string, flt.value
    if op == "==":
        return value == expected
    if op == "!=":
        return value != expected
    if op == "in":
        return value in expected
    if value is None:
        return False
    if op == "<":
        return value < expected
    if op == "<=":
        return value <= expected
    if op == ">":
        return value > expected
    if op == ">=":
        return value >= expected
    raise NotImplementedError(op)


class FakeSnapshot:
    def __init__(self, reference: "FakeDocument", data: Optional[Dict[str, Any]]):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._data)


class FakeDocument:
    def __init__(self, db: "FakeFirestore", collection: str, doc_id: str):
        self._db = db
        self._collection = collection
        self.id = doc_id

    @property
    def _store(self) -> Dict[str, Dict[str, Any]]:
        return self._db.data.setdefault(self._collection, {})

    def get(self) -> FakeSnapshot:
        return FakeSnapshot(self, self._store.get(self.id))

    def set(self, data: Dict[str, Any], merge: bool = False) -> None:
        resolved = self._db.resolve(data)
        if merge and self.id in self._store:
            self._store[self.id].update(resolved)
        else:
            self._store[self.id] = resolved

    def create(self, data: Dict[str, Any]) -> None:
        if self.id in self._store:
            raise AlreadyExists(f"{self._collection}/{self.id} already exists")
        self.set(data)

    def update(self, data: Dict[str, Any]) -> None:
        if self.id not in self._store:
            raise NotFound(f"{self._collection}/{self.id} not found")
        doc = self._store[self.id]
        for key, value in self._db.resolve(data).items():
            parts = key.split(".")
            cur = doc
            for part in parts[:-1]:
                if not isinstance(cur.get(part), dict):
                    cur[part] = {}
                cur = cur[part]
            cur[parts[-1]] = value

    def delete(self) -> None:
        self._store.pop(self.id, None)


class FakeQuery:
    def __init__(self, db: "FakeFirestore", collection: str, filters=(), order=None, limit=None):
        self._db = db
        self._collection = collection
        self._filters = list(filters)
        self._order = order
        self._limit = limit

    def _copy(self, **kw) -> "FakeQuery":
        args = dict(filters=self._filters, order=self._order, limit=self._limit)
        args.update(kw)
        return FakeQuery(self._db, self._collection, **args)

    def where(self, *, filter) -> "FakeQuery":
        return self._copy(filters=self._filters + [filter])

    def order_by(self, field: str, direction: str = "ASCENDING") -> "FakeQuery":
        return self._copy(order=(field, direction))

    def limit(self, n: int) -> "FakeQuery":
        return self._copy(limit=n)

    def stream(self):
        store = self._db.data.get(self._collection, {})
        rows = [(doc_id, data) for doc_id, data in store.items() if all(_matches(data, f) for f in self._filters)]
        if self._order:
            field, direction = self._order
            rows = [r for r in rows if _lookup(r[1], field) not in (_MISSING, None)]
            rows.sort(key=lambda r: _lookup(r[1], field), reverse=direction == "DESCENDING")
        if self._limit is not None:
            rows = rows[: self._limit]
        for doc_id, _ in rows:
            yield FakeDocument(self._db, self._collection, doc_id).get()

    def get(self) -> List[FakeSnapshot]:
        return list(self.stream())


class FakeCollection(FakeQuery):
    def __init__(self, db: "FakeFirestore", name: str):
        super().__init__(db, name)

    def document(self, doc_id: Optional[str] = None) -> FakeDocument:
        if doc_id is None:
            doc_id = f"{self._collection}-{next(self._db.ids)}"
        return FakeDocument(self._db, self._collection, doc_id)


class FakeFirestore:
    """Just enough of google.cloud.firestore.Client for the repositories."""

    def __init__(self):
        self.data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.ids = itertools.count(1)
        # every server timestamp is 1ms later than the previous one
        self._clock = datetime.now(timezone.utc)

    def server_time(self) -> datetime:
        self._clock += timedelta(milliseconds=1)
        return self._clock

    def resolve(self, data: Dict[str, Any]) -> Dict[str, Any]:
        out = {}
        for key, value in data.items():
            if value is SERVER_TIMESTAMP:
                out[key] = self.server_time()
            elif isinstance(value, dict):
                out[key] = self.resolve(value)
            else:
                out[key] = copy.deepcopy(value)
        return out

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self, name)

    def docs(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self.data.get(collection, {})


# ──────────────────────────────────────────────────────────────────────────────
# Fakes for outbound integrations
# ──────────────────────────────────────────────────────────────────────────────

class RecordingProvider:
    """Email provider that records messages; `fail = True` makes every send fail."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.fail = False

    async def send(self, to, subject, html, text=None, tags=None):
        self.sent.append({"to": to, "subject": subject, "html": html, "tags": tags or {}})
        if self.fail:
            raise EmailSendError("provider unavailable")
        return f"msg-{len(self.sent)}"

    def templates(self) -> List[str]:
        return [m["tags"].get("template") for m in self.sent]


class RecordingConnection:
    def __init__(self, broken: bool = False):
        self.messages: List[str] = []
        self.broken = broken

    async def send_text(self, text: str) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.messages.append(text)


class AuthState:
    def __init__(self):
        self.principal: Optional[Principal] = None

    def login(self, role: str = "staff", uid: Optional[str] = None) -> Principal:
        self.principal = Principal(uid=uid or f"{role}-1", role=role, email=f"{role}@example.com")
        return self.principal


# ──────────────────────────────────────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def provider():
    return RecordingProvider()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def mailer(db, provider):
    return Mailer(db, provider, settings)


@pytest.fixture
def notifier(db, registry):
    return NotificationService(db, registry)


@pytest.fixture
def processor(db, mailer, notifier):
    return PaymentEventProcessor(db, mailer, notifier)


@pytest.fixture
def staff_users(db):
    db.collection("users").document("staff-1").set({"role": "staff", "email": "staff@example.com"})
    db.collection("users").document("admin-1").set({"role": "admin", "email": "admin@example.com"})
    db.collection("users").document("cust-1").set({"role": "customer", "email": "c@example.com"})
    return ["staff-1", "admin-1"]


@pytest.fixture
def make_order(db):
    def _make(state: OrderState = OrderState.AWAITING_PAYMENT, **fields) -> str:
        doc = {
            "order_number": fields.pop("order_number", f"GGD-{len(db.docs('orders')) + 10000000}"),
            **status_fields(state),
            "customer_id": "cust-1",
            "customer_email": "jane@example.com",
            "customer_name": "Jane Citizen",
            "items": [{
                "product_id": "p1", "name": "Roller door spring", "sku": "RDS-1",
                "quantity": 2, "unit_price": "45.00", "line_total": "90.00",
            }],
            "currency": "AUD",
            "subtotal": "90.00",
            "shipping_cost": "10.00",
            "tax_amount": "9.09",
            "total": "100.00",
            "payment_method": "paypal",
            "paypal_order_id": None,
            "paypal_transaction_id": None,
            "paid_at": None,
            "refunded_at": None,
            "shipment": {},
            "dispute": None,
            "created_at": SERVER_TIMESTAMP,
            "updated_at": SERVER_TIMESTAMP,
        }
        doc.update(fields)
        ref = db.collection("orders").document()
        ref.set(doc)
        return ref.id

    return _make


@pytest.fixture
def connection():
    return RecordingConnection


@pytest.fixture
def auth_state():
    return AuthState()


class StubPayPal:
    def __init__(self):
        self.created: List[Dict[str, Any]] = []
        self.capture_result: Dict[str, Any] = {}

    async def create_order(self, order):
        self.created.append(order)
        return {
            "id": "PP-ORDER-1",
            "status": "CREATED",
            "links": [{"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=PP-ORDER-1"}],
        }

    async def capture_order(self, paypal_order_id):
        return self.capture_result


class AcceptingVerifier:
    async def verify(self, headers, body):
        return None


@pytest.fixture
def paypal_stub():
    return StubPayPal()


def _verify_test_token(token: str) -> Principal:
    # "<role>:<uid>" is a valid token in tests
    role, _, uid = token.partition(":")
    if role not in ("customer", "staff", "admin") or not uid:
        raise HTTPException(status_code=401, detail="Invalid token")
    return Principal(uid=uid, role=role)


@pytest.fixture
def client(db, provider, registry, auth_state, paypal_stub):
    def _principal():
        if auth_state.principal is None:
            raise HTTPException(status_code=401, detail="Missing Authorization header.")
        return auth_state.principal

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_email_provider] = lambda: provider
    app.dependency_overrides[get_principal] = _principal
    app.dependency_overrides[get_token_verifier] = lambda: _verify_test_token
    app.dependency_overrides[get_paypal_client] = lambda: paypal_stub
    app.dependency_overrides[get_webhook_verifier] = lambda: AcceptingVerifier()
    previous = app.state.connections
    app.state.connections = registry
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        app.state.connections = previous
