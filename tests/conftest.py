"""Shared pytest fixtures: in-memory Redis, SQLite session, fake payment providers."""
from __future__ import annotations

import os
import threading

# must be set before storefront.utils.settings is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CART_WRITE_BEHIND"] = "0"
os.environ["CAPTURE_LOCK_WAIT_SECONDS"] = "0.2"
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["PAYPAL_WEBHOOK_ID"] = ""

from dataclasses import dataclass, field
from decimal import Decimal

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from storefront.data.database import Base, SessionLocal, engine
from storefront.domain.cart import ProductSnapshot
from storefront.domain.errors import ProviderError
from storefront.domain.payment import CaptureResult, FailureReason, ProviderOrder, WebhookEvent, WebhookKind
from storefront.services.cart_store import CartStore
from storefront.services.lock_service import LockService
from storefront.services.order_coordinator import OrderCoordinator
from storefront.services.payments.base import PaymentProviderAdapter
from storefront.services.persistence_codec import PersistenceCodec


@dataclass
class FakeRedisClient:
    data: dict[str, str] = field(default_factory=dict)
    expiry: dict[str, int] = field(default_factory=dict)
    fail_writes: bool = False
    set_calls: int = 0
    _mutex: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def ping(self) -> bool:
        return True

    def get(self, key: str):
        return self.data.get(key)

    def set(self, name: str, value: str, nx: bool = False, ex: int | None = None):
        if self.fail_writes:
            raise RedisConnectionError("quota exceeded")
        with self._mutex:
            self.set_calls += 1
            if nx and name in self.data:
                return None
            self.data[name] = value
            if ex is not None:
                self.expiry[name] = ex
            return True

    def delete(self, key: str) -> int:
        existed = 1 if key in self.data else 0
        self.data.pop(key, None)
        self.expiry.pop(key, None)
        return existed

    def eval(self, _script: str, _keys_count: int, key: str, token: str) -> int:
        with self._mutex:
            if self.data.get(key) == token:
                self.data.pop(key, None)
                self.expiry.pop(key, None)
                return 1
            return 0


class FakeAdapter(PaymentProviderAdapter):
    """Provider double: records calls, returns queued outcomes."""

    def __init__(self, name: str):
        super().__init__("http://fake-provider")
        self.name = name
        self.created: list[tuple[Decimal, str, str]] = []
        self.captured: list[str] = []
        self.create_error: ProviderError | None = None
        self.create_id: str | None = None
        self.capture_result = CaptureResult(True, "txn_1", "succeeded")
        self.capture_error: ProviderError | None = None
        self._counter = 0

    def create_order(self, amount, currency, cart_ref):
        self.created.append((amount, currency, cart_ref))
        if self.create_error:
            raise self.create_error
        self._counter += 1
        order_id = self.create_id if self.create_id is not None else f"{self.name}_order_{self._counter}"
        return ProviderOrder(id=order_id, raw_status="created", client_secret=f"{order_id}_secret")

    def capture(self, provider_order_id):
        self.captured.append(provider_order_id)
        if self.capture_error:
            raise self.capture_error
        return self.capture_result

    def parse_webhook(self, body, headers):
        import json

        event = json.loads(body)
        return WebhookEvent(WebhookKind(event["kind"]), event.get("id"), event.get("type", "test"), event)

    def decline(self, raw_status: str = "card_declined"):
        self.capture_result = CaptureResult(False, None, raw_status, FailureReason.DECLINED)

    def user_cancel(self):
        self.capture_result = CaptureResult(False, None, "canceled", FailureReason.CANCELLED)


class FakeNotifications:
    def __init__(self):
        self.sent: list[tuple[str | None, str]] = []

    def send_order_notification(self, user_id, order_id):
        self.sent.append((user_id, order_id))


class FakeProductClient:
    def __init__(self, products: dict[str, ProductSnapshot]):
        self.products = products

    def fetch_product(self, product_id: str) -> ProductSnapshot:
        from storefront.services.product_client import ProductNotFound

        if product_id not in self.products:
            raise ProductNotFound(f"Product {product_id} not found")
        return self.products[product_id]


def make_product(pid: str = "A", price: str = "10.00", stock: int | None = 5, name: str | None = None) -> ProductSnapshot:
    return ProductSnapshot(id=pid, name=name or f"Product {pid}", price=Decimal(price), stock_quantity=stock)


@pytest.fixture
def fake_redis() -> FakeRedisClient:
    return FakeRedisClient()


@pytest.fixture
def codec(fake_redis) -> PersistenceCodec:
    return PersistenceCodec(fake_redis, "myShopCart:test")


@pytest.fixture
def cart_store(codec) -> CartStore:
    return CartStore(codec)


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def adapters() -> dict[str, FakeAdapter]:
    return {"stripe": FakeAdapter("stripe"), "paypal": FakeAdapter("paypal")}


@pytest.fixture
def notifications() -> FakeNotifications:
    return FakeNotifications()


@pytest.fixture
def lock_service(fake_redis) -> LockService:
    return LockService(client=fake_redis)


@pytest.fixture
def coordinator(db_session, lock_service, adapters, notifications) -> OrderCoordinator:
    return OrderCoordinator(db_session, lock_service, adapters=adapters, notification_service=notifications)
