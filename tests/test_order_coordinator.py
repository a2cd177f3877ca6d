import threading
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront.data.database import Base
from storefront.data.models import OrderModel
from storefront.domain.errors import (
    CaptureInProgress,
    CheckoutInitiationFailed,
    InvalidTransition,
    OrderNotFound,
    PaymentCancelled,
    PaymentDeclined,
    ProviderError,
    ProviderUnavailable,
    ValidationError,
)
from storefront.domain.payment import WebhookEvent, WebhookKind
from storefront.services.cart_store import CartStore
from storefront.services.order_coordinator import OrderCoordinator
from storefront.services.persistence_codec import PersistenceCodec
from tests.conftest import FakeAdapter, FakeRedisClient, make_product


@pytest.fixture
def filled_cart(cart_store):
    # 2 x 20.00 + 1 x 15.00 = 55.00
    cart_store.add_item(make_product("A", price="20.00", stock=10), 2)
    cart_store.add_item(make_product("B", price="15.00", stock=10), 1)
    return cart_store


def start_checkout(coordinator, cart_store, provider="stripe", **kwargs):
    return coordinator.create_order(cart_store.snapshot(), provider, **kwargs)


def test_create_order_uses_snapshot_total_not_client_amount(coordinator, filled_cart, adapters):
    started = start_checkout(coordinator, filled_cart, client_amount=Decimal("1.00"))

    assert started.order.total_amount == Decimal("55.00")
    assert started.order.status == "pending_payment"
    assert started.intent.amount == Decimal("55.00")
    assert adapters["stripe"].created[0][0] == Decimal("55.00")
    assert adapters["stripe"].created[0][2] == started.order.id
    assert started.approval.client_secret == "stripe_order_1_secret"
    assert {i.product_id: i.quantity for i in started.order.items} == {"A": 2, "B": 1}


def test_create_order_empty_cart_rejected(coordinator, cart_store, adapters):
    with pytest.raises(ValidationError):
        start_checkout(coordinator, cart_store)
    assert adapters["stripe"].created == []


def test_create_order_unknown_provider(coordinator, filled_cart):
    with pytest.raises(ValidationError):
        start_checkout(coordinator, filled_cart, provider="bitcoin")


def test_provider_failure_creates_no_order(coordinator, filled_cart, adapters, db_session):
    adapters["stripe"].create_error = ProviderError("boom", transient=True)

    with pytest.raises(CheckoutInitiationFailed):
        start_checkout(coordinator, filled_cart)

    assert db_session.query(OrderModel).count() == 0
    assert filled_cart.cart.total_items == 3


def test_empty_provider_id_creates_no_order(coordinator, filled_cart, adapters, db_session):
    adapters["stripe"].create_id = ""

    with pytest.raises(CheckoutInitiationFailed):
        start_checkout(coordinator, filled_cart)

    assert db_session.query(OrderModel).count() == 0


def test_successful_capture_marks_processing_and_clears_cart(coordinator, filled_cart, adapters, notifications):
    started = start_checkout(coordinator, filled_cart, user_id="u1")

    result = coordinator.capture("stripe", started.intent.provider_order_id, cart_store=filled_cart)

    assert result.order.status == "processing"
    assert result.order.capture_transaction_id == "txn_1"
    assert result.replayed is False
    assert filled_cart.cart.is_empty
    assert notifications.sent == [("u1", started.order.id)]


def test_double_capture_calls_provider_once(coordinator, filled_cart, adapters):
    started = start_checkout(coordinator, filled_cart)
    provider_id = started.intent.provider_order_id

    first = coordinator.capture("stripe", provider_id, cart_store=filled_cart)
    second = coordinator.capture("stripe", provider_id, cart_store=filled_cart)

    assert adapters["stripe"].captured == [provider_id]
    assert second.replayed is True
    assert second.order.status == "processing"
    assert second.capture.transaction_id == first.capture.transaction_id


def test_declined_capture_cancels_and_keeps_cart(coordinator, filled_cart, adapters):
    started = start_checkout(coordinator, filled_cart)
    adapters["stripe"].decline("insufficient_funds")

    with pytest.raises(PaymentDeclined) as exc:
        coordinator.capture("stripe", started.intent.provider_order_id, cart_store=filled_cart)

    assert exc.value.order_id == started.order.id
    assert exc.value.raw_status == "insufficient_funds"
    assert coordinator.get_order(started.order.id, None).status == "cancelled"
    assert filled_cart.cart.total_items == 3


def test_replayed_decline_raises_without_provider_call(coordinator, filled_cart, adapters):
    started = start_checkout(coordinator, filled_cart)
    adapters["stripe"].decline()
    with pytest.raises(PaymentDeclined):
        coordinator.capture("stripe", started.intent.provider_order_id)

    with pytest.raises(PaymentDeclined) as exc:
        coordinator.capture("stripe", started.intent.provider_order_id)

    assert exc.value.replayed is True
    assert len(adapters["stripe"].captured) == 1


def test_cancelled_at_provider(coordinator, filled_cart, adapters):
    started = start_checkout(coordinator, filled_cart, provider="paypal")
    adapters["paypal"].user_cancel()

    with pytest.raises(PaymentCancelled):
        coordinator.capture("paypal", started.intent.provider_order_id, cart_store=filled_cart)

    assert filled_cart.cart.total_items == 3


def test_provider_unavailable_keeps_order_pending(coordinator, filled_cart, adapters):
    started = start_checkout(coordinator, filled_cart)
    adapters["stripe"].capture_error = ProviderError("timeout", code="network", transient=True)

    with pytest.raises(ProviderUnavailable):
        coordinator.capture("stripe", started.intent.provider_order_id, cart_store=filled_cart)

    assert coordinator.get_order(started.order.id, None).status == "pending_payment"
    assert filled_cart.cart.total_items == 3

    # lock zwolniony, kolejna proba przechodzi
    adapters["stripe"].capture_error = None
    result = coordinator.capture("stripe", started.intent.provider_order_id, cart_store=filled_cart)
    assert result.order.status == "processing"


def test_capture_while_locked_raises(coordinator, filled_cart, fake_redis, adapters):
    started = start_checkout(coordinator, filled_cart)
    fake_redis.data[f"order:{started.order.id}:capture:lock"] = "someone-else"

    with pytest.raises(CaptureInProgress):
        coordinator.capture("stripe", started.intent.provider_order_id)

    assert adapters["stripe"].captured == []
    assert fake_redis.data[f"order:{started.order.id}:capture:lock"] == "someone-else"


def test_lock_released_after_capture(coordinator, filled_cart, fake_redis):
    started = start_checkout(coordinator, filled_cart)

    coordinator.capture("stripe", started.intent.provider_order_id)

    assert f"order:{started.order.id}:capture:lock" not in fake_redis.data


def test_capture_unknown_provider_order(coordinator):
    with pytest.raises(OrderNotFound):
        coordinator.capture("stripe", "pi_missing")


def test_cancel_is_idempotent(coordinator, filled_cart, adapters):
    started = start_checkout(coordinator, filled_cart)

    first = coordinator.cancel("stripe", started.intent.provider_order_id)
    second = coordinator.cancel("stripe", started.intent.provider_order_id)

    assert first.status == second.status == "cancelled"
    assert first.capture_reason == "cancelled"
    assert adapters["stripe"].captured == []


def test_cancel_after_capture_keeps_processing(coordinator, filled_cart):
    started = start_checkout(coordinator, filled_cart)
    coordinator.capture("stripe", started.intent.provider_order_id)

    order = coordinator.cancel("stripe", started.intent.provider_order_id)

    assert order.status == "processing"


def test_webhook_approval_then_client_capture_replays(coordinator, filled_cart, adapters):
    started = start_checkout(coordinator, filled_cart)
    provider_id = started.intent.provider_order_id

    order = coordinator.handle_webhook("stripe", WebhookEvent(WebhookKind.APPROVED, provider_id, "payment_intent.succeeded"))
    result = coordinator.capture("stripe", provider_id, cart_store=filled_cart)

    assert order.status == "processing"
    assert result.replayed is True
    assert filled_cart.cart.is_empty
    assert adapters["stripe"].captured == [provider_id]


def test_webhook_failure_cancels_with_declined_reason(coordinator, filled_cart):
    started = start_checkout(coordinator, filled_cart)

    order = coordinator.handle_webhook(
        "stripe", WebhookEvent(WebhookKind.FAILED, started.intent.provider_order_id, "payment_intent.payment_failed")
    )

    assert order.status == "cancelled"
    assert order.capture_reason == "declined"


def test_webhook_declined_capture_returns_cancelled_order(coordinator, filled_cart, adapters):
    started = start_checkout(coordinator, filled_cart)
    adapters["stripe"].decline()

    order = coordinator.handle_webhook(
        "stripe", WebhookEvent(WebhookKind.APPROVED, started.intent.provider_order_id, "payment_intent.amount_capturable_updated")
    )

    assert order.status == "cancelled"


@pytest.mark.parametrize(
    "event",
    [
        WebhookEvent(WebhookKind.IGNORED, "pi_1", "charge.refunded"),
        WebhookEvent(WebhookKind.APPROVED, None, "payment_intent.succeeded"),
        WebhookEvent(WebhookKind.APPROVED, "pi_unknown", "payment_intent.succeeded"),
    ],
)
def test_webhook_without_matching_order_is_noop(coordinator, event):
    assert coordinator.handle_webhook("stripe", event) is None


def test_advance_status_through_fulfilment(coordinator, filled_cart):
    started = start_checkout(coordinator, filled_cart)
    coordinator.capture("stripe", started.intent.provider_order_id)

    assert coordinator.advance_status(started.order.id, "shipped").status == "shipped"
    assert coordinator.advance_status(started.order.id, "shipped").status == "shipped"
    assert coordinator.advance_status(started.order.id, "delivered").status == "delivered"

    with pytest.raises(InvalidTransition):
        coordinator.advance_status(started.order.id, "refunded")


def test_advance_status_cannot_skip_payment(coordinator, filled_cart):
    started = start_checkout(coordinator, filled_cart)

    with pytest.raises(InvalidTransition):
        coordinator.advance_status(started.order.id, "processing")
    with pytest.raises(InvalidTransition):
        coordinator.advance_status(started.order.id, "shipped")
    with pytest.raises(ValidationError):
        coordinator.advance_status(started.order.id, "lost")


def test_get_order_checks_owner(coordinator, filled_cart):
    started = start_checkout(coordinator, filled_cart, user_id="u1")

    assert coordinator.get_order(started.order.id, "u1").id == started.order.id
    with pytest.raises(PermissionError):
        coordinator.get_order(started.order.id, "u2")
    with pytest.raises(OrderNotFound):
        coordinator.get_order("missing", "u1")


def test_expire_stale_orders(coordinator, filled_cart, db_session, fake_redis):
    stale = start_checkout(coordinator, filled_cart).order
    locked = start_checkout(coordinator, filled_cart).order
    fresh = start_checkout(coordinator, filled_cart).order
    old = datetime.now(timezone.utc) - timedelta(days=2)
    stale.created_at = old
    locked.created_at = old
    db_session.commit()
    fake_redis.data[f"order:{locked.id}:capture:lock"] = "capture-running"

    expired = coordinator.expire_stale_orders(ttl_seconds=3600)

    assert expired == 1
    assert coordinator.get_order(stale.id, None).status == "cancelled"
    assert coordinator.get_order(stale.id, None).capture_reason == "expired"
    assert coordinator.get_order(locked.id, None).status == "pending_payment"
    assert coordinator.get_order(fresh.id, None).status == "pending_payment"


def test_repeated_capture_keeps_cart_refilled_after_payment(coordinator, filled_cart, adapters):
    started = start_checkout(coordinator, filled_cart)
    provider_id = started.intent.provider_order_id
    coordinator.capture("stripe", provider_id, cart_store=filled_cart)
    assert filled_cart.cart.is_empty

    filled_cart.add_item(make_product("C", price="5.00"), 1)
    result = coordinator.capture("stripe", provider_id, cart_store=filled_cart)

    assert result.replayed is True
    assert [i.product_id for i in filled_cart.cart.items] == ["C"]
    assert adapters["stripe"].captured == [provider_id]


class SlowAdapter(FakeAdapter):
    def __init__(self, name, delay):
        super().__init__(name)
        self.delay = delay
        self._calls_lock = threading.Lock()

    def capture(self, provider_order_id):
        with self._calls_lock:
            self.captured.append(provider_order_id)
        time.sleep(self.delay)
        return self.capture_result


def test_concurrent_captures_charge_once(tmp_path, lock_service, notifications):
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'orders.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    Base.metadata.create_all(bind=file_engine)
    Session = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    adapter = SlowAdapter("stripe", delay=0.5)
    adapters = {"stripe": adapter}

    with Session() as db:
        store = CartStore(PersistenceCodec(FakeRedisClient(), "myShopCart:race"))
        store.add_item(make_product("A", price="20.00"), 2)
        started = OrderCoordinator(db, lock_service, adapters=adapters, notification_service=notifications).create_order(
            store.snapshot(), "stripe"
        )

    barrier = threading.Barrier(2)
    outcomes = []

    def attempt():
        with Session() as db:
            coordinator = OrderCoordinator(db, lock_service, adapters=adapters, notification_service=notifications)
            barrier.wait()
            try:
                result = coordinator.capture("stripe", started.intent.provider_order_id)
                outcomes.append(("replayed" if result.replayed else "captured", result.order.status))
            except CaptureInProgress:
                outcomes.append(("in_progress", None))

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=15)

    try:
        assert adapter.captured == [started.intent.provider_order_id]
        assert sorted(o[0] for o in outcomes) in (["captured", "in_progress"], ["captured", "replayed"])
        assert ("captured", "processing") in outcomes
        assert len(notifications.sent) == 1
        with Session() as db:
            assert db.get(OrderModel, started.order.id).status == "processing"
    finally:
        Base.metadata.drop_all(bind=file_engine)
        file_engine.dispose()
