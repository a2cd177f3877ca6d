# storefront/services/order_coordinator.py
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel
from storefront.data.models.order_item import OrderItemModel
from storefront.domain.cart import CENTS, Cart
from storefront.domain.errors import (
    CaptureInProgress,
    CheckoutInitiationFailed,
    IdempotencyShortCircuit,
    InvalidTransition,
    OrderNotFound,
    PaymentCancelled,
    PaymentDeclined,
    ProviderError,
    ProviderUnavailable,
    ValidationError,
)
from storefront.domain.order_status import OrderStatus, can_transition
from storefront.domain.payment import (
    ApprovalRequest,
    CaptureResult,
    FailureReason,
    IntentStatus,
    PaymentIntent,
    WebhookEvent,
    WebhookKind,
)
from storefront.repos.order_repo import OrderRepo
from storefront.services.cart_store import CartStore
from storefront.services.lock_service import LockService
from storefront.services.notification_service import NotificationService
from storefront.services.payments import PaymentProviderAdapter, get_adapter
from storefront.utils.settings import DEFAULT_CURRENCY, PENDING_ORDER_TTL_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

PENDING = OrderStatus.PENDING_PAYMENT.value


@dataclass
class CheckoutStarted:
    order: OrderModel
    intent: PaymentIntent
    approval: ApprovalRequest


@dataclass
class CheckoutResult:
    order: OrderModel
    capture: CaptureResult
    intent: PaymentIntent
    replayed: bool = False


class OrderCoordinator:
    """
    Checkout w dwoch fazach, niezalezny od dostawcy platnosci.

    1. create_order: kwota liczona od nowa z zamrozonych cen snapshotu,
       zamowienie w pending_payment dopiero gdy dostawca zwroci id
    2. capture: lock na zamowienie + sprawdzenie statusu przed akcja,
       powtorny capture tego samego id zwraca zapisany wynik bez wolania dostawcy

    Jedynym pisarzem statusu zamowienia jest ten serwis.
    """

    def __init__(
        self,
        db: Session,
        lock_service: LockService,
        adapters: Mapping[str, PaymentProviderAdapter] | None = None,
        notification_service: NotificationService | None = None,
    ):
        self.repo = OrderRepo(db)
        self.lock_service = lock_service
        self.adapters = adapters
        self.notification_service = notification_service or NotificationService()

    def adapter(self, provider: str) -> PaymentProviderAdapter:
        if self.adapters is None:
            return get_adapter(provider)
        adapter = self.adapters.get((provider or "").strip().lower())
        if adapter is None:
            raise ValidationError(f"Unsupported payment provider: {provider!r}")
        return adapter

    # query

    def get_order(self, order_id: str, user_id: str | None) -> OrderModel:
        order = self.repo.get_order(order_id)
        if not order:
            raise OrderNotFound(order_id)
        if order.user_id is not None and order.user_id != user_id:
            raise PermissionError("Brak dostępu do zamówienia")
        return order

    # commands

    def create_order(
        self,
        snapshot: Cart,
        provider: str,
        user_id: str | None = None,
        currency: str = DEFAULT_CURRENCY,
        client_amount: Decimal | None = None,
    ) -> CheckoutStarted:
        if snapshot.is_empty:
            raise ValidationError("Cannot check out an empty cart")
        adapter = self.adapter(provider)

        # kwota kliencka tylko do porownania, obciazamy kwota z snapshotu
        amount = sum((i.product.price * i.quantity for i in snapshot.items), Decimal("0.00")).quantize(CENTS)
        if client_amount is not None and Decimal(client_amount).quantize(CENTS) != amount:
            logger.warning(f"Kwota klienta {client_amount} rozni sie od przeliczonej {amount}, uzywam {amount}")

        order_id = str(uuid.uuid4())
        try:
            provider_order = adapter.create_order(amount, currency, cart_ref=order_id)
        except ProviderError as e:
            logger.error(f"{adapter.name}: nie udalo sie utworzyc zamowienia u dostawcy: {e.message}")
            raise CheckoutInitiationFailed(f"Could not start {adapter.name} checkout: {e.message}")

        if not provider_order.id:
            raise CheckoutInitiationFailed(f"{adapter.name} returned an empty order id")

        order = OrderModel(
            id=order_id,
            user_id=user_id,
            total_amount=amount,
            currency=currency.upper(),
            status=PENDING,
            payment_gateway=adapter.name,
            payment_intent_id=provider_order.id,
            items=[
                OrderItemModel(
                    product_id=i.product_id,
                    name=i.product.name,
                    quantity=i.quantity,
                    price_at_purchase=i.product.price,
                )
                for i in snapshot.items
            ],
        )
        try:
            created = self.repo.create_order(order)
        except SQLAlchemyError as e:
            self.repo.rollback()
            logger.error(f"Zapis zamowienia {order_id} nieudany: {e}")
            raise CheckoutInitiationFailed("Could not record the order, nothing was charged")

        logger.info(f"Zamowienie {created.id} utworzone ({adapter.name} {provider_order.id}, {amount} {currency})")

        intent = PaymentIntent(adapter.name, provider_order.id, amount, created.currency, IntentStatus.CREATED)
        return CheckoutStarted(created, intent, adapter.await_approval(provider_order))

    def capture(self, provider: str, provider_order_id: str, cart_store: CartStore | None = None) -> CheckoutResult:
        adapter = self.adapter(provider)
        order = self.repo.get_by_intent(adapter.name, provider_order_id)
        if not order:
            raise OrderNotFound(f"{adapter.name}:{provider_order_id}")

        token = self.lock_service.acquire_order_lock(order.id)
        if token is None:
            raise CaptureInProgress(f"Capture of order {order.id} is already in progress")

        try:
            # status czytany dopiero pod lockiem
            order = self.repo.refresh(order)
            if order.status != PENDING:
                return self._replay(order, cart_store)

            try:
                result = adapter.capture(provider_order_id)
            except ProviderError as e:
                logger.error(f"Capture zamowienia {order.id} nieudany, zostaje pending: {e.message}")
                raise ProviderUnavailable(f"{adapter.name} could not capture the payment: {e.message}")

            if result.success:
                return self._captured(order, result, cart_store)
            return self._failed(order, result)
        finally:
            self.lock_service.release_order_lock(order.id, token)

    def cancel(self, provider: str, provider_order_id: str, reason: FailureReason = FailureReason.CANCELLED) -> OrderModel:
        """Klient porzucil platnosc u dostawcy. Koszyk nie jest ruszany."""
        adapter = self.adapter(provider)
        order = self.repo.get_by_intent(adapter.name, provider_order_id)
        if not order:
            raise OrderNotFound(f"{adapter.name}:{provider_order_id}")

        token = self.lock_service.acquire_order_lock(order.id)
        if token is None:
            raise CaptureInProgress(f"Capture of order {order.id} is already in progress")

        try:
            order = self.repo.refresh(order)
            if order.status != PENDING:
                logger.info(f"Anulowanie zamowienia {order.id} pominiete, status {order.status}")
                return order

            self.repo.transition_status(
                order.id, PENDING, OrderStatus.CANCELLED.value,
                capture_status=reason.value, capture_reason=reason.value,
            )
            self.repo.commit()
            logger.info(f"Zamowienie {order.id} anulowane ({reason.value})")
            return self.repo.refresh(order)
        finally:
            self.lock_service.release_order_lock(order.id, token)

    def handle_webhook(self, provider: str, event: WebhookEvent) -> OrderModel | None:
        """Asynchroniczne potwierdzenie od dostawcy, moze sie scigac z klientem."""
        if event.kind == WebhookKind.IGNORED or not event.provider_order_id:
            logger.info(f"{provider} webhook {event.raw_type} pominiety")
            return None

        try:
            if event.kind == WebhookKind.APPROVED:
                return self.capture(provider, event.provider_order_id).order
            reason = FailureReason.DECLINED if event.kind == WebhookKind.FAILED else FailureReason.CANCELLED
            return self.cancel(provider, event.provider_order_id, reason=reason)
        except (PaymentDeclined, PaymentCancelled) as e:
            logger.info(f"{provider} webhook {event.raw_type}: {e.message}")
            return self.repo.get_order(e.order_id)
        except OrderNotFound:
            logger.warning(f"{provider} webhook {event.raw_type} dla nieznanego zamowienia {event.provider_order_id}")
            return None

    def advance_status(self, order_id: str, target: str) -> OrderModel:
        """Realizacja zamowienia: shipped / delivered / refunded."""
        try:
            target_status = OrderStatus(target)
        except ValueError:
            raise ValidationError(f"Unknown order status: {target!r}")

        order = self.repo.get_order(order_id)
        if not order:
            raise OrderNotFound(order_id)
        if order.status == target_status.value:
            return order

        # processing ustawia tylko udany capture
        if target_status == OrderStatus.PROCESSING or not can_transition(order.status, target_status.value):
            raise InvalidTransition(order.status, target_status.value)

        rowcount = self.repo.transition_status(order.id, order.status, target_status.value)
        if rowcount == 0:
            self.repo.rollback()
            current = self.repo.refresh(order).status
            raise InvalidTransition(current, target_status.value)

        self.repo.commit()
        logger.info(f"Zamowienie {order.id}: {order.status} -> {target_status.value}")
        return self.repo.refresh(order)

    def expire_stale_orders(self, ttl_seconds: int = PENDING_ORDER_TTL_SECONDS, now: datetime | None = None) -> int:
        """Porzucone checkouty: pending_payment starsze niz TTL -> cancelled."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=ttl_seconds)
        expired = 0

        for order in self.repo.list_stale(PENDING, cutoff):
            # capture w toku ma pierwszenstwo
            token = uuid.uuid4().hex
            if not self.lock_service.try_acquire(order.id, token):
                continue
            try:
                expired += self.repo.transition_status(
                    order.id, PENDING, OrderStatus.CANCELLED.value,
                    capture_status="expired", capture_reason="expired",
                )
                self.repo.commit()
            finally:
                self.lock_service.release_order_lock(order.id, token)

        logger.info(f"Wygaszono {expired} porzuconych zamowien")
        return expired

    # reconcile

    def _captured(self, order: OrderModel, result: CaptureResult, cart_store: CartStore | None) -> CheckoutResult:
        rowcount = self.repo.transition_status(
            order.id, PENDING, OrderStatus.PROCESSING.value,
            capture_transaction_id=result.transaction_id,
            capture_status=result.raw_status,
            capture_reason=None,
        )
        if rowcount == 0:
            self.repo.rollback()
            logger.error(f"Platnosc {result.transaction_id} przechwycona, ale status zamowienia {order.id} juz sie zmienil")
            return self._replay(self.repo.refresh(order), cart_store)

        self.repo.commit()
        order = self.repo.refresh(order)
        logger.info(f"Zamowienie {order.id} oplacone ({result.transaction_id}), status processing")

        if cart_store is not None:
            cart_store.clear()
        self.notification_service.send_order_notification(order.user_id, order.id)

        return CheckoutResult(order, result, self._intent(order, IntentStatus.CAPTURED))

    def _failed(self, order: OrderModel, result: CaptureResult):
        reason = result.reason if result.reason == FailureReason.CANCELLED else FailureReason.DECLINED
        self.repo.transition_status(
            order.id, PENDING, OrderStatus.CANCELLED.value,
            capture_transaction_id=result.transaction_id,
            capture_status=result.raw_status,
            capture_reason=reason.value,
        )
        self.repo.commit()
        order = self.repo.refresh(order)
        logger.info(f"Zamowienie {order.id} anulowane, dostawca: {result.raw_status} ({reason.value})")
        raise self._outcome_error(order, result.raw_status, reason)

    def _replay(self, order: OrderModel, cart_store: CartStore | None) -> CheckoutResult:
        notice = IdempotencyShortCircuit(order.id, order.status)
        logger.info(f"Powtorny capture zamowienia {notice.order_id} (status {notice.status}), zwracam zapisany wynik")

        if order.status == OrderStatus.CANCELLED.value:
            try:
                reason = FailureReason(order.capture_reason)
            except ValueError:
                reason = FailureReason.CANCELLED
            raise self._outcome_error(order, order.capture_status, reason, replayed=True)

        # webhook mogl wygrac wyscig: czyscimy tylko koszyk, ktory wciaz jest tym zamowieniem
        if cart_store is not None and not cart_store.cart.is_empty:
            lines = {i.product_id: i.quantity for i in order.items}
            if not cart_store.clear_if_matches(lines):
                logger.info(f"Koszyk zmienil sie po zamowieniu {order.id}, zostawiam go")

        result = CaptureResult(True, order.capture_transaction_id, order.capture_status or "")
        return CheckoutResult(order, result, self._intent(order, IntentStatus.CAPTURED), replayed=True)

    @staticmethod
    def _outcome_error(order: OrderModel, raw_status: str | None, reason: FailureReason, replayed: bool = False):
        if reason == FailureReason.CANCELLED:
            return PaymentCancelled("Payment was cancelled", order.id, raw_status, replayed=replayed)
        return PaymentDeclined("Payment was declined", order.id, raw_status, replayed=replayed)

    @staticmethod
    def _intent(order: OrderModel, status: IntentStatus) -> PaymentIntent:
        return PaymentIntent(order.payment_gateway, order.payment_intent_id, order.total_amount, order.currency, status)
