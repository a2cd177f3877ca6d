# storefront/services/payments/stripe_adapter.py
import hashlib
import hmac
import json
import time
from decimal import Decimal
from typing import Mapping

import requests

from storefront.domain.errors import ProviderError
from storefront.domain.payment import CaptureResult, FailureReason, ProviderOrder, WebhookEvent, WebhookKind
from storefront.services.payments.base import PaymentProviderAdapter
from storefront.utils.settings import STRIPE_API_URL, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300

# statusy PaymentIntent ktore znacza ze klient jeszcze nie zaakceptowal platnosci
_NOT_APPROVED = {"requires_payment_method", "requires_confirmation", "requires_action"}

_WEBHOOK_KINDS = {
    "payment_intent.amount_capturable_updated": WebhookKind.APPROVED,
    "payment_intent.succeeded": WebhookKind.APPROVED,
    "payment_intent.canceled": WebhookKind.CANCELLED,
    "payment_intent.payment_failed": WebhookKind.FAILED,
}


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class StripeAdapter(PaymentProviderAdapter):
    """PaymentIntent z capture_method=manual: create -> confirm w przegladarce -> capture."""

    name = "stripe"

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        base_url: str | None = None,
        session: requests.Session | None = None,
    ):
        super().__init__(base_url or STRIPE_API_URL, session=session)
        self.secret_key = secret_key if secret_key is not None else STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else STRIPE_WEBHOOK_SECRET

    def create_order(self, amount: Decimal, currency: str, cart_ref: str) -> ProviderOrder:
        status, body = self._request(
            "POST",
            "/v1/payment_intents",
            auth=(self.secret_key, ""),
            headers={"Idempotency-Key": f"create-{cart_ref}"},
            data={
                "amount": to_minor_units(amount),
                "currency": currency.lower(),
                "capture_method": "manual",
                "automatic_payment_methods[enabled]": "true",
                "metadata[cart_ref]": cart_ref,
            },
        )
        if status >= 400:
            raise self._error(status, body)

        intent_id = body.get("id") or ""
        if not intent_id:
            raise ProviderError("Stripe returned an empty payment intent id", code="empty_id")

        return ProviderOrder(
            id=intent_id,
            raw_status=str(body.get("status", "")),
            client_secret=body.get("client_secret"),
        )

    def capture(self, provider_order_id: str) -> CaptureResult:
        status, body = self._request(
            "POST",
            f"/v1/payment_intents/{provider_order_id}/capture",
            auth=(self.secret_key, ""),
        )
        if status < 400:
            return self._result_from_intent(body)

        error = body.get("error") or {}
        if error.get("type") == "card_error":
            return CaptureResult(False, None, error.get("decline_code") or error.get("code") or "card_error", FailureReason.DECLINED)

        # intent juz przechwycony albo anulowany (np. wyscig z webhookiem)
        if error.get("code") == "payment_intent_unexpected_state" and isinstance(error.get("payment_intent"), dict):
            return self._result_from_intent(error["payment_intent"])

        raise self._error(status, body)

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        if self.webhook_secret:
            self._verify_signature(body, headers.get("stripe-signature") or headers.get("Stripe-Signature") or "")

        try:
            event = json.loads(body)
        except ValueError:
            raise ProviderError("Stripe webhook body is not JSON", code="bad_webhook")

        event_type = str(event.get("type", ""))
        obj = (event.get("data") or {}).get("object") or {}
        return WebhookEvent(
            kind=_WEBHOOK_KINDS.get(event_type, WebhookKind.IGNORED),
            provider_order_id=obj.get("id"),
            raw_type=event_type,
            payload=event,
        )

    def _verify_signature(self, body: bytes, header: str) -> None:
        parts = dict(p.split("=", 1) for p in header.split(",") if "=" in p)
        timestamp, signature = parts.get("t"), parts.get("v1")
        if not timestamp or not signature:
            raise ProviderError("Missing Stripe signature", code="bad_signature")

        signed = f"{timestamp}.".encode("utf-8") + body
        expected = hmac.new(self.webhook_secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(expected, signature):
            raise ProviderError("Invalid Stripe signature", code="bad_signature")
        if abs(time.time() - int(timestamp)) > SIGNATURE_TOLERANCE_SECONDS:
            raise ProviderError("Stripe signature timestamp outside tolerance", code="bad_signature")

    @staticmethod
    def _result_from_intent(intent: dict) -> CaptureResult:
        raw = str(intent.get("status", ""))
        if raw == "succeeded":
            return CaptureResult(True, intent.get("latest_charge") or intent.get("id"), raw)
        if raw == "canceled":
            return CaptureResult(False, None, raw, FailureReason.CANCELLED)
        if raw in _NOT_APPROVED:
            raise ProviderError(f"Payment intent not approved yet ({raw})", code="not_approved")
        raise ProviderError(f"Payment intent in unexpected state {raw!r}", code="unexpected_state", transient=True)

    @staticmethod
    def _error(status: int, body: dict) -> ProviderError:
        error = body.get("error") or {}
        message = error.get("message") or f"Stripe responded with HTTP {status}"
        return ProviderError(message, code=error.get("code") or error.get("type") or f"http_{status}", transient=status >= 500)
