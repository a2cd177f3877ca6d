# storefront/services/payments/paypal_adapter.py
import json
import time
from decimal import Decimal
from typing import Mapping

import requests

from storefront.domain.errors import ProviderError
from storefront.domain.payment import CaptureResult, FailureReason, ProviderOrder, WebhookEvent, WebhookKind
from storefront.services.payments.base import PaymentProviderAdapter
from storefront.utils.settings import PAYPAL_API_URL, PAYPAL_CLIENT_ID, PAYPAL_CLIENT_SECRET, PAYPAL_WEBHOOK_ID
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

_DECLINE_ISSUES = {"INSTRUMENT_DECLINED", "TRANSACTION_REFUSED", "PAYER_ACTION_REQUIRED"}
_CANCEL_ISSUES = {"ORDER_EXPIRED", "ORDER_VOIDED"}


class PayPalAdapter(PaymentProviderAdapter):
    """Orders v2: create -> approve (popup PayPala) -> capture."""

    name = "paypal"

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        webhook_id: str | None = None,
        base_url: str | None = None,
        session: requests.Session | None = None,
    ):
        super().__init__(base_url or PAYPAL_API_URL, session=session)
        self.client_id = client_id if client_id is not None else PAYPAL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else PAYPAL_CLIENT_SECRET
        self.webhook_id = webhook_id if webhook_id is not None else PAYPAL_WEBHOOK_ID
        self._token: str | None = None
        self._token_expires_at = 0.0

    def create_order(self, amount: Decimal, currency: str, cart_ref: str) -> ProviderOrder:
        status, body = self._request(
            "POST",
            "/v2/checkout/orders",
            headers=self._headers(request_id=f"create-{cart_ref}"),
            json={
                "intent": "CAPTURE",
                "purchase_units": [
                    {
                        "reference_id": cart_ref,
                        "amount": {"currency_code": currency.upper(), "value": f"{amount:.2f}"},
                    }
                ],
            },
        )
        if status >= 400:
            raise self._error(status, body)

        order_id = body.get("id") or ""
        if not order_id:
            raise ProviderError("PayPal returned an empty order id", code="empty_id")

        approve_url = next(
            (link.get("href") for link in body.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        return ProviderOrder(id=order_id, raw_status=str(body.get("status", "")), approve_url=approve_url)

    def capture(self, provider_order_id: str) -> CaptureResult:
        status, body = self._request(
            "POST",
            f"/v2/checkout/orders/{provider_order_id}/capture",
            headers=self._headers(request_id=f"capture-{provider_order_id}"),
        )
        if status < 400:
            return self._result_from_order(body)

        issue = self._issue(body)
        if issue in _DECLINE_ISSUES:
            return CaptureResult(False, None, issue, FailureReason.DECLINED)
        if issue in _CANCEL_ISSUES:
            return CaptureResult(False, None, issue, FailureReason.CANCELLED)
        if issue == "ORDER_ALREADY_CAPTURED":
            # wyscig z webhookiem, pobieramy stan zamowienia
            status, body = self._request(
                "GET",
                f"/v2/checkout/orders/{provider_order_id}",
                headers=self._headers(),
            )
            if status < 400:
                return self._result_from_order(body)
        if issue == "ORDER_NOT_APPROVED":
            raise ProviderError("PayPal order not approved yet", code="not_approved")

        raise self._error(status, body)

    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        try:
            event = json.loads(body)
        except ValueError:
            raise ProviderError("PayPal webhook body is not JSON", code="bad_webhook")

        if self.webhook_id:
            self._verify_signature(event, headers)

        event_type = str(event.get("event_type", ""))
        resource = event.get("resource") or {}

        if event_type == "CHECKOUT.ORDER.APPROVED":
            return WebhookEvent(WebhookKind.APPROVED, resource.get("id"), event_type, event)
        if event_type == "CHECKOUT.ORDER.VOIDED":
            return WebhookEvent(WebhookKind.CANCELLED, resource.get("id"), event_type, event)

        related = ((resource.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id")
        if event_type == "PAYMENT.CAPTURE.COMPLETED":
            return WebhookEvent(WebhookKind.APPROVED, related, event_type, event)
        if event_type in ("PAYMENT.CAPTURE.DENIED", "PAYMENT.CAPTURE.DECLINED"):
            return WebhookEvent(WebhookKind.FAILED, related, event_type, event)

        return WebhookEvent(WebhookKind.IGNORED, resource.get("id"), event_type, event)

    def _verify_signature(self, event: dict, headers: Mapping[str, str]) -> None:
        lowered = {k.lower(): v for k, v in headers.items()}
        status, body = self._request(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            headers=self._headers(),
            json={
                "auth_algo": lowered.get("paypal-auth-algo"),
                "cert_url": lowered.get("paypal-cert-url"),
                "transmission_id": lowered.get("paypal-transmission-id"),
                "transmission_sig": lowered.get("paypal-transmission-sig"),
                "transmission_time": lowered.get("paypal-transmission-time"),
                "webhook_id": self.webhook_id,
                "webhook_event": event,
            },
        )
        if status >= 400 or body.get("verification_status") != "SUCCESS":
            raise ProviderError("Invalid PayPal webhook signature", code="bad_signature")

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        status, body = self._request(
            "POST",
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        token = body.get("access_token")
        if status >= 400 or not token:
            raise ProviderError("PayPal authentication failed", code=str(body.get("error") or f"http_{status}"))

        self._token = token
        # odejmujemy minute zapasu
        self._token_expires_at = time.monotonic() + max(int(body.get("expires_in", 0)) - 60, 0)
        return token

    def _headers(self, request_id: str | None = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        return headers

    @staticmethod
    def _result_from_order(order: dict) -> CaptureResult:
        raw = str(order.get("status", ""))
        captures = []
        for unit in order.get("purchase_units") or []:
            captures.extend(((unit.get("payments") or {}).get("captures")) or [])
        capture = captures[0] if captures else {}
        capture_status = str(capture.get("status", raw))

        if raw == "COMPLETED" and capture_status in ("COMPLETED", "PENDING"):
            return CaptureResult(True, capture.get("id"), capture_status)
        if capture_status in ("DECLINED", "FAILED"):
            return CaptureResult(False, capture.get("id"), capture_status, FailureReason.DECLINED)
        if raw == "VOIDED":
            return CaptureResult(False, None, raw, FailureReason.CANCELLED)
        raise ProviderError(f"PayPal order in unexpected state {raw!r}", code="unexpected_state", transient=True)

    @staticmethod
    def _issue(body: dict) -> str:
        details = body.get("details") or []
        if details and isinstance(details[0], dict):
            return str(details[0].get("issue", ""))
        return str(body.get("name", ""))

    def _error(self, status: int, body: dict) -> ProviderError:
        message = body.get("message") or f"PayPal responded with HTTP {status}"
        return ProviderError(message, code=self._issue(body) or f"http_{status}", transient=status >= 500)
