# storefront/services/payments/base.py
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Mapping

import requests

from storefront.domain.errors import ProviderError
from storefront.domain.payment import ApprovalRequest, CaptureResult, ProviderOrder, WebhookEvent
from storefront.utils.settings import PROVIDER_TIMEOUT_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class PaymentProviderAdapter(ABC):
    """
    Wspolny interfejs dla dostawcow platnosci.

    create_order -> zamowienie/intencja po stronie dostawcy
    await_approval -> opis kroku akceptacji w UI dostawcy (dla klienta)
    capture -> obciazenie, wynik zawsze jako CaptureResult albo ProviderError
    """

    name: str = ""

    def __init__(self, base_url: str, session: requests.Session | None = None, timeout: int = PROVIDER_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    @abstractmethod
    def create_order(self, amount: Decimal, currency: str, cart_ref: str) -> ProviderOrder:
        ...

    def await_approval(self, provider_order: ProviderOrder) -> ApprovalRequest:
        return ApprovalRequest(
            provider=self.name,
            provider_order_id=provider_order.id,
            client_secret=provider_order.client_secret,
            approve_url=provider_order.approve_url,
        )

    @abstractmethod
    def capture(self, provider_order_id: str) -> CaptureResult:
        ...

    @abstractmethod
    def parse_webhook(self, body: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        ...

    def _request(self, method: str, path: str, **kwargs: Any) -> tuple[int, dict]:
        """Bez retry, wywolanie dostawcy nigdy nie jest powtarzane za plecami klienta."""
        url = f"{self.base_url}{path}"
        logger.info(f"{self.name} {method} {url}")
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ProviderError(f"{self.name} unreachable: {e}", code="network", transient=True)

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        return resp.status_code, body
