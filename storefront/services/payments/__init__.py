# storefront/services/payments/__init__.py
from typing import Callable, Dict

from storefront.domain.errors import ValidationError
from storefront.services.payments.base import PaymentProviderAdapter
from storefront.services.payments.paypal_adapter import PayPalAdapter
from storefront.services.payments.stripe_adapter import StripeAdapter

PROVIDERS: Dict[str, Callable[[], PaymentProviderAdapter]] = {
    StripeAdapter.name: StripeAdapter,
    PayPalAdapter.name: PayPalAdapter,
}


def get_adapter(name: str) -> PaymentProviderAdapter:
    factory = PROVIDERS.get((name or "").strip().lower())
    if factory is None:
        raise ValidationError(f"Unsupported payment provider: {name!r}")
    return factory()


__all__ = ["PaymentProviderAdapter", "StripeAdapter", "PayPalAdapter", "PROVIDERS", "get_adapter"]
