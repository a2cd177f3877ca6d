# storefront/domain/errors.py
"""Error taxonomy shared by the cart and checkout services.

Cart errors are local and recoverable: the cart is left in its prior state.
Checkout errors are surfaced to the caller and never retried on its behalf.
"""
from dataclasses import dataclass


class StorefrontError(Exception):
    """Base class for every error raised by the service."""

    def __init__(self, message: str, *args: object) -> None:
        super().__init__(message, *args)
        self.message = message


# cart


class ValidationError(StorefrontError, ValueError):
    """Malformed input, rejected before any mutation."""


class StockConflict(StorefrontError, ValueError):
    """Requested quantity exceeds the known stock of the product."""

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"Requested quantity {requested} for product {product_id} "
            f"exceeds available stock ({available})"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class PersistenceCorrupt(StorefrontError):
    """Stored cart could not be read back; it is discarded."""


class PersistenceWriteFailed(StorefrontError):
    """Cart could not be written; in-memory state stays authoritative."""


# checkout


class ProviderError(StorefrontError):
    """Provider call failed. Raised by adapters only, never leaves the coordinator."""

    def __init__(self, message: str, code: str = "provider_error", transient: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.transient = transient


class CheckoutInitiationFailed(StorefrontError):
    """Provider order could not be created; no order row exists."""


class ProviderUnavailable(StorefrontError):
    """Provider could not be reached during capture; the order stays pending."""


class PaymentOutcomeError(StorefrontError):
    def __init__(self, message: str, order_id: str, raw_status: str | None = None, replayed: bool = False) -> None:
        super().__init__(message)
        self.order_id = order_id
        self.raw_status = raw_status
        self.replayed = replayed


class PaymentDeclined(PaymentOutcomeError):
    """Provider declined the capture, the order was cancelled."""


class PaymentCancelled(PaymentOutcomeError):
    """Shopper cancelled at the provider, the order was cancelled."""


class OrderNotFound(StorefrontError):
    def __init__(self, reference: str) -> None:
        super().__init__(f"Order {reference} not found")
        self.reference = reference


class InvalidTransition(StorefrontError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Transition '{current} -> {target}' is not allowed")
        self.current = current
        self.target = target


class CaptureInProgress(StorefrontError):
    """Another caller holds the capture lock for this order."""


# notices (not errors)


@dataclass(frozen=True)
class StockClamped:
    product_id: str
    requested: int
    granted: int

    kind = "stock_clamped"


@dataclass(frozen=True)
class IdempotencyShortCircuit:
    order_id: str
    status: str

    kind = "idempotency_short_circuit"
