# storefront/domain/payment.py
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict


class IntentStatus(str, Enum):
    CREATED = "created"
    APPROVED = "approved"
    CAPTURED = "captured"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FailureReason(str, Enum):
    DECLINED = "declined"
    CANCELLED = "cancelled"
    PROVIDER_ERROR = "provider_error"


class WebhookKind(str, Enum):
    APPROVED = "approved"
    CANCELLED = "cancelled"
    FAILED = "failed"
    IGNORED = "ignored"


@dataclass
class PaymentIntent:
    """Provider side order for one checkout attempt. Never stored long term."""

    provider: str
    provider_order_id: str
    amount: Decimal
    currency: str
    status: IntentStatus = IntentStatus.CREATED


@dataclass(frozen=True)
class ProviderOrder:
    id: str
    raw_status: str
    client_secret: str | None = None
    approve_url: str | None = None


@dataclass(frozen=True)
class ApprovalRequest:
    """What the client needs to run the provider hosted approval step."""

    provider: str
    provider_order_id: str
    client_secret: str | None = None
    approve_url: str | None = None

    def as_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass(frozen=True)
class CaptureResult:
    success: bool
    transaction_id: str | None
    raw_status: str
    reason: FailureReason | None = None


@dataclass(frozen=True)
class WebhookEvent:
    kind: WebhookKind
    provider_order_id: str | None
    raw_type: str
    payload: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)
