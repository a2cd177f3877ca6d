# storefront/api/routers/checkout.py
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from storefront.api.deps import get_cart_store, get_coordinator, get_current_user_id
from storefront.domain.errors import (
    CaptureInProgress,
    CheckoutInitiationFailed,
    OrderNotFound,
    PaymentOutcomeError,
    ProviderUnavailable,
    ValidationError,
)
from storefront.domain.schemas import CaptureIn, CaptureOut, CheckoutCreateIn, CheckoutCreateOut, OrderOut
from storefront.services.cart_store import CartStore
from storefront.services.order_coordinator import OrderCoordinator
from storefront.utils.settings import DEFAULT_CURRENCY

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    #ksztalt bledu wspolny dla obu dostawcow: {"error": "..."}
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@router.post("/{provider}/orders", response_model=CheckoutCreateOut)
def create_checkout(
    provider: str,
    payload: CheckoutCreateIn,
    store: CartStore = Depends(get_cart_store),
    user_id: str | None = Depends(get_current_user_id),
    coordinator: OrderCoordinator = Depends(get_coordinator),
):
    """
    Faza 1: zamowienie u dostawcy ze snapshotu koszyka.
    Kwota z cart_summary sluzy tylko do porownania.
    """
    summary = payload.cart_summary
    try:
        started = coordinator.create_order(
            store.snapshot(),
            provider,
            user_id=user_id,
            currency=summary.currency or DEFAULT_CURRENCY,
            client_amount=summary.total_amount,
        )
    except ValidationError as e:
        return _error(400, e.message)
    except CheckoutInitiationFailed as e:
        return _error(502, e.message)

    return CheckoutCreateOut(
        id=started.intent.provider_order_id,
        order_id=started.order.id,
        provider=started.intent.provider,
        amount=started.intent.amount,
        currency=started.intent.currency,
        status=started.intent.status.value,
        approval=started.approval.as_dict(),
    )


@router.post("/{provider}/capture", response_model=CaptureOut)
def capture_checkout(
    provider: str,
    payload: CaptureIn,
    store: CartStore = Depends(get_cart_store),
    coordinator: OrderCoordinator = Depends(get_coordinator),
):
    """Faza 2: capture po akceptacji klienta. Powtorzenie zwraca zapisany wynik."""
    try:
        result = coordinator.capture(provider, payload.provider_order_id, cart_store=store)
    except ValidationError as e:
        return _error(400, e.message)
    except OrderNotFound as e:
        return _error(404, e.message)
    except PaymentOutcomeError as e:
        return _error(402, e.message, order_id=e.order_id, provider_status=e.raw_status, replayed=e.replayed)
    except CaptureInProgress as e:
        return _error(409, e.message)
    except ProviderUnavailable as e:
        return _error(502, e.message)

    return CaptureOut(
        order_id=result.order.id,
        status=result.order.status,
        transaction_id=result.capture.transaction_id,
        provider_status=result.capture.raw_status,
        replayed=result.replayed,
    )


@router.post("/{provider}/cancel", response_model=OrderOut)
def cancel_checkout(
    provider: str,
    payload: CaptureIn,
    coordinator: OrderCoordinator = Depends(get_coordinator),
):
    """Klient zamknal okno dostawcy. Koszyk zostaje bez zmian."""
    try:
        return coordinator.cancel(provider, payload.provider_order_id)
    except ValidationError as e:
        return _error(400, e.message)
    except OrderNotFound as e:
        return _error(404, e.message)
    except CaptureInProgress as e:
        return _error(409, e.message)
