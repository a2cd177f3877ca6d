# storefront/api/routers/orders.py
from fastapi import APIRouter, Depends, HTTPException

from storefront.api.deps import get_coordinator, get_current_user_id
from storefront.domain.errors import InvalidTransition, OrderNotFound, ValidationError
from storefront.domain.schemas import OrderOut, StatusIn
from storefront.services.order_coordinator import OrderCoordinator

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    user_id: str | None = Depends(get_current_user_id),
    coordinator: OrderCoordinator = Depends(get_coordinator),
):
    """
    Pobiera szczegóły zamówienia.
    """
    try:
        return coordinator.get_order(order_id, user_id)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.post("/{order_id}/status", response_model=OrderOut)
def advance_status(
    order_id: str,
    payload: StatusIn,
    coordinator: OrderCoordinator = Depends(get_coordinator),
):
    """
    Realizacja zamówienia (shipped, delivered, refunded).
    """
    try:
        return coordinator.advance_status(order_id, payload.status)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=e.message)
