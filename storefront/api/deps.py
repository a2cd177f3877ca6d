# storefront/api/deps.py
from fastapi import Depends, Header, HTTPException, Request
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from storefront.data.database import get_db
from storefront.services.cart_store import CartStore
from storefront.services.order_coordinator import OrderCoordinator
from storefront.services.product_client import ProductClient
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str | None:
    # tozsamosc z zewnatrz, tylko "id albo nic"
    return x_user_id or None


def get_cart_store(request: Request, x_cart_session: str = Header(..., min_length=1)) -> CartStore:
    try:
        return request.app.state.carts.get(x_cart_session)
    except RedisError as e:
        logger.error(f"Magazyn koszykow niedostepny: {e}")
        raise HTTPException(status_code=503, detail="Cart storage unavailable")


def get_product_client(request: Request) -> ProductClient:
    return request.app.state.product_client


def get_coordinator(request: Request, db: Session = Depends(get_db)) -> OrderCoordinator:
    return OrderCoordinator(
        db,
        lock_service=request.app.state.lock_service,
        adapters=request.app.state.payment_adapters,
        notification_service=request.app.state.notification_service,
    )
