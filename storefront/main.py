# storefront/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI
import redis
import uvicorn

from storefront.api import ROUTERS
from storefront.data.database import Base, engine
from storefront.services.cart_registry import CartRegistry
from storefront.services.lock_service import LockService
from storefront.services.notification_service import NotificationService
from storefront.services.payments import PayPalAdapter, StripeAdapter
from storefront.services.product_client import ProductClient
from storefront.utils.settings import REDIS_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

# IMPORT WSZYSTKICH MODELI PRZED CREATE_ALL
from storefront.data.models import OrderModel, OrderItemModel  # noqa: E402,F401


def init_db():
    logger.info(f"Initializing database, tables: {list(Base.metadata.tables.keys())}")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        raise


def create_app(
    redis_client=None,
    product_client: ProductClient | None = None,
    payment_adapters: dict | None = None,
    lock_service: LockService | None = None,
    write_behind: bool | None = None,
    notification_service: NotificationService | None = None,
) -> FastAPI:
    init_db()

    client = redis_client or redis.Redis.from_url(REDIS_URL, decode_responses=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # dopisz zalegle zapisy koszykow
        app.state.carts.close()

    app = FastAPI(
        title="Storefront Checkout Service",
        version="1.0.0",
        lifespan=lifespan,
    )

    # jawni wlasciciele stanu, bez globalnych singletonow
    app.state.redis = client
    registry_kwargs = {} if write_behind is None else {"write_behind": write_behind}
    app.state.carts = CartRegistry(client, **registry_kwargs)
    app.state.lock_service = lock_service or LockService(client=client)
    app.state.product_client = product_client or ProductClient()
    app.state.notification_service = notification_service or NotificationService()
    app.state.payment_adapters = payment_adapters or {
        StripeAdapter.name: StripeAdapter(),
        PayPalAdapter.name: PayPalAdapter(),
    }

    for router in ROUTERS:
        app.include_router(router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
