# storefront/api/__init__.py
from storefront.api.routers import carts, checkout, health, orders, webhooks

ROUTERS = [
    health.router,
    carts.router,
    checkout.router,
    webhooks.router,
    orders.router,
]
