# storefront/celery_worker.py
from celery import Celery

from storefront.utils.settings import CELERY_BROKER_URL, CELERY_RESULT_BACKEND

celery_app = Celery(
    "storefront",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# Explicite importuj taski, zeby Celery je zarejestrowal
celery_app.conf.imports = (
    "storefront.tasks.expire",
    "storefront.services.notification_service",
)

# porzucone checkouty (pending_payment) sprzatane co 5 minut
celery_app.conf.beat_schedule = {
    "expire-pending-orders": {
        "task": "storefront.tasks.expire.expire_pending_orders_task",
        "schedule": 300.0,
    },
}

celery_app.conf.timezone = "UTC"
