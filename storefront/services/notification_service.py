# storefront/services/notification_service.py
from storefront.celery_worker import celery_app
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Powiadomienia o zamowieniach.
    Celery robi to asynchronicznie, blad kolejki nie moze zepsuc capture.
    """

    @staticmethod
    def send_order_notification(user_id: str | None, order_id: str):
        try:
            send_order_notification_task.delay(user_id, order_id)
        except Exception as e:
            logger.warning(f"Nie udalo sie zakolejkowac powiadomienia dla zamowienia {order_id}: {e}")


@celery_app.task(name="storefront.services.notification_service.send_order_notification_task")
def send_order_notification_task(user_id: str | None, order_id: str):
    """
    Celery task - w prawdziwym systemie wyslalby email/SMS/push.
    Teraz tylko loguje.
    """
    logger.info(f"[NOTIFICATION] User {user_id or 'guest'}: Order {order_id} is being processed")
    return {"user_id": user_id, "order_id": order_id, "status": "sent"}
