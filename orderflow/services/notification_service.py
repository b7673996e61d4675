# orderflow/services/notification_service.py
from orderflow.celery_worker import celery_app
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Hands order status changes to Celery.
    Called only after the unit of work commits, so a rolled back change never notifies.
    """

    @staticmethod
    def order_status_changed(order_id: str, order_code: str, status: str, recipient: str | None = None):
        try:
            send_order_status_notification_task.delay(order_id, order_code, status, recipient)
        except Exception as e:
            # the order change is already committed; a broker outage must not undo it
            logger.error(f"Could not queue notification for order {order_code} ({status}): {e}")


@celery_app.task(name="orderflow.services.notification_service.send_order_status_notification_task")
def send_order_status_notification_task(order_id: str, order_code: str, status: str, recipient: str | None = None):
    """Stand-in for the mail/SMS channel: records the message that would be sent."""
    logger.info(f"[NOTIFICATION] Order {order_code} ({order_id}) is now {status}, recipient={recipient or 'account owner'}")
    return {"order_id": order_id, "status": status, "sent": True}
