# orderflow/tasks/expire.py
from sqlalchemy.orm import Session

from orderflow.celery_worker import celery_app
from orderflow.data.database import SessionLocal
from orderflow.repos.order_repo import OrderRepo
from orderflow.services.order_lifecycle import PAYMENT_TIMEOUT_REASON, OrderLifecycle
from orderflow.utils.clock import utcnow
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


class ReservationSweeper:
    """
    Cancels unpaid orders whose payment deadline passed, releasing their stock.
    Each order is its own unit of work; one failure is logged and the pass moves on.
    """

    def __init__(self, db: Session, lifecycle: OrderLifecycle | None = None):
        self.db = db
        self.repo = OrderRepo(db)
        self.lifecycle = lifecycle or OrderLifecycle(db)

    def run_once(self) -> dict:
        now = utcnow()
        order_ids = self.repo.expired_pending_ids(now)
        logger.info(f"Sweep found {len(order_ids)} expired unpaid orders")

        cancelled, failed = 0, 0
        for order_id in order_ids:
            try:
                result = self.lifecycle.cancel_order(order_id, reason=PAYMENT_TIMEOUT_REASON)
                if result["changed"]:
                    cancelled += 1
            except Exception as e:
                failed += 1
                logger.error(f"Sweep could not cancel order {order_id}, retrying next pass: {e}")

        report = {"found": len(order_ids), "cancelled": cancelled, "failed": failed}
        logger.info(f"Sweep finished: {report}")
        return report


@celery_app.task(name="orderflow.tasks.expire.sweep_expired_orders_task")
def sweep_expired_orders_task():
    db = SessionLocal()
    try:
        return ReservationSweeper(db).run_once()
    finally:
        db.close()
