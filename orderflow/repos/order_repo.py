# orderflow/repos/order_repo.py
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from orderflow.data.models.order import OrderModel
from orderflow.data.models.timeline import OrderTimelineModel
from orderflow.domain.enums import OrderStatus


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_order(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.flush()
        return order

    def get_order(self, order_id: str) -> OrderModel | None:
        return self.db.get(OrderModel, order_id)

    def get_order_for_update(self, order_id: str) -> OrderModel | None:
        """Row-locked read; always hits the database so the caller sees committed state."""
        stmt = (
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(self, user_id: str, limit: int = 50, offset: int = 0) -> list[OrderModel]:
        stmt = (
            select(OrderModel)
            .where(OrderModel.user_id == user_id)
            .order_by(OrderModel.created_at.desc(), OrderModel.id)
            .limit(limit)
            .offset(offset)
        )
        return list(self.db.execute(stmt).scalars().all())

    def transition_status(self, order_id: str, expected: str, target: str, **values) -> int:
        """Compare-and-set on status. 0 means another writer moved the order first."""
        stmt = (
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == expected)
            .values(status=target, **values)
        )
        return self.db.execute(stmt, execution_options={"synchronize_session": "fetch"}).rowcount

    def expired_pending_ids(self, now: datetime) -> list[str]:
        stmt = (
            select(OrderModel.id)
            .where(
                OrderModel.status == OrderStatus.PENDING_PAYMENT.value,
                OrderModel.payment_deadline.is_not(None),
                OrderModel.payment_deadline < now,
            )
            .order_by(OrderModel.payment_deadline)
        )
        return list(self.db.execute(stmt).scalars().all())

    def add_timeline(self, entry: OrderTimelineModel) -> OrderTimelineModel:
        self.db.add(entry)
        self.db.flush()
        return entry

    def timeline(self, order_id: str) -> list[OrderTimelineModel]:
        stmt = select(OrderTimelineModel).where(OrderTimelineModel.order_id == order_id).order_by(OrderTimelineModel.id)
        return list(self.db.execute(stmt).scalars().all())
