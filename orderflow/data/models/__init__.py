# import every model so SQLAlchemy registers it on Base.metadata

from orderflow.data.models.cart import CartModel
from orderflow.data.models.cart_item import CartItemModel
from orderflow.data.models.inventory import InventoryMovementModel, InventoryRecordModel
from orderflow.data.models.order import OrderItemModel, OrderModel
from orderflow.data.models.payment import PaymentTransactionModel
from orderflow.data.models.reservation import ReservationItemModel, ReservationModel
from orderflow.data.models.timeline import OrderTimelineModel

__all__ = [
    "CartModel",
    "CartItemModel",
    "InventoryRecordModel",
    "InventoryMovementModel",
    "ReservationModel",
    "ReservationItemModel",
    "OrderModel",
    "OrderItemModel",
    "PaymentTransactionModel",
    "OrderTimelineModel",
]
