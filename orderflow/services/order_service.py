# orderflow/services/order_service.py
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.orm import Session

from orderflow.data.database import unit_of_work
from orderflow.data.models.order import OrderItemModel, OrderModel
from orderflow.data.models.payment import PaymentTransactionModel
from orderflow.data.models.timeline import OrderTimelineModel
from orderflow.domain.enums import (
    ActorType,
    FlowStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
)
from orderflow.domain.errors import (
    InsufficientStock,
    InvalidStateTransition,
    NotFound,
    PriceChanged,
    ProviderError,
    ValidationError,
)
from orderflow.domain.identity import Owner
from orderflow.repos.cart_repo import CartRepo
from orderflow.repos.order_repo import OrderRepo
from orderflow.repos.payment_repo import PaymentRepo
from orderflow.services.cart_service import CartService
from orderflow.services.idempotency import checkout_key
from orderflow.services.inventory_ledger import InventoryLedger
from orderflow.services.order_lifecycle import OrderLifecycle
from orderflow.services.payment_service import PaymentService, serialize_transaction
from orderflow.utils.clock import ensure_utc, utcnow
from orderflow.utils.codes import order_code, transaction_code
from orderflow.utils.logging import get_logger
from orderflow.utils.settings import CURRENCY, PAYMENT_TIMEOUT_MINUTES, SHIPPING_FEE

logger = get_logger(__name__)

CENT = Decimal("0.01")


class OrderService:
    """
    Cart to order conversion plus the buyer-facing order queries.

    State changes after checkout (confirm, cancel, refund) go through
    OrderLifecycle so every trigger shares one idempotent path.
    """

    def __init__(
        self,
        db: Session,
        cart_service: CartService,
        payment_service: PaymentService,
        lifecycle: OrderLifecycle | None = None,
    ):
        self.db = db
        self.repo = OrderRepo(db)
        self.payments = PaymentRepo(db)
        self.carts = CartRepo(db)
        self.cart_service = cart_service
        self.payment_service = payment_service
        self.lifecycle = lifecycle or payment_service.lifecycle
        self.ledger = InventoryLedger(db)

    # --- checkout ---------------------------------------------------------------------
    def create_order_with_payment(self, owner: Owner, request: Dict[str, Any],
                                  idempotency_key: str | None = None) -> Dict[str, Any]:
        """
        Use case: checkout.

        1. validates identity, cart, live stock and live prices
        2. one unit: reserve (or deduct for COD), order, transaction, cart removal
        3. outside the unit: ask the gateway for a payment handle,
           cancelling the order as compensation if that fails
        """
        if idempotency_key:
            return self.payment_service.idempotency.execute(
                checkout_key(owner.key, idempotency_key),
                lambda: self._checkout(owner, request),
            )
        return self._checkout(owner, request)

    def _checkout(self, owner: Owner, request: Dict[str, Any]) -> Dict[str, Any]:
        if owner.is_guest and not request.get("guest_email"):
            raise ValidationError("Guest checkout requires an email address")
        try:
            method = PaymentMethod(request["payment_method"])
        except (KeyError, ValueError):
            raise ValidationError("Unknown payment method", details={"payment_method": request.get("payment_method")})
        self.payment_service.provider(method)
        if not request.get("shipping_address"):
            raise ValidationError("Shipping address is required")

        cart, lines = self.cart_service.checkout_lines(owner)

        shortfalls = []
        for line in lines:
            available = self.ledger.check_available(line["variant_id"])
            if available < line["quantity"]:
                shortfalls.append({"variant_id": line["variant_id"], "requested": line["quantity"], "available": available})
        if shortfalls:
            raise InsufficientStock("Insufficient stock for one or more items", details=shortfalls)

        # always the live price, never the cart snapshot
        for line in lines:
            line["line_total"] = (line["unit_price"] * line["quantity"]).quantize(CENT)
        sub_total = sum((line["line_total"] for line in lines), Decimal("0.00"))
        shipping_fee = SHIPPING_FEE
        total = sub_total + shipping_fee

        expected = request.get("expected_total")
        if expected is not None and Decimal(str(expected)) != total:
            raise PriceChanged(
                f"Order total is now {total}, expected {expected}",
                details=[
                    {"variant_id": line["variant_id"], "sku": line["sku"],
                     "old_price": line["snapshot_price"], "new_price": line["unit_price"]}
                    for line in lines if line["snapshot_price"] != line["unit_price"]
                ],
            )

        order_id = str(uuid.uuid4())
        now = utcnow()
        totals = {"sub_total": sub_total, "shipping_fee": shipping_fee, "total_amount": total}

        if method.settles_immediately:
            return self._checkout_settled(order_id, owner, request, method, cart, lines, totals)

        deadline = now + timedelta(minutes=PAYMENT_TIMEOUT_MINUTES)
        with unit_of_work(self.db):
            reservation = self.ledger.reserve_for_order(order_id, lines, expires_at=deadline)
            order = self._new_order(order_id, owner, request, method, lines, totals,
                                    status=OrderStatus.PENDING_PAYMENT, deadline=deadline)
            order.reservation_id = reservation.id
            self.repo.create_order(order)
            txn = self.payments.add(self._new_transaction(order, method, TransactionStatus.PENDING))
            self._created_timeline(order, owner)
            self.carts.delete_cart(cart)
            txn_code = txn.transaction_code

        logger.info(f"Order {order.code} created (pending_payment), stock reserved until {deadline.isoformat()}")

        try:
            payment = self.payment_service.create_payment(order_id, {
                "return_url": request.get("return_url"),
                "cancel_url": request.get("cancel_url"),
                "ip_addr": request.get("client_ip"),
            })
        except Exception as e:
            self.lifecycle.compensate_failed_payment_initiation(order_id, e)
            if isinstance(e, ProviderError):
                raise
            raise ProviderError(f"Could not start payment for order {order.code}: {e}") from e

        return {
            "order": self._summary(order),
            "payment": {
                "id": payment.get("id"),
                "payment_url": payment.get("payment_url"),
                "transaction_code": payment.get("transaction_code") or txn_code,
                "provider": payment.get("provider"),
                "status": TransactionStatus.PENDING.value,
            },
            "flow_status": FlowStatus.PENDING_PAYMENT.value,
            "message": "Order created, complete the payment before the deadline",
        }

    def _checkout_settled(self, order_id: str, owner: Owner, request: Dict[str, Any], method: PaymentMethod,
                          cart, lines: list[dict], totals: dict) -> Dict[str, Any]:
        provider = self.payment_service.provider(method)
        handle = provider.create_payment(order_id, totals["total_amount"], {"currency": CURRENCY})

        with unit_of_work(self.db):
            for line in lines:
                self.ledger.deduct_direct(line["variant_id"], line["quantity"], reference_id=order_id)
            order = self._new_order(order_id, owner, request, method, lines, totals,
                                    status=OrderStatus.CONFIRMED, deadline=None)
            order.confirmed_at = utcnow()
            self.repo.create_order(order)
            txn = self._new_transaction(order, method, TransactionStatus.SUCCESS)
            txn.provider_transaction_id = handle.transaction_id
            txn.gateway_response = handle.gateway_response
            self.payments.add(txn)
            self._created_timeline(order, owner)
            self.carts.delete_cart(cart)
            payment = {
                "id": txn.id,
                "payment_url": None,
                "transaction_code": txn.transaction_code,
                "provider": provider.name,
                "status": TransactionStatus.SUCCESS.value,
            }

        logger.info(f"Order {order.code} created and confirmed ({method.value}), stock deducted")
        self.lifecycle.notifier.order_status_changed(order.id, order.code, order.status, order.guest_email)
        return {
            "order": self._summary(order),
            "payment": payment,
            "flow_status": FlowStatus.CONFIRMED.value,
            "message": "Order confirmed, pay on delivery",
        }

    def _new_order(self, order_id: str, owner: Owner, request: Dict[str, Any], method: PaymentMethod,
                   lines: list[dict], totals: dict, status: OrderStatus, deadline) -> OrderModel:
        return OrderModel(
            id=order_id,
            code=order_code(),
            user_id=owner.user_id,
            session_id=owner.session_id,
            guest_email=request.get("guest_email"),
            status=status.value,
            payment_status=PaymentStatus.UNPAID.value,
            payment_method=method.value,
            payment_deadline=deadline,
            currency=CURRENCY,
            sub_total=totals["sub_total"],
            shipping_fee=totals["shipping_fee"],
            total_amount=totals["total_amount"],
            shipping_address=request["shipping_address"],
            billing_address=request.get("billing_address") or request["shipping_address"],
            shipping_method_id=request.get("shipping_method_id"),
            note=request.get("note"),
            items=[
                OrderItemModel(
                    variant_id=line["variant_id"],
                    product_name=line["name"],
                    sku=line["sku"],
                    unit_price=line["unit_price"],
                    quantity=line["quantity"],
                    line_total=line["line_total"],
                )
                for line in lines
            ],
        )

    @staticmethod
    def _new_transaction(order: OrderModel, method: PaymentMethod, status: TransactionStatus) -> PaymentTransactionModel:
        return PaymentTransactionModel(
            order_id=order.id,
            type=TransactionType.PAYMENT.value,
            status=status.value,
            provider=method.value,
            transaction_code=transaction_code(),
            amount=order.total_amount,
            currency=order.currency,
        )

    def _created_timeline(self, order: OrderModel, owner: Owner):
        self.repo.add_timeline(OrderTimelineModel(
            order_id=order.id,
            action="order_created",
            from_status=None,
            to_status=order.status,
            actor_type=ActorType.CUSTOMER.value,
            actor_id=owner.user_id or owner.session_id,
            description=f"Order placed with {order.payment_method}",
            details={"total_amount": str(order.total_amount)},
        ))

    # --- buyer actions ------------------------------------------------------------------
    def _owned_order(self, order_id: str, owner: Owner) -> OrderModel:
        order = self.repo.get_order(order_id)
        if not order:
            raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
        owner.ensure_owns(order)
        return order

    def cancel_pending_order(self, order_id: str, owner: Owner, reason: str | None = None) -> Dict[str, Any]:
        order = self._owned_order(order_id, owner)
        if order.status == OrderStatus.CANCELLED.value:
            return {"order_id": order.id, "code": order.code, "status": order.status, "changed": False}
        if order.status != OrderStatus.PENDING_PAYMENT.value:
            raise InvalidStateTransition(
                f"Only unpaid orders can be cancelled, order {order.code} is {order.status}",
                details={"from": order.status, "to": OrderStatus.CANCELLED.value},
            )
        return self.lifecycle.cancel_order(
            order.id,
            reason=reason or "cancelled by customer",
            actor_type=ActorType.CUSTOMER,
            actor_id=owner.user_id or owner.session_id,
        )

    def pay_again(self, order_id: str, owner: Owner, metadata: Dict[str, Any] | None = None) -> Dict[str, Any]:
        order = self._owned_order(order_id, owner)
        status = self._status(order)
        if not status["can_pay"]:
            raise InvalidStateTransition(
                f"Order {order.code} can no longer be paid",
                details={"status": order.status, "remaining_seconds": status["remaining_seconds"]},
            )
        return self.payment_service.create_payment(order.id, metadata or {})

    # --- queries -------------------------------------------------------------------------
    def get_order(self, order_id: str, owner: Owner) -> Dict[str, Any]:
        order = self._owned_order(order_id, owner)
        detail = self._summary(order)
        detail.update({
            "payment_method": order.payment_method,
            "sub_total": order.sub_total,
            "shipping_fee": order.shipping_fee,
            "guest_email": order.guest_email,
            "shipping_address": order.shipping_address,
            "billing_address": order.billing_address,
            "shipping_method_id": order.shipping_method_id,
            "note": order.note,
            "cancel_reason": order.cancel_reason,
            "items": [
                {
                    "variant_id": i.variant_id,
                    "product_name": i.product_name,
                    "sku": i.sku,
                    "unit_price": i.unit_price,
                    "quantity": i.quantity,
                    "line_total": i.line_total,
                }
                for i in order.items
            ],
            "transactions": [serialize_transaction(t) for t in order.transactions],
            "timeline": [
                {
                    "action": e.action,
                    "from_status": e.from_status,
                    "to_status": e.to_status,
                    "actor_type": e.actor_type,
                    "description": e.description,
                    "created_at": ensure_utc(e.created_at),
                }
                for e in order.timeline
            ],
        })
        return detail

    def list_orders(self, user_id: str, limit: int = 50, offset: int = 0) -> list[Dict[str, Any]]:
        return [self._summary(o) for o in self.repo.list_for_user(user_id, limit, offset)]

    def get_order_status(self, order_id: str, owner: Owner) -> Dict[str, Any]:
        return self._status(self._owned_order(order_id, owner))

    def _status(self, order: OrderModel) -> Dict[str, Any]:
        deadline = ensure_utc(order.payment_deadline)
        pending = order.status == OrderStatus.PENDING_PAYMENT.value
        remaining = None
        if deadline is not None:
            remaining = max(0, int((deadline - utcnow()).total_seconds()))
        return {
            "id": order.id,
            "code": order.code,
            "status": order.status,
            "payment_status": order.payment_status,
            "payment_deadline": deadline,
            "remaining_seconds": remaining,
            "can_pay": pending and bool(remaining),
            "can_cancel": pending,
        }

    @staticmethod
    def _summary(order: OrderModel) -> Dict[str, Any]:
        return {
            "id": order.id,
            "code": order.code,
            "status": order.status,
            "payment_status": order.payment_status,
            "payment_deadline": ensure_utc(order.payment_deadline),
            "total_amount": order.total_amount,
            "currency": order.currency,
            "created_at": ensure_utc(order.created_at),
        }
