# orderflow/services/order_lifecycle.py
from decimal import Decimal

from sqlalchemy.orm import Session

from orderflow.data.database import unit_of_work
from orderflow.data.models.order import OrderModel
from orderflow.data.models.payment import PaymentTransactionModel
from orderflow.data.models.timeline import OrderTimelineModel
from orderflow.domain.enums import (
    ActorType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ReservationStatus,
    TransactionStatus,
    TransactionType,
)
from orderflow.domain.errors import InvalidStateTransition, NotFound, ValidationError
from orderflow.domain.order_state import ensure_transition
from orderflow.repos.order_repo import OrderRepo
from orderflow.repos.payment_repo import PaymentRepo
from orderflow.services.inventory_ledger import InventoryLedger
from orderflow.services.notification_service import NotificationService
from orderflow.services.payments.base import CallbackResult, RefundOutcome
from orderflow.utils.clock import utcnow
from orderflow.utils.codes import transaction_code
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)

PAYMENT_TIMEOUT_REASON = "payment timeout"


class OrderLifecycle:
    """
    Confirm, cancel and refund: the only code that moves an order between states.

    Each operation is one unit of work over the order row, its reservation,
    its stock and its payment rows. Repeating an operation whose target state
    was already reached returns ``changed=False`` and touches nothing, which is
    what makes duplicate callbacks, user cancels and sweeper passes compose.
    """

    def __init__(self, db: Session, notifier: NotificationService | None = None):
        self.db = db
        self.orders = OrderRepo(db)
        self.payments = PaymentRepo(db)
        self.ledger = InventoryLedger(db)
        self.notifier = notifier or NotificationService()

    def _load(self, order_id: str) -> OrderModel:
        order = self.orders.get_order_for_update(order_id)
        if not order:
            raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
        return order

    def _move(self, order: OrderModel, target: OrderStatus, **values):
        current = order.status
        if self.orders.transition_status(order.id, current, target.value, **values) != 1:
            # someone else moved the order after we read it
            raise InvalidStateTransition(
                f"Order {order.code} changed concurrently",
                details={"from": current, "to": target.value},
            )

    def _timeline(self, order: OrderModel, action: str, from_status: str | None, to_status: str | None,
                  actor_type: ActorType, actor_id: str | None, description: str, details: dict | None = None):
        self.orders.add_timeline(OrderTimelineModel(
            order_id=order.id,
            action=action,
            from_status=from_status,
            to_status=to_status,
            actor_type=actor_type.value,
            actor_id=actor_id,
            description=description,
            details=details,
        ))

    def _result(self, order: OrderModel, changed: bool) -> dict:
        return {"order_id": order.id, "code": order.code, "status": order.status, "changed": changed}

    def _notify(self, order: OrderModel):
        self.notifier.order_status_changed(order.id, order.code, order.status, order.guest_email)

    # --- confirm -----------------------------------------------------------------------------
    def confirm_order(self, order_id: str, payment: CallbackResult | None = None,
                      actor_type: ActorType = ActorType.SYSTEM, actor_id: str | None = None) -> dict:
        with unit_of_work(self.db):
            order = self._load(order_id)
            if order.status == OrderStatus.CONFIRMED.value:
                logger.info(f"Order {order.code} already confirmed, nothing to do")
                return self._result(order, changed=False)
            ensure_transition(order.status, OrderStatus.CONFIRMED.value)

            if order.reservation is not None:
                if not self.ledger.confirm_reservation(order.reservation, reference_id=order.id):
                    raise InvalidStateTransition(
                        f"Reservation for order {order.code} is already {order.reservation.status}",
                        details={"reservation_status": order.reservation.status},
                    )
            else:
                for item in order.items:
                    self.ledger.deduct_direct(item.variant_id, item.quantity, reference_id=order.id)

            from_status = order.status
            self._move(
                order,
                OrderStatus.CONFIRMED,
                payment_status=PaymentStatus.PAID.value,
                confirmed_at=utcnow(),
            )
            if payment is not None:
                self._settle_payment(order, payment, TransactionStatus.SUCCESS)
            else:
                # confirmed by staff: the pending payment counts as received
                pending = self.payments.latest_pending_payment(order.id)
                if pending is not None:
                    self.payments.settle(pending.id, TransactionStatus.SUCCESS)

            self._timeline(
                order, "payment_confirmed", from_status, OrderStatus.CONFIRMED.value,
                actor_type, actor_id, "Payment received, order confirmed",
                {"transaction_id": payment.transaction_id} if payment else None,
            )
            result = self._result(order, changed=True)

        logger.info(f"Order {result['code']} confirmed")
        self._notify(order)
        return result

    def _settle_payment(self, order: OrderModel, payment: CallbackResult, status: TransactionStatus):
        txn = self.payments.find_payment(order.id, payment.transaction_id)
        if txn is None:
            self.payments.add(PaymentTransactionModel(
                order_id=order.id,
                type=TransactionType.PAYMENT.value,
                status=status.value,
                provider=order.payment_method,
                transaction_code=transaction_code(),
                provider_transaction_id=payment.transaction_id,
                amount=order.total_amount,
                currency=order.currency,
                gateway_response=payment.gateway_response,
            ))
            return
        response = dict(txn.gateway_response or {})
        response.update(payment.gateway_response)
        self.payments.settle(
            txn.id,
            status,
            provider_transaction_id=payment.transaction_id,
            gateway_response=response,
        )

    def record_unapplied_payment(self, order_id: str, payment: CallbackResult, reason: str) -> None:
        """
        Keep a successful gateway payment that arrived after the order was closed.
        The order does not move; the payment is flagged for a manual refund.
        """
        with unit_of_work(self.db):
            order = self._load(order_id)
            txn = self.payments.find_payment(order.id, payment.transaction_id)
            if txn is not None and txn.status == TransactionStatus.SUCCESS.value:
                return
            response = {**payment.gateway_response, "manual_refund_required": True, "not_applied": reason}
            if txn is None:
                self.payments.add(PaymentTransactionModel(
                    order_id=order.id,
                    type=TransactionType.PAYMENT.value,
                    status=TransactionStatus.SUCCESS.value,
                    provider=order.payment_method,
                    transaction_code=transaction_code(),
                    provider_transaction_id=payment.transaction_id,
                    amount=order.total_amount,
                    currency=order.currency,
                    gateway_response=response,
                ))
            else:
                # the cancel path already failed this row; the gateway says otherwise
                txn.status = TransactionStatus.SUCCESS.value
                txn.provider_transaction_id = payment.transaction_id
                txn.gateway_response = {**(txn.gateway_response or {}), **response}
            self._timeline(
                order, "late_payment_received", order.status, order.status,
                ActorType.SYSTEM, None, "Payment received for a closed order, refund manually",
                {"transaction_id": payment.transaction_id, "reason": reason},
            )
            code = order.code
        logger.warning(f"Payment {payment.transaction_id} for closed order {code} recorded for manual refund")

    def confirm_cod_payment(self, order_id: str, confirmed_by: str | None, note: str | None = None) -> dict:
        """Staff confirm the cash for a cash-on-delivery order was collected."""
        with unit_of_work(self.db):
            order = self._load(order_id)
            if order.payment_method != PaymentMethod.COD.value:
                raise ValidationError(
                    f"Order {order.code} is not cash on delivery",
                    details={"payment_method": order.payment_method},
                )
            if order.payment_status == PaymentStatus.PAID.value:
                logger.info(f"Cash for order {order.code} already confirmed, nothing to do")
                return self._result(order, changed=False)
            if order.status != OrderStatus.CONFIRMED.value:
                raise InvalidStateTransition(
                    f"Cash for order {order.code} cannot be collected while it is {order.status}",
                    details={"status": order.status},
                )

            self._move(order, OrderStatus.CONFIRMED, payment_status=PaymentStatus.PAID.value)
            for txn in self.payments.successful(order.id, TransactionType.PAYMENT):
                txn.gateway_response = {
                    **(txn.gateway_response or {}),
                    "collected_by": confirmed_by,
                    "collected_at": utcnow().isoformat(),
                    "note": note,
                }
            self._timeline(
                order, "cod_payment_confirmed", order.status, order.status,
                ActorType.STAFF, confirmed_by, "Cash collected on delivery", {"note": note},
            )
            result = self._result(order, changed=True)

        logger.info(f"Cash for order {result['code']} collected, confirmed by {confirmed_by}")
        return result

    # --- cancel ------------------------------------------------------------------------------
    def cancel_order(self, order_id: str, reason: str, actor_type: ActorType = ActorType.SYSTEM,
                     actor_id: str | None = None, payment: CallbackResult | None = None) -> dict:
        with unit_of_work(self.db):
            order = self._load(order_id)
            if order.status == OrderStatus.CANCELLED.value:
                logger.info(f"Order {order.code} already cancelled, nothing to do")
                return self._result(order, changed=False)
            ensure_transition(order.status, OrderStatus.CANCELLED.value)

            if order.reservation is not None:
                closing = ReservationStatus.EXPIRED if reason == PAYMENT_TIMEOUT_REASON else ReservationStatus.RELEASED
                self.ledger.release_reservation(order.reservation, reference_id=order.id, status=closing)

            from_status = order.status
            self._move(order, OrderStatus.CANCELLED, cancel_reason=reason[:255], cancelled_at=utcnow())
            if payment is not None:
                self._settle_payment(order, payment, TransactionStatus.FAILED)
            self.payments.fail_pending(order.id)

            self._timeline(
                order, "order_cancelled", from_status, OrderStatus.CANCELLED.value,
                actor_type, actor_id, f"Order cancelled: {reason}", {"reason": reason},
            )
            result = self._result(order, changed=True)

        logger.info(f"Order {result['code']} cancelled ({reason})")
        self._notify(order)
        return result

    def compensate_failed_payment_initiation(self, order_id: str, error: Exception) -> dict:
        """
        Undo a checkout whose order committed but whose payment handle never came back.
        Not a rollback: the checkout unit is already durable, so this runs the cancel path.
        """
        logger.warning(f"Payment initiation failed for order {order_id}, compensating: {error}")
        return self.cancel_order(order_id, reason=f"payment initiation failed: {error}")

    # --- refund ------------------------------------------------------------------------------
    def apply_refund(self, order_id: str, outcome: RefundOutcome, provider: str, reason: str | None,
                     restore_inventory: bool, actor_id: str | None = None) -> dict:
        """Record a refund the provider already accepted and move the order to refunded."""
        with unit_of_work(self.db):
            order = self._load(order_id)
            if order.status == OrderStatus.REFUNDED.value:
                return self._result(order, changed=False)
            ensure_transition(order.status, OrderStatus.REFUNDED.value)

            self.payments.add(PaymentTransactionModel(
                order_id=order.id,
                type=TransactionType.REFUND.value,
                status=TransactionStatus.SUCCESS.value,
                provider=provider,
                transaction_code=transaction_code(),
                provider_transaction_id=outcome.refund_transaction_id,
                amount=Decimal(outcome.amount),
                currency=order.currency,
                gateway_response={"message": outcome.message, "reason": reason, **outcome.gateway_response},
            ))

            if restore_inventory:
                held_on = {}
                if order.reservation is not None:
                    held_on = {i.variant_id: i.inventory_record_id for i in order.reservation.items}
                for item in order.items:
                    self.ledger.restore(item.variant_id, item.quantity, reference_id=order.id,
                                        record_id=held_on.get(item.variant_id))

            from_status = order.status
            self._move(
                order,
                OrderStatus.REFUNDED,
                payment_status=PaymentStatus.REFUNDED.value,
                refunded_at=utcnow(),
            )
            self._timeline(
                order, "order_refunded", from_status, OrderStatus.REFUNDED.value,
                ActorType.STAFF, actor_id, f"Refunded {outcome.amount} {order.currency}",
                {"reason": reason, "restore_inventory": restore_inventory,
                 "refund_transaction_id": outcome.refund_transaction_id},
            )
            result = self._result(order, changed=True)

        logger.info(f"Order {result['code']} refunded, inventory restored={restore_inventory}")
        self._notify(order)
        return result
