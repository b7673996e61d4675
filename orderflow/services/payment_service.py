# orderflow/services/payment_service.py
from decimal import Decimal

from sqlalchemy.orm import Session

from orderflow.data.database import unit_of_work
from orderflow.data.models.order import OrderModel
from orderflow.data.models.payment import PaymentTransactionModel
from orderflow.domain.enums import OrderStatus, PaymentMethod, TransactionStatus, TransactionType
from orderflow.domain.errors import (
    InvalidStateTransition,
    NotFound,
    OrderflowError,
    ProviderError,
    ValidationError,
)
from orderflow.domain.identity import Owner
from orderflow.domain.order_state import ensure_transition
from orderflow.repos.order_repo import OrderRepo
from orderflow.repos.payment_repo import PaymentRepo
from orderflow.services.idempotency import (
    IdempotencyCoordinator,
    callback_key,
    payment_create_key,
    payment_refund_key,
)
from orderflow.services.order_lifecycle import OrderLifecycle
from orderflow.services.payments import default_providers
from orderflow.services.payments.base import CallbackResult, PaymentProvider
from orderflow.utils.clock import ensure_utc
from orderflow.utils.codes import transaction_code
from orderflow.utils.logging import get_logger
from orderflow.utils.settings import REFUND_RESTORE_INVENTORY

logger = get_logger(__name__)


def _is_final(result: dict) -> bool:
    return result["outcome"] != TransactionStatus.PENDING.value


def serialize_transaction(txn: PaymentTransactionModel) -> dict:
    return {
        "id": txn.id,
        "transaction_code": txn.transaction_code,
        "type": txn.type,
        "status": txn.status,
        "provider": txn.provider,
        "provider_transaction_id": txn.provider_transaction_id,
        "amount": txn.amount,
        "currency": txn.currency,
        "created_at": ensure_utc(txn.created_at),
    }


class PaymentService:
    """
    Payment side effects, each behind an idempotency key:
    payment:create:<order>, callback:<provider>:<gateway txn>, payment:refund:<order>.
    Gateway calls happen outside any open database transaction.
    """

    def __init__(
        self,
        db: Session,
        idempotency: IdempotencyCoordinator,
        providers: dict[PaymentMethod, PaymentProvider] | None = None,
        lifecycle: OrderLifecycle | None = None,
    ):
        self.db = db
        self.idempotency = idempotency
        self.providers = providers if providers is not None else default_providers()
        self.lifecycle = lifecycle or OrderLifecycle(db)
        self.orders = OrderRepo(db)
        self.payments = PaymentRepo(db)

    def provider(self, method: str | PaymentMethod) -> PaymentProvider:
        try:
            return self.providers[PaymentMethod(method)]
        except (KeyError, ValueError):
            raise ValidationError(f"Unsupported payment method {method}", details={"payment_method": str(method)})

    def _order(self, order_id: str) -> OrderModel:
        order = self.orders.get_order(order_id)
        if not order:
            raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
        return order

    # --- create ----------------------------------------------------------------------------
    def create_payment(self, order_id: str, metadata: dict | None = None) -> dict:
        """Payment handle for a pending order. Repeats return the first handle."""
        return self.idempotency.execute(
            payment_create_key(order_id),
            lambda: self._create_payment(order_id, metadata or {}),
        )

    def _create_payment(self, order_id: str, metadata: dict) -> dict:
        order = self._order(order_id)
        if order.status != OrderStatus.PENDING_PAYMENT.value:
            raise InvalidStateTransition(
                f"Order {order.code} is {order.status}, payment cannot be started",
                details={"status": order.status},
            )
        provider = self.provider(order.payment_method)
        amount = order.total_amount
        context = {
            "order_code": order.code,
            "currency": order.currency,
            "expires_at": ensure_utc(order.payment_deadline),
            **metadata,
        }
        # release the read transaction before the network call
        self.db.commit()

        try:
            handle = provider.create_payment(order_id, amount, context)
        except OrderflowError:
            raise
        except Exception as e:
            raise ProviderError(f"{provider.name} payment creation failed: {e}") from e

        with unit_of_work(self.db):
            txn = self.payments.latest_pending_payment(order_id)
            if txn:
                txn.provider_transaction_id = handle.transaction_id
                txn.gateway_response = handle.gateway_response
            code = txn.transaction_code if txn else None
            txn_id = txn.id if txn else None

        logger.info(f"Payment handle {handle.transaction_id} issued for order {order_id} via {provider.name}")
        return {
            "id": txn_id,
            "order_id": order_id,
            "provider": provider.name,
            "transaction_id": handle.transaction_id,
            "transaction_code": code,
            "payment_url": handle.payment_url,
            "status": TransactionStatus.PENDING.value,
        }

    # --- callbacks ---------------------------------------------------------------------------
    def process_callback(self, method: str | PaymentMethod, payload: dict, headers: dict | None = None) -> dict:
        """Verify first, then apply the outcome at most once per gateway transaction."""
        provider = self.provider(method)
        result = provider.verify_callback(payload, headers)
        return self.idempotency.execute(
            callback_key(provider.name, result.transaction_id),
            lambda: self._apply_outcome(result),
            cache_if=_is_final,
        )

    def capture_payment(self, provider_order_id: str) -> dict:
        """Capture an approved two-phase payment; shares its key with the matching webhook."""
        provider = self.provider(PaymentMethod.GATEWAY_CAPTURE)
        return self.idempotency.execute(
            callback_key(provider.name, provider_order_id),
            lambda: self._apply_outcome(provider.capture(provider_order_id)),
            cache_if=_is_final,
        )

    def _apply_outcome(self, result: CallbackResult) -> dict:
        order = self._order(result.order_id)
        changed = False
        note = None
        try:
            if result.status == TransactionStatus.SUCCESS:
                changed = self.lifecycle.confirm_order(order.id, payment=result)["changed"]
            elif result.status == TransactionStatus.FAILED:
                changed = self.lifecycle.cancel_order(order.id, reason="payment failed", payment=result)["changed"]
            else:
                note = "outcome still pending at the gateway"
        except InvalidStateTransition as e:
            # e.g. money arrived after the sweeper cancelled the order; needs manual follow-up
            logger.error(f"Callback for order {order.code} ({result.status.value}) not applied: {e.message}")
            note = e.message
            if result.status == TransactionStatus.SUCCESS:
                self.lifecycle.record_unapplied_payment(order.id, result, e.message)

        self.db.refresh(order)
        return {
            "order_id": order.id,
            "order_code": order.code,
            "status": order.status,
            "payment_status": order.payment_status,
            "transaction_id": result.transaction_id,
            "outcome": result.status.value,
            "processed": changed,
            "note": note,
        }

    # --- refunds -----------------------------------------------------------------------------
    def process_refund(self, order_id: str, amount: Decimal | None = None, reason: str | None = None,
                       restore_inventory: bool | None = None, actor_id: str | None = None) -> dict:
        return self.idempotency.execute(
            payment_refund_key(order_id),
            lambda: self._refund(order_id, amount, reason, restore_inventory, actor_id),
        )

    def _refund(self, order_id: str, amount: Decimal | None, reason: str | None,
                restore_inventory: bool | None, actor_id: str | None) -> dict:
        order = self._order(order_id)
        if order.status == OrderStatus.REFUNDED.value:
            return {"order_id": order.id, "code": order.code, "status": order.status, "changed": False}
        ensure_transition(order.status, OrderStatus.REFUNDED.value)

        paid = self.payments.successful(order.id, TransactionType.PAYMENT)
        if len(paid) != 1:
            raise InvalidStateTransition(
                f"Order {order.code} needs exactly one successful payment to refund, found {len(paid)}",
                details={"successful_payments": len(paid)},
            )
        if self.payments.successful(order.id, TransactionType.REFUND):
            raise InvalidStateTransition(f"Order {order.code} was already refunded")

        amount = Decimal(amount) if amount is not None else order.total_amount
        if amount <= 0 or amount > order.total_amount:
            raise ValidationError(
                "Refund amount must be positive and at most the order total",
                details={"amount": str(amount), "total_amount": str(order.total_amount)},
            )

        payment = paid[0]
        provider = self.provider(order.payment_method)
        reference = payment.settlement_reference
        metadata = {
            "provider_transaction_id": payment.provider_transaction_id,
            "original_amount": payment.amount,
            "paid_at": ensure_utc(payment.updated_at),
            "currency": order.currency,
            "requested_by": actor_id,
        }
        self.db.commit()

        logger.info(f"Refunding {amount} {order.currency} for order {order.code} via {provider.name}")
        try:
            outcome = provider.process_refund(reference, amount, reason, metadata)
        except Exception as e:
            self._record_failed_refund(order_id, provider.name, amount, str(e))
            if isinstance(e, OrderflowError):
                raise
            raise ProviderError(f"{provider.name} refund failed: {e}") from e

        if not outcome.success:
            self._record_failed_refund(order_id, provider.name, amount, outcome.message, outcome.gateway_response)
            raise ProviderError(f"{provider.name} refused the refund: {outcome.message}")

        restore = REFUND_RESTORE_INVENTORY if restore_inventory is None else restore_inventory
        result = self.lifecycle.apply_refund(order_id, outcome, provider.name, reason, restore, actor_id)
        result.update({"refund_transaction_id": outcome.refund_transaction_id, "amount": amount})
        return result

    def _record_failed_refund(self, order_id: str, provider: str, amount: Decimal, message: str | None,
                              response: dict | None = None):
        with unit_of_work(self.db):
            order = self._order(order_id)
            self.payments.add(PaymentTransactionModel(
                order_id=order_id,
                type=TransactionType.REFUND.value,
                status=TransactionStatus.FAILED.value,
                provider=provider,
                transaction_code=transaction_code(),
                amount=amount,
                currency=order.currency,
                gateway_response={"error": message, **(response or {})},
            ))
        logger.error(f"Refund for order {order_id} failed: {message}")

    # --- cash on delivery --------------------------------------------------------------------
    def confirm_cod_payment(self, order_id: str, confirmed_by: str | None, note: str | None = None) -> dict:
        result = self.lifecycle.confirm_cod_payment(order_id, confirmed_by, note)
        result["payment_status"] = self._order(order_id).payment_status
        return result

    # --- queries -----------------------------------------------------------------------------
    def get_payment_status(self, order_id: str, owner: Owner | None = None) -> dict:
        order = self._order(order_id)
        if owner is not None:
            owner.ensure_owns(order)
        return {
            "order_id": order.id,
            "order_code": order.code,
            "payment_status": order.payment_status,
            "total_amount": order.total_amount,
            "currency": order.currency,
            "transactions": [serialize_transaction(t) for t in self.payments.for_order(order.id)],
        }
