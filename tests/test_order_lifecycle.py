from decimal import Decimal

import pytest

from orderflow.domain.enums import (
    ActorType,
    MovementAction,
    OrderStatus,
    PaymentMethod,
    ReservationStatus,
    TransactionStatus,
    TransactionType,
)
from orderflow.domain.errors import InvalidStateTransition, NotFound, Unauthorized
from orderflow.domain.identity import Owner
from orderflow.domain.order_state import ensure_transition
from orderflow.repos.order_repo import OrderRepo
from orderflow.repos.payment_repo import PaymentRepo
from orderflow.services.order_lifecycle import PAYMENT_TIMEOUT_REASON
from orderflow.services.payments.base import RefundOutcome


def sales(ledger, order_id):
    return [m for m in ledger.movements("var-x", order_id) if m.action == MovementAction.SALE.value]


@pytest.mark.parametrize("current,target", [
    ("pending_payment", "confirmed"),
    ("pending_payment", "cancelled"),
    ("confirmed", "refunded"),
])
def test_allowed_transitions(current, target):
    ensure_transition(current, target)


@pytest.mark.parametrize("current,target", [
    ("cancelled", "confirmed"),
    ("refunded", "confirmed"),
    ("confirmed", "cancelled"),
    ("pending_payment", "refunded"),
    ("cancelled", "refunded"),
])
def test_forbidden_transitions(current, target):
    with pytest.raises(InvalidStateTransition):
        ensure_transition(current, target)


def test_confirm_twice_has_one_set_of_side_effects(db, lifecycle, ledger, place_order, buyer, notifier):
    order_id = place_order(buyer)

    first = lifecycle.confirm_order(order_id)
    second = lifecycle.confirm_order(order_id)

    assert first["changed"] is True
    assert second["changed"] is False
    assert second["status"] == OrderStatus.CONFIRMED.value
    assert len(sales(ledger, order_id)) == 1
    assert ledger.levels("var-x") == {"variant_id": "var-x", "on_hand": 0, "reserved": 0, "available": 0}
    confirmations = [e for e in OrderRepo(db).timeline(order_id) if e.action == "payment_confirmed"]
    assert len(confirmations) == 1
    assert notifier.order_status_changed.call_count == 1


def test_cancel_twice_releases_once(db, lifecycle, ledger, place_order, buyer):
    order_id = place_order(buyer, quantity=3)

    first = lifecycle.cancel_order(order_id, reason="changed my mind", actor_type=ActorType.CUSTOMER)
    second = lifecycle.cancel_order(order_id, reason=PAYMENT_TIMEOUT_REASON)

    assert (first["changed"], second["changed"]) == (True, False)
    order = OrderRepo(db).get_order(order_id)
    assert order.cancel_reason == "changed my mind"
    assert order.reservation.status == ReservationStatus.RELEASED.value
    releases = [m for m in ledger.movements("var-x", order_id) if m.action == MovementAction.RESERVATION_RELEASE.value]
    assert len(releases) == 1
    assert ledger.levels("var-x") == {"variant_id": "var-x", "on_hand": 3, "reserved": 0, "available": 3}
    [txn] = PaymentRepo(db).for_order(order_id)
    assert txn.status == TransactionStatus.FAILED.value


def test_timeout_cancel_marks_reservation_expired(db, lifecycle, place_order, buyer):
    order_id = place_order(buyer)
    lifecycle.cancel_order(order_id, reason=PAYMENT_TIMEOUT_REASON)
    assert OrderRepo(db).get_order(order_id).reservation.status == ReservationStatus.EXPIRED.value


def test_confirm_after_cancel_is_rejected(lifecycle, ledger, place_order, buyer):
    order_id = place_order(buyer)
    lifecycle.cancel_order(order_id, reason="changed my mind")

    with pytest.raises(InvalidStateTransition):
        lifecycle.confirm_order(order_id)
    assert sales(ledger, order_id) == []


def test_cancel_after_confirm_is_rejected(lifecycle, place_order, buyer):
    order_id = place_order(buyer)
    lifecycle.confirm_order(order_id)
    with pytest.raises(InvalidStateTransition):
        lifecycle.cancel_order(order_id, reason="too late")


def test_unknown_order(lifecycle):
    with pytest.raises(NotFound):
        lifecycle.confirm_order("missing")


def test_apply_refund_restores_onto_reserved_records(db, lifecycle, ledger, place_order, buyer):
    order_id = place_order(buyer)
    lifecycle.confirm_order(order_id)
    outcome = RefundOutcome(success=True, refund_transaction_id="RF-1", amount=Decimal("230000"))

    first = lifecycle.apply_refund(order_id, outcome, "vnpay", "damaged", restore_inventory=True)
    second = lifecycle.apply_refund(order_id, outcome, "vnpay", "damaged", restore_inventory=True)

    assert (first["changed"], second["changed"]) == (True, False)
    assert ledger.levels("var-x")["on_hand"] == 2
    refunds = PaymentRepo(db).successful(order_id, TransactionType.REFUND)
    assert len(refunds) == 1
    assert refunds[0].provider_transaction_id == "RF-1"


def test_apply_refund_without_restock(lifecycle, ledger, place_order, buyer):
    order_id = place_order(buyer)
    lifecycle.confirm_order(order_id)
    outcome = RefundOutcome(success=True, refund_transaction_id="RF-2", amount=Decimal("1000"))

    lifecycle.apply_refund(order_id, outcome, "vnpay", None, restore_inventory=False)

    assert ledger.levels("var-x")["on_hand"] == 0


def test_buyer_cancel_checks_ownership_and_state(order_service, lifecycle, place_order, buyer):
    order_id = place_order(buyer)

    with pytest.raises(Unauthorized):
        order_service.cancel_pending_order(order_id, Owner.user("someone-else"))

    result = order_service.cancel_pending_order(order_id, buyer)
    assert result["changed"] is True
    # cancelling again is a no-op
    assert order_service.cancel_pending_order(order_id, buyer)["changed"] is False


def test_buyer_cannot_cancel_paid_order(order_service, lifecycle, place_order, buyer):
    order_id = place_order(buyer)
    lifecycle.confirm_order(order_id)
    with pytest.raises(InvalidStateTransition):
        order_service.cancel_pending_order(order_id, buyer)


def test_order_status_and_detail(order_service, place_order, buyer):
    order_id = place_order(buyer)

    status = order_service.get_order_status(order_id, buyer)
    assert status["can_pay"] is True
    assert status["can_cancel"] is True
    assert 0 < status["remaining_seconds"] <= 15 * 60

    detail = order_service.get_order(order_id, buyer)
    assert detail["items"][0]["sku"] == "SKU-X"
    assert [e["action"] for e in detail["timeline"]] == ["order_created"]
    assert detail["transactions"][0]["status"] == TransactionStatus.PENDING.value

    [summary] = order_service.list_orders(buyer.user_id)
    assert summary["id"] == order_id


def test_guest_order_invisible_to_other_session(order_service, place_order, guest):
    order_id = place_order(guest, guest_email="guest@shop.test")
    with pytest.raises(Unauthorized):
        order_service.get_order(order_id, Owner.guest("another-session"))
    with pytest.raises(Unauthorized):
        order_service.get_order_status(order_id, Owner.user("user-1"))


def test_pay_again_reuses_the_first_handle(order_service, place_order, buyer, capture_gateway):
    order_id = place_order(buyer, method=PaymentMethod.GATEWAY_CAPTURE)

    handle = order_service.pay_again(order_id, buyer)

    assert handle["provider"] == "fakecapture"
    assert handle["payment_url"].startswith("https://gateway.test/approve/")
    assert capture_gateway.create_calls == 1


def test_pay_again_after_cancel_is_rejected(order_service, lifecycle, place_order, buyer):
    order_id = place_order(buyer)
    lifecycle.cancel_order(order_id, reason="changed my mind")
    with pytest.raises(InvalidStateTransition):
        order_service.pay_again(order_id, buyer)
