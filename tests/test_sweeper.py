from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import update

from orderflow.data.database import unit_of_work
from orderflow.data.models.order import OrderModel
from orderflow.domain.enums import OrderStatus, PaymentMethod, ReservationStatus
from orderflow.domain.identity import Owner
from orderflow.repos.order_repo import OrderRepo
from orderflow.services.order_lifecycle import PAYMENT_TIMEOUT_REASON
from orderflow.tasks.expire import ReservationSweeper, sweep_expired_orders_task
from orderflow.utils.clock import utcnow


def expire(db, order_id, minutes_ago=1):
    with unit_of_work(db):
        db.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id)
            .values(payment_deadline=utcnow() - timedelta(minutes=minutes_ago))
        )


def test_sweep_cancels_only_expired_orders(db, lifecycle, ledger, place_order, buyer):
    stale = place_order(buyer)
    fresh = place_order(Owner.user("user-2"))
    cod = place_order(Owner.user("user-3"), method=PaymentMethod.COD)
    expire(db, stale)
    assert ledger.levels("var-x")["reserved"] == 4

    report = ReservationSweeper(db, lifecycle).run_once()

    assert report == {"found": 1, "cancelled": 1, "failed": 0}
    orders = OrderRepo(db)
    expired_order = orders.get_order(stale)
    assert expired_order.status == OrderStatus.CANCELLED.value
    assert expired_order.cancel_reason == PAYMENT_TIMEOUT_REASON
    assert expired_order.reservation.status == ReservationStatus.EXPIRED.value
    assert orders.get_order(fresh).status == OrderStatus.PENDING_PAYMENT.value
    assert orders.get_order(cod).status == OrderStatus.CONFIRMED.value
    assert ledger.levels("var-x")["reserved"] == 2


def test_second_pass_finds_nothing(db, lifecycle, place_order, buyer):
    expire(db, place_order(buyer))
    sweeper = ReservationSweeper(db, lifecycle)

    sweeper.run_once()

    assert sweeper.run_once() == {"found": 0, "cancelled": 0, "failed": 0}


def test_one_failing_order_does_not_stop_the_pass(db, lifecycle, place_order, buyer):
    broken = place_order(buyer)
    healthy = place_order(Owner.user("user-2"))
    expire(db, broken, minutes_ago=5)
    expire(db, healthy, minutes_ago=1)

    real_cancel = lifecycle.cancel_order

    def flaky_cancel(order_id, **kwargs):
        if order_id == broken:
            raise RuntimeError("database hiccup")
        return real_cancel(order_id, **kwargs)

    with patch.object(lifecycle, "cancel_order", side_effect=flaky_cancel):
        report = ReservationSweeper(db, lifecycle).run_once()

    assert report == {"found": 2, "cancelled": 1, "failed": 1}
    orders = OrderRepo(db)
    assert orders.get_order(broken).status == OrderStatus.PENDING_PAYMENT.value
    assert orders.get_order(healthy).status == OrderStatus.CANCELLED.value

    # retried on the next pass
    assert ReservationSweeper(db, lifecycle).run_once()["cancelled"] == 1


def test_order_cancelled_by_buyer_meanwhile_is_skipped(db, lifecycle, place_order, buyer):
    order_id = place_order(buyer)
    expire(db, order_id)
    sweeper = ReservationSweeper(db, lifecycle)
    lifecycle.cancel_order(order_id, reason="changed my mind")

    assert sweeper.run_once() == {"found": 0, "cancelled": 0, "failed": 0}


def test_celery_task_uses_its_own_session(session_factory, db, place_order, buyer):
    order_id = place_order(buyer)
    expire(db, order_id)

    with patch("orderflow.tasks.expire.SessionLocal", session_factory):
        report = sweep_expired_orders_task.apply().get()

    assert report == {"found": 1, "cancelled": 1, "failed": 0}
    db.expire_all()
    assert OrderRepo(db).get_order(order_id).status == OrderStatus.CANCELLED.value
