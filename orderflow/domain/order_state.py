# orderflow/domain/order_state.py
from orderflow.domain.enums import OrderStatus
from orderflow.domain.errors import InvalidStateTransition

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_PAYMENT: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return OrderStatus(target) in TRANSITIONS[OrderStatus(current)]


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidStateTransition(
            f"Cannot move order from {current} to {target}",
            details={"from": str(current), "to": str(target)},
        )


def is_terminal(status: str) -> bool:
    return not TRANSITIONS[OrderStatus(status)]
