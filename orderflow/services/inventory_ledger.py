# orderflow/services/inventory_ledger.py
from datetime import datetime

from sqlalchemy.orm import Session

from orderflow.data.models.inventory import DEFAULT_WAREHOUSE, InventoryMovementModel
from orderflow.data.models.reservation import ReservationItemModel, ReservationModel
from orderflow.domain.enums import MovementAction, ReservationStatus
from orderflow.domain.errors import InsufficientStock, NotFound, ValidationError
from orderflow.repos.inventory_repo import InventoryRepo
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


class InventoryLedger:
    """
    Stock counters per variant plus an append-only movement log.

    None of these methods commit. Callers wrap them in ``unit_of_work`` together
    with the order writes, so stock and order state move in one transaction.
    Every counter change is a guarded UPDATE (never read-then-write), which is
    what keeps two checkouts from both taking the last unit.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = InventoryRepo(db)

    # --- queries --------------------------------------------------------------
    def check_available(self, variant_id: str) -> int:
        on_hand, reserved = self.repo.totals(variant_id)
        return on_hand - reserved

    def levels(self, variant_id: str) -> dict:
        on_hand, reserved = self.repo.totals(variant_id)
        return {
            "variant_id": variant_id,
            "on_hand": on_hand,
            "reserved": reserved,
            "available": on_hand - reserved,
        }

    def movements(self, variant_id: str, reference_id: str | None = None) -> list[InventoryMovementModel]:
        return self.repo.movements(variant_id, reference_id)

    # --- internals --------------------------------------------------------------
    @staticmethod
    def _check_quantity(quantity: int):
        if quantity <= 0:
            raise ValidationError("Quantity must be positive", details={"quantity": quantity})

    def _record(self, record_id: int, variant_id: str, action: MovementAction, change: int,
                reference_id: str | None, note: str | None = None) -> InventoryMovementModel:
        on_hand, reserved = self.repo.levels(record_id)
        movement = InventoryMovementModel(
            inventory_record_id=record_id,
            variant_id=variant_id,
            action=action.value,
            quantity_change=change,
            on_hand_after=on_hand,
            reserved_after=reserved,
            reference_id=reference_id,
            note=note,
        )
        logger.info(
            f"Inventory {action.value} variant={variant_id} record={record_id} change={change} "
            f"on_hand={on_hand} reserved={reserved} ref={reference_id}"
        )
        return self.repo.add_movement(movement)

    def _first_record_where(self, variant_id: str, attempt) -> int | None:
        for record_id in self.repo.record_ids_for_variant(variant_id):
            if attempt(record_id):
                return record_id
        return None

    # --- single-variant mutations ----------------------------------------------
    def reserve(self, variant_id: str, quantity: int, reference_id: str | None = None) -> int:
        """Soft-lock ``quantity`` units. Returns the inventory record that now holds them."""
        self._check_quantity(quantity)
        record_id = self._first_record_where(variant_id, lambda rid: self.repo.try_reserve(rid, quantity) == 1)
        if record_id is None:
            raise InsufficientStock(
                f"Not enough stock for variant {variant_id}",
                details=[{
                    "variant_id": variant_id,
                    "requested": quantity,
                    "available": self.check_available(variant_id),
                }],
            )
        self._record(record_id, variant_id, MovementAction.RESERVATION, quantity, reference_id)
        return record_id

    def release(self, record_id: int, variant_id: str, quantity: int, reference_id: str | None = None) -> bool:
        self._check_quantity(quantity)
        if self.repo.try_release(record_id, quantity) != 1:
            logger.warning(f"Release of {quantity} x {variant_id} on record {record_id} skipped, reserved too low")
            return False
        self._record(record_id, variant_id, MovementAction.RESERVATION_RELEASE, -quantity, reference_id)
        return True

    def deduct(self, record_id: int, variant_id: str, quantity: int, reference_id: str | None = None) -> None:
        """Turn a reservation into a sale: on_hand and reserved both drop."""
        self._check_quantity(quantity)
        if self.repo.try_deduct_reserved(record_id, quantity) != 1:
            raise InsufficientStock(
                f"Reserved stock for variant {variant_id} is gone",
                details=[{"variant_id": variant_id, "requested": quantity}],
            )
        self._record(record_id, variant_id, MovementAction.SALE, -quantity, reference_id)

    def deduct_direct(self, variant_id: str, quantity: int, reference_id: str | None = None) -> int:
        """Sale without a reservation phase (cash on delivery)."""
        self._check_quantity(quantity)
        record_id = self._first_record_where(
            variant_id, lambda rid: self.repo.try_deduct_available(rid, quantity) == 1
        )
        if record_id is None:
            raise InsufficientStock(
                f"Not enough stock for variant {variant_id}",
                details=[{
                    "variant_id": variant_id,
                    "requested": quantity,
                    "available": self.check_available(variant_id),
                }],
            )
        self._record(record_id, variant_id, MovementAction.SALE, -quantity, reference_id)
        return record_id

    def restore(self, variant_id: str, quantity: int, reference_id: str | None = None,
                record_id: int | None = None) -> int:
        """Put sold units back on hand (refund)."""
        self._check_quantity(quantity)
        if record_id is None:
            record = self.repo.get_record(variant_id) or next(iter(self.repo.records_for_variant(variant_id)), None)
            if record is None:
                record = self.repo.create_record(variant_id)
            record_id = record.id
        self.repo.try_change_on_hand(record_id, quantity)
        self._record(record_id, variant_id, MovementAction.RETURN, quantity, reference_id)
        return record_id

    def adjust(self, variant_id: str, delta: int, reason: str,
               warehouse_id: str = DEFAULT_WAREHOUSE) -> dict:
        """Restock (delta > 0) or correction (delta < 0) for one warehouse."""
        if delta == 0:
            raise ValidationError("Adjustment must change stock")
        record = self.repo.get_record(variant_id, warehouse_id)
        if record is None:
            if delta < 0:
                raise NotFound(f"No inventory record for variant {variant_id} at {warehouse_id}")
            record = self.repo.create_record(variant_id, warehouse_id)
        if self.repo.try_change_on_hand(record.id, delta) != 1:
            raise InsufficientStock(
                f"Cannot remove {-delta} units of variant {variant_id}",
                details=[{"variant_id": variant_id, "requested": -delta, "available": self.check_available(variant_id)}],
            )
        self._record(record.id, variant_id, MovementAction.ADJUSTMENT, delta, None, note=reason)
        return self.levels(variant_id)

    # --- order-level operations ---------------------------------------------------
    def reserve_for_order(self, order_id: str, lines: list[dict], expires_at: datetime) -> ReservationModel:
        """
        Reserve every line for one order or fail as a whole.

        All shortfalls are collected before raising, so the buyer sees every
        offending variant at once. Partial reservations are undone by the
        caller's rollback.
        """
        shortfalls = []
        items = []
        for line in lines:
            variant_id, quantity = line["variant_id"], line["quantity"]
            if not self.repo.record_ids_for_variant(variant_id):
                shortfalls.append({
                    "variant_id": variant_id,
                    "requested": quantity,
                    "available": 0,
                    "reason": "no_inventory_record",
                })
                continue
            try:
                record_id = self.reserve(variant_id, quantity, reference_id=order_id)
            except InsufficientStock as e:
                shortfalls.extend(e.details)
                continue
            items.append(ReservationItemModel(inventory_record_id=record_id, variant_id=variant_id, quantity=quantity))

        if shortfalls:
            raise InsufficientStock("Insufficient stock for one or more items", details=shortfalls)

        reservation = ReservationModel(order_id=order_id, expires_at=expires_at, items=items)
        return self.repo.add_reservation(reservation)

    def confirm_reservation(self, reservation: ReservationModel, reference_id: str) -> bool:
        """Deduct every reserved line. False when the reservation was already closed."""
        claimed = self.repo.close_reservation(
            reservation.id, ReservationStatus.ACTIVE.value, ReservationStatus.CONFIRMED.value
        )
        if claimed != 1:
            return False
        for item in reservation.items:
            self.deduct(item.inventory_record_id, item.variant_id, item.quantity, reference_id)
        return True

    def release_reservation(self, reservation: ReservationModel, reference_id: str,
                            status: ReservationStatus = ReservationStatus.RELEASED) -> bool:
        claimed = self.repo.close_reservation(reservation.id, ReservationStatus.ACTIVE.value, status.value)
        if claimed != 1:
            return False
        for item in reservation.items:
            self.release(item.inventory_record_id, item.variant_id, item.quantity, reference_id)
        return True
