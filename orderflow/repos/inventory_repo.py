# orderflow/repos/inventory_repo.py
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from orderflow.data.models.inventory import (
    DEFAULT_WAREHOUSE,
    InventoryMovementModel,
    InventoryRecordModel,
)
from orderflow.data.models.reservation import ReservationModel

Record = InventoryRecordModel


class InventoryRepo:
    """Counter mutations are single guarded UPDATEs; the row count says whether the guard held."""

    def __init__(self, db: Session):
        self.db = db

    # --- records -----------------------------------------------------------
    def records_for_variant(self, variant_id: str) -> list[InventoryRecordModel]:
        stmt = select(Record).where(Record.variant_id == variant_id).order_by(Record.id)
        return list(self.db.execute(stmt).scalars().all())

    def record_ids_for_variant(self, variant_id: str) -> list[int]:
        stmt = select(Record.id).where(Record.variant_id == variant_id).order_by(Record.id)
        return list(self.db.execute(stmt).scalars().all())

    def get_record(self, variant_id: str, warehouse_id: str = DEFAULT_WAREHOUSE) -> InventoryRecordModel | None:
        stmt = select(Record).where(Record.variant_id == variant_id, Record.warehouse_id == warehouse_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_record(self, variant_id: str, warehouse_id: str = DEFAULT_WAREHOUSE) -> InventoryRecordModel:
        record = Record(variant_id=variant_id, warehouse_id=warehouse_id, on_hand=0, reserved=0)
        self.db.add(record)
        self.db.flush()
        return record

    def levels(self, record_id: int) -> tuple[int, int]:
        row = self.db.execute(select(Record.on_hand, Record.reserved).where(Record.id == record_id)).one()
        return row.on_hand, row.reserved

    def totals(self, variant_id: str) -> tuple[int, int]:
        stmt = select(
            func.coalesce(func.sum(Record.on_hand), 0),
            func.coalesce(func.sum(Record.reserved), 0),
        ).where(Record.variant_id == variant_id)
        on_hand, reserved = self.db.execute(stmt).one()
        return int(on_hand), int(reserved)

    # --- guarded counter updates --------------------------------------------
    def _update(self, stmt) -> int:
        return self.db.execute(stmt).rowcount

    def try_reserve(self, record_id: int, quantity: int) -> int:
        return self._update(
            update(Record)
            .where(Record.id == record_id, Record.on_hand - Record.reserved >= quantity)
            .values(reserved=Record.reserved + quantity)
        )

    def try_release(self, record_id: int, quantity: int) -> int:
        return self._update(
            update(Record)
            .where(Record.id == record_id, Record.reserved >= quantity)
            .values(reserved=Record.reserved - quantity)
        )

    def try_deduct_reserved(self, record_id: int, quantity: int) -> int:
        return self._update(
            update(Record)
            .where(Record.id == record_id, Record.reserved >= quantity, Record.on_hand >= quantity)
            .values(on_hand=Record.on_hand - quantity, reserved=Record.reserved - quantity)
        )

    def try_deduct_available(self, record_id: int, quantity: int) -> int:
        return self._update(
            update(Record)
            .where(Record.id == record_id, Record.on_hand - Record.reserved >= quantity)
            .values(on_hand=Record.on_hand - quantity)
        )

    def try_change_on_hand(self, record_id: int, delta: int) -> int:
        # on_hand may never drop below zero or below what is already reserved
        return self._update(
            update(Record)
            .where(Record.id == record_id, Record.on_hand + delta >= Record.reserved, Record.on_hand + delta >= 0)
            .values(on_hand=Record.on_hand + delta)
        )

    # --- movements ----------------------------------------------------------
    def add_movement(self, movement: InventoryMovementModel) -> InventoryMovementModel:
        self.db.add(movement)
        self.db.flush()
        return movement

    def movements(self, variant_id: str, reference_id: str | None = None) -> list[InventoryMovementModel]:
        stmt = select(InventoryMovementModel).where(InventoryMovementModel.variant_id == variant_id)
        if reference_id is not None:
            stmt = stmt.where(InventoryMovementModel.reference_id == reference_id)
        return list(self.db.execute(stmt.order_by(InventoryMovementModel.id)).scalars().all())

    # --- reservations -------------------------------------------------------
    def add_reservation(self, reservation: ReservationModel) -> ReservationModel:
        self.db.add(reservation)
        self.db.flush()
        return reservation

    def get_reservation_for_order(self, order_id: str) -> ReservationModel | None:
        stmt = select(ReservationModel).where(ReservationModel.order_id == order_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def close_reservation(self, reservation_id: str, expected: str, status: str) -> int:
        return self._update(
            update(ReservationModel)
            .where(ReservationModel.id == reservation_id, ReservationModel.status == expected)
            .values(status=status)
        )
