# orderflow/data/models/inventory.py
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from orderflow.data.database import Base

DEFAULT_WAREHOUSE = "main"


def _now():
    return datetime.now(timezone.utc)


class InventoryRecordModel(Base):
    """Stock counters for one variant at one warehouse. available = on_hand - reserved."""

    __tablename__ = "inventory_records"

    id = Column(Integer, primary_key=True)
    variant_id = Column(String(64), nullable=False, index=True)
    warehouse_id = Column(String(64), nullable=False, default=DEFAULT_WAREHOUSE)

    on_hand = Column(Integer, nullable=False, default=0)
    reserved = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint("variant_id", "warehouse_id", name="u_inventory_variant_warehouse"),
        CheckConstraint("on_hand >= 0", name="ck_inventory_on_hand"),
        CheckConstraint("reserved >= 0", name="ck_inventory_reserved"),
        CheckConstraint("reserved <= on_hand", name="ck_inventory_reserved_le_on_hand"),
    )

    @property
    def available(self) -> int:
        return self.on_hand - self.reserved


class InventoryMovementModel(Base):
    """Write-once audit row, one per ledger mutation."""

    __tablename__ = "inventory_movements"

    id = Column(Integer, primary_key=True)
    inventory_record_id = Column(Integer, ForeignKey("inventory_records.id"), nullable=False, index=True)
    variant_id = Column(String(64), nullable=False, index=True)

    action = Column(String(32), nullable=False)
    quantity_change = Column(Integer, nullable=False)
    on_hand_after = Column(Integer, nullable=False)
    reserved_after = Column(Integer, nullable=False)

    reference_id = Column(String(64), nullable=True, index=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    record = relationship("InventoryRecordModel")
