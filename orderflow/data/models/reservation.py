# orderflow/data/models/reservation.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from orderflow.data.database import Base
from orderflow.domain.enums import ReservationStatus


def _now():
    return datetime.now(timezone.utc)


class ReservationModel(Base):
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(36), nullable=False, unique=True)
    status = Column(String(16), nullable=False, default=ReservationStatus.ACTIVE.value)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    items = relationship(
        "ReservationItemModel",
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReservationItemModel.id",
    )


class ReservationItemModel(Base):
    __tablename__ = "reservation_items"

    id = Column(Integer, primary_key=True)
    reservation_id = Column(String(36), ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True)
    inventory_record_id = Column(Integer, ForeignKey("inventory_records.id"), nullable=False)
    variant_id = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)

    reservation = relationship("ReservationModel", back_populates="items")
