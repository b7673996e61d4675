# orderflow/data/models/cart_item.py
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from orderflow.data.database import Base


class CartItemModel(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column(String(64), nullable=False)

    quantity = Column(Integer, nullable=False)
    # variant price when the line was last priced
    snapshot_price = Column(Numeric(14, 2), nullable=False)
    added_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    cart = relationship("CartModel", back_populates="items")

    __table_args__ = (
        UniqueConstraint("cart_id", "variant_id", name="u_cart_variant"),
        CheckConstraint("quantity >= 1", name="ck_cart_item_quantity"),
    )
