# orderflow/repos/cart_repo.py
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from orderflow.data.models.cart import CartModel
from orderflow.data.models.cart_item import CartItemModel
from orderflow.domain.identity import Owner


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_by_owner(self, owner: Owner) -> CartModel | None:
        stmt = select(CartModel)
        if owner.user_id:
            stmt = stmt.where(CartModel.user_id == owner.user_id)
        else:
            stmt = stmt.where(CartModel.session_id == owner.session_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_cart(self, owner: Owner) -> CartModel:
        cart = CartModel(user_id=owner.user_id, session_id=owner.session_id)
        self.db.add(cart)
        self.db.flush()
        return cart

    def get_cart_items(self, cart_id: int) -> list[CartItemModel]:
        stmt = select(CartItemModel).where(CartItemModel.cart_id == cart_id).order_by(CartItemModel.id)
        return list(self.db.execute(stmt).scalars().all())

    def get_cart_item(self, cart_id: int, variant_id: str) -> CartItemModel | None:
        stmt = select(CartItemModel).where(
            CartItemModel.cart_id == cart_id,
            CartItemModel.variant_id == variant_id,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add_cart_item(self, item: CartItemModel) -> CartItemModel:
        self.db.add(item)
        self.db.flush()
        return item

    def delete_cart_item(self, cart_id: int, variant_id: str) -> int:
        stmt = delete(CartItemModel).where(
            CartItemModel.cart_id == cart_id,
            CartItemModel.variant_id == variant_id,
        )
        return self.db.execute(stmt, execution_options={"synchronize_session": "fetch"}).rowcount

    def clear_items(self, cart_id: int) -> int:
        stmt = delete(CartItemModel).where(CartItemModel.cart_id == cart_id)
        return self.db.execute(stmt, execution_options={"synchronize_session": "fetch"}).rowcount

    def delete_cart(self, cart: CartModel) -> None:
        self.db.delete(cart)
        self.db.flush()
