# orderflow/services/cart_service.py
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.orm import Session

from orderflow.data.database import unit_of_work
from orderflow.data.models.cart import CartModel
from orderflow.data.models.cart_item import CartItemModel
from orderflow.domain.errors import EmptyCart, InsufficientStock, NotFound, PriceChanged, ValidationError
from orderflow.domain.identity import Owner
from orderflow.repos.cart_repo import CartRepo
from orderflow.services.catalog_client import CatalogClient
from orderflow.services.inventory_ledger import InventoryLedger
from orderflow.utils.logging import get_logger
from orderflow.utils.settings import MAX_LINE_QUANTITY

logger = get_logger(__name__)


class CartService:
    """
    Pending line items of one buyer or guest session.
    Queries (get, review) only read; commands (add, update, remove, merge,
    refresh) each run in their own unit of work.
    """

    def __init__(self, db: Session, catalog: CatalogClient, ledger: InventoryLedger | None = None):
        self.db = db
        self.repo = CartRepo(db)
        self.catalog = catalog
        self.ledger = ledger or InventoryLedger(db)

    # --- helpers ------------------------------------------------------------------
    @staticmethod
    def _empty(owner: Owner) -> Dict[str, Any]:
        return {"cart_id": None, "owner": owner.key, "items": [], "item_count": 0, "sub_total": Decimal("0.00")}

    def _serialize(self, cart: CartModel, owner: Owner) -> Dict[str, Any]:
        items = self.repo.get_cart_items(cart.id)
        lines = [
            {
                "variant_id": i.variant_id,
                "quantity": i.quantity,
                "snapshot_price": i.snapshot_price,
                "line_total": i.snapshot_price * i.quantity,
            }
            for i in items
        ]
        return {
            "cart_id": cart.id,
            "owner": owner.key,
            "items": lines,
            "item_count": sum(i.quantity for i in items),
            "sub_total": sum((line["line_total"] for line in lines), Decimal("0.00")),
        }

    def _get_or_create(self, owner: Owner) -> CartModel:
        return self.repo.get_by_owner(owner) or self.repo.create_cart(owner)

    def _require_cart(self, owner: Owner) -> CartModel:
        cart = self.repo.get_by_owner(owner)
        if not cart:
            raise NotFound("Cart not found", details={"owner": owner.key})
        return cart

    def _sellable_variant(self, variant_id: str) -> dict:
        variant = self.catalog.get_variant(variant_id)
        if not variant["is_active"] or not variant["parent_active"]:
            raise ValidationError(f"Variant {variant_id} is not available for sale", details={"variant_id": variant_id})
        return variant

    def _check_quantity(self, variant_id: str, quantity: int):
        if quantity > MAX_LINE_QUANTITY:
            raise ValidationError(
                f"At most {MAX_LINE_QUANTITY} units per line",
                details={"variant_id": variant_id, "quantity": quantity, "max": MAX_LINE_QUANTITY},
            )
        available = self.ledger.check_available(variant_id)
        if quantity > available:
            raise InsufficientStock(
                f"Only {available} units of variant {variant_id} available",
                details=[{"variant_id": variant_id, "requested": quantity, "available": available}],
            )

    # --- queries ------------------------------------------------------------------
    def get(self, owner: Owner) -> Dict[str, Any]:
        cart = self.repo.get_by_owner(owner)
        if not cart:
            return self._empty(owner)
        return self._serialize(cart, owner)

    def review(self, owner: Owner) -> Dict[str, Any]:
        """Compare every snapshot with the live price; any drift raises PriceChanged."""
        cart = self.repo.get_by_owner(owner)
        if not cart:
            raise EmptyCart()
        items = self.repo.get_cart_items(cart.id)
        if not items:
            raise EmptyCart()

        changes, lines = [], []
        for item in items:
            variant = self._sellable_variant(item.variant_id)
            if variant["price"] != item.snapshot_price:
                changes.append({
                    "variant_id": item.variant_id,
                    "sku": variant["sku"],
                    "old_price": item.snapshot_price,
                    "new_price": variant["price"],
                })
            lines.append({
                "variant_id": item.variant_id,
                "sku": variant["sku"],
                "name": variant["name"],
                "quantity": item.quantity,
                "unit_price": variant["price"],
                "line_total": variant["price"] * item.quantity,
            })

        if changes:
            logger.info(f"Cart {cart.id} review found {len(changes)} price change(s)")
            raise PriceChanged("Prices changed since items were added", details=changes)

        return {
            "cart_id": cart.id,
            "owner": owner.key,
            "items": lines,
            "sub_total": sum((line["line_total"] for line in lines), Decimal("0.00")),
        }

    def checkout_lines(self, owner: Owner) -> tuple[CartModel, list[dict]]:
        """Lines priced at the live catalog price, for order creation."""
        cart = self.repo.get_by_owner(owner)
        items = self.repo.get_cart_items(cart.id) if cart else []
        if not items:
            raise EmptyCart()

        lines = []
        for item in items:
            variant = self._sellable_variant(item.variant_id)
            lines.append({
                "variant_id": item.variant_id,
                "sku": variant["sku"],
                "name": variant["name"],
                "quantity": item.quantity,
                "unit_price": variant["price"],
                "snapshot_price": item.snapshot_price,
            })
        return cart, lines

    # --- commands -----------------------------------------------------------------
    def add_item(self, owner: Owner, variant_id: str, quantity: int) -> Dict[str, Any]:
        if quantity <= 0:
            raise ValidationError("Quantity must be at least 1", details={"quantity": quantity})

        variant = self._sellable_variant(variant_id)
        with unit_of_work(self.db):
            cart = self._get_or_create(owner)
            existing = self.repo.get_cart_item(cart.id, variant_id)
            total_qty = quantity + (existing.quantity if existing else 0)
            self._check_quantity(variant_id, total_qty)

            if existing:
                # a re-add is a fresh pricing event for the whole line
                existing.quantity = total_qty
                existing.snapshot_price = variant["price"]
            else:
                self.repo.add_cart_item(CartItemModel(
                    cart_id=cart.id,
                    variant_id=variant_id,
                    quantity=quantity,
                    snapshot_price=variant["price"],
                ))

        logger.info(f"Added {quantity} x {variant_id} to cart of {owner.key} (line qty {total_qty})")
        return self.get(owner)

    def update_item(self, owner: Owner, variant_id: str, quantity: int) -> Dict[str, Any]:
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative", details={"quantity": quantity})
        if quantity == 0:
            return self.remove_item(owner, variant_id)

        with unit_of_work(self.db):
            cart = self._require_cart(owner)
            item = self.repo.get_cart_item(cart.id, variant_id)
            if not item:
                raise NotFound(f"Variant {variant_id} is not in the cart", details={"variant_id": variant_id})
            self._check_quantity(variant_id, quantity)
            item.quantity = quantity

        logger.info(f"Set {variant_id} to {quantity} in cart of {owner.key}")
        return self.get(owner)

    def remove_item(self, owner: Owner, variant_id: str) -> Dict[str, Any]:
        with unit_of_work(self.db):
            cart = self._require_cart(owner)
            if self.repo.delete_cart_item(cart.id, variant_id) == 0:
                raise NotFound(f"Variant {variant_id} is not in the cart", details={"variant_id": variant_id})

        logger.info(f"Removed {variant_id} from cart of {owner.key}")
        return self.get(owner)

    def merge(self, guest: Owner, user: Owner) -> Dict[str, Any]:
        """
        Fold a guest cart into the user's cart after login.
        Summed quantities are clamped to the per-line cap. The guest cart is deleted.
        """
        if not guest.is_guest or user.is_guest:
            raise ValidationError("Merge needs a guest session and an authenticated user")

        with unit_of_work(self.db):
            guest_cart = self.repo.get_by_owner(guest)
            if not guest_cart:
                return self.get(user)

            user_cart = self.repo.get_by_owner(user)
            if not user_cart:
                # nothing to combine with; the guest cart simply changes hands
                guest_cart.session_id = None
                guest_cart.user_id = user.user_id
                self.db.flush()
                logger.info(f"Guest cart {guest_cart.id} handed over to {user.key}")
                return self._serialize(guest_cart, user)

            for line in self.repo.get_cart_items(guest_cart.id):
                existing = self.repo.get_cart_item(user_cart.id, line.variant_id)
                if existing:
                    summed = existing.quantity + line.quantity
                    if summed > MAX_LINE_QUANTITY:
                        logger.info(
                            f"Merged quantity for {line.variant_id} clamped from {summed} to {MAX_LINE_QUANTITY}"
                        )
                        summed = MAX_LINE_QUANTITY
                    existing.quantity = summed
                else:
                    self.repo.add_cart_item(CartItemModel(
                        cart_id=user_cart.id,
                        variant_id=line.variant_id,
                        quantity=line.quantity,
                        snapshot_price=line.snapshot_price,
                    ))

            self.repo.delete_cart(guest_cart)

        logger.info(f"Merged guest cart of {guest.key} into cart of {user.key}")
        return self.get(user)

    def refresh_prices(self, owner: Owner) -> Dict[str, Any]:
        """Accept current catalog prices for every line."""
        changes = []
        with unit_of_work(self.db):
            cart = self._require_cart(owner)
            for item in self.repo.get_cart_items(cart.id):
                variant = self.catalog.get_variant(item.variant_id)
                if variant["price"] != item.snapshot_price:
                    changes.append({
                        "variant_id": item.variant_id,
                        "sku": variant["sku"],
                        "old_price": item.snapshot_price,
                        "new_price": variant["price"],
                    })
                    item.snapshot_price = variant["price"]

        logger.info(f"Refreshed prices for cart of {owner.key}, {len(changes)} line(s) changed")
        result = self.get(owner)
        result["changes"] = changes
        return result
