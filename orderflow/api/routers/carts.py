# orderflow/api/routers/carts.py
from fastapi import APIRouter, Depends

from orderflow.api.deps import get_cart_service, get_owner, get_user_id
from orderflow.domain.identity import Owner
from orderflow.domain.schemas import CartItemIn, CartItemUpdate, CartMergeIn, CartOut, CartReviewOut
from orderflow.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=CartOut)
def get_cart(owner: Owner = Depends(get_owner), svc: CartService = Depends(get_cart_service)):
    return svc.get(owner)


@router.get("/review", response_model=CartReviewOut)
def review_cart(owner: Owner = Depends(get_owner), svc: CartService = Depends(get_cart_service)):
    """Cart priced at live catalog prices; 409 price_changed when a snapshot is stale."""
    return svc.review(owner)


@router.post("/items", response_model=CartOut)
def add_item(
    payload: CartItemIn,
    owner: Owner = Depends(get_owner),
    svc: CartService = Depends(get_cart_service),
):
    return svc.add_item(owner, payload.variant_id, payload.quantity)


@router.put("/items/{variant_id}", response_model=CartOut)
def update_item(
    variant_id: str,
    payload: CartItemUpdate,
    owner: Owner = Depends(get_owner),
    svc: CartService = Depends(get_cart_service),
):
    return svc.update_item(owner, variant_id, payload.quantity)


@router.delete("/items/{variant_id}", response_model=CartOut)
def remove_item(
    variant_id: str,
    owner: Owner = Depends(get_owner),
    svc: CartService = Depends(get_cart_service),
):
    return svc.remove_item(owner, variant_id)


@router.post("/merge", response_model=CartOut)
def merge_cart(
    payload: CartMergeIn,
    user_id: str = Depends(get_user_id),
    svc: CartService = Depends(get_cart_service),
):
    return svc.merge(Owner.guest(payload.session_id), Owner.user(user_id))


@router.post("/refresh-prices", response_model=CartOut)
def refresh_prices(owner: Owner = Depends(get_owner), svc: CartService = Depends(get_cart_service)):
    return svc.refresh_prices(owner)
