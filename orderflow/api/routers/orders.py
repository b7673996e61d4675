# orderflow/api/routers/orders.py
from typing import List

from fastapi import APIRouter, Body, Depends, Header, Query, Request

from orderflow.api.deps import get_order_service, get_owner, get_user_id
from orderflow.domain.identity import Owner
from orderflow.domain.schemas import (
    CancelIn,
    CheckoutIn,
    CheckoutOut,
    OrderDetailOut,
    OrderStatusOut,
    OrderSummaryOut,
    OrderTransitionOut,
    PayAgainIn,
    PaymentHandleOut,
)
from orderflow.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/checkout", response_model=CheckoutOut, status_code=201)
def checkout(
    payload: CheckoutIn,
    request: Request,
    owner: Owner = Depends(get_owner),
    idempotency_key: str | None = Header(None),
    svc: OrderService = Depends(get_order_service),
):
    """
    Converts the caller's cart into an order.
    Gateway methods answer with a payment URL; COD orders are confirmed immediately.
    """
    data = payload.model_dump()
    data["client_ip"] = request.client.host if request.client else None
    return svc.create_order_with_payment(owner, data, idempotency_key=idempotency_key)


@router.get("", response_model=List[OrderSummaryOut])
def list_orders(
    user_id: str = Depends(get_user_id),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    svc: OrderService = Depends(get_order_service),
):
    return svc.list_orders(user_id, limit, offset)


@router.get("/{order_id}", response_model=OrderDetailOut)
def get_order(order_id: str, owner: Owner = Depends(get_owner), svc: OrderService = Depends(get_order_service)):
    return svc.get_order(order_id, owner)


@router.get("/{order_id}/status", response_model=OrderStatusOut)
def get_order_status(order_id: str, owner: Owner = Depends(get_owner), svc: OrderService = Depends(get_order_service)):
    return svc.get_order_status(order_id, owner)


@router.post("/{order_id}/cancel", response_model=OrderTransitionOut)
def cancel_order(
    order_id: str,
    payload: CancelIn | None = Body(None),
    owner: Owner = Depends(get_owner),
    svc: OrderService = Depends(get_order_service),
):
    return svc.cancel_pending_order(order_id, owner, payload.reason if payload else None)


@router.post("/{order_id}/pay", response_model=PaymentHandleOut)
def pay_again(
    order_id: str,
    request: Request,
    payload: PayAgainIn | None = Body(None),
    owner: Owner = Depends(get_owner),
    svc: OrderService = Depends(get_order_service),
):
    metadata = payload.model_dump() if payload else {}
    metadata["ip_addr"] = request.client.host if request.client else None
    return svc.pay_again(order_id, owner, metadata)
