# orderflow/api/routers/payments.py
from urllib.parse import urlencode

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import RedirectResponse

from orderflow.api.deps import get_owner, get_payment_service, require_admin
from orderflow.domain.enums import PaymentMethod
from orderflow.domain.errors import NotFound, OperationInProgress, OrderflowError, SignatureInvalid
from orderflow.domain.identity import Owner
from orderflow.domain.schemas import CallbackOut, CodConfirmIn, CodConfirmOut, PaymentStatusOut, RefundIn, RefundOut
from orderflow.services.payment_service import PaymentService
from orderflow.utils import settings
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _frontend(path: str, params: dict) -> str:
    return f"{settings.FRONTEND_URL}{path}?{urlencode(params)}"


@router.get("/vnpay/return")
def vnpay_return(request: Request, svc: PaymentService = Depends(get_payment_service)):
    """Buyer's browser lands here after the gateway; always answered with a redirect to the shop."""
    try:
        result = svc.process_callback(PaymentMethod.GATEWAY_REDIRECT, dict(request.query_params))
    except OrderflowError as e:
        logger.warning(f"VNPAY return not processed: {e.code} {e.message}")
        return RedirectResponse(_frontend(settings.PAYMENT_ERROR_PATH, {"message": e.message}), status_code=302)

    return RedirectResponse(
        _frontend(settings.PAYMENT_SUCCESS_PATH, {
            "orderId": result["order_id"],
            "status": result["status"],
            "transactionId": result["transaction_id"],
        }),
        status_code=302,
    )


@router.get("/vnpay/ipn")
def vnpay_ipn(request: Request, svc: PaymentService = Depends(get_payment_service)):
    """Server-to-server notification. The gateway reads RspCode; 00 stops its retries."""
    try:
        result = svc.process_callback(PaymentMethod.GATEWAY_REDIRECT, dict(request.query_params))
    except SignatureInvalid:
        return {"RspCode": "97", "Message": "Invalid signature"}
    except NotFound:
        return {"RspCode": "01", "Message": "Order not found"}
    except OperationInProgress:
        return {"RspCode": "99", "Message": "Processing, retry later"}
    if result["note"]:
        # verified but not applied to the order
        logger.warning(f"VNPAY IPN for order {result['order_code']} not applied: {result['note']}")
        return {"RspCode": "02", "Message": "Order already confirmed"}
    return {"RspCode": "00", "Message": "Confirm Success"}


@router.post("/paypal/capture/{provider_order_id}", response_model=CallbackOut)
def paypal_capture(provider_order_id: str, svc: PaymentService = Depends(get_payment_service)):
    return svc.capture_payment(provider_order_id)


@router.post("/paypal/webhook", response_model=CallbackOut)
def paypal_webhook(
    request: Request,
    payload: dict = Body(...),
    svc: PaymentService = Depends(get_payment_service),
):
    return svc.process_callback(PaymentMethod.GATEWAY_CAPTURE, payload, dict(request.headers))


@router.post("/orders/{order_id}/refund", response_model=RefundOut)
def refund_order(
    order_id: str,
    payload: RefundIn | None = Body(None),
    admin: str = Depends(require_admin),
    svc: PaymentService = Depends(get_payment_service),
):
    payload = payload or RefundIn()
    return svc.process_refund(
        order_id,
        amount=payload.amount,
        reason=payload.reason,
        restore_inventory=payload.restore_inventory,
        actor_id=admin,
    )


@router.get("/orders/{order_id}", response_model=PaymentStatusOut)
def payment_status(order_id: str, owner: Owner = Depends(get_owner), svc: PaymentService = Depends(get_payment_service)):
    return svc.get_payment_status(order_id, owner)


@router.post("/orders/{order_id}/cod-confirm", response_model=CodConfirmOut)
def confirm_cod_payment(
    order_id: str,
    payload: CodConfirmIn | None = Body(None),
    admin: str = Depends(require_admin),
    svc: PaymentService = Depends(get_payment_service),
):
    """Staff record that the courier collected the cash."""
    payload = payload or CodConfirmIn()
    return svc.confirm_cod_payment(order_id, confirmed_by=payload.confirmed_by or admin, note=payload.note)
