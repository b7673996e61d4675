# orderflow/api/errors.py
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from orderflow.domain.errors import (
    EmptyCart,
    InsufficientStock,
    InvalidStateTransition,
    NotFound,
    OperationInProgress,
    OrderflowError,
    PriceChanged,
    ProviderError,
    SignatureInvalid,
    Unauthorized,
    ValidationError,
)
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)

# checked in order, first match wins
STATUS_CODES: list[tuple[type[OrderflowError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (EmptyCart, status.HTTP_400_BAD_REQUEST),
    (SignatureInvalid, status.HTTP_400_BAD_REQUEST),
    (Unauthorized, status.HTTP_403_FORBIDDEN),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InsufficientStock, status.HTTP_409_CONFLICT),
    (PriceChanged, status.HTTP_409_CONFLICT),
    (InvalidStateTransition, status.HTTP_409_CONFLICT),
    (OperationInProgress, status.HTTP_409_CONFLICT),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
]


def status_for(exc: OrderflowError) -> int:
    for cls, code in STATUS_CODES:
        if isinstance(exc, cls):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(exc: OrderflowError) -> JSONResponse:
    code = status_for(exc)
    body = {"error": {"code": exc.code, "message": exc.message, "details": exc.details}}
    response = JSONResponse(status_code=code, content=jsonable_encoder(body))
    if isinstance(exc, OperationInProgress):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


async def orderflow_error_handler(request: Request, exc: OrderflowError) -> JSONResponse:
    if status_for(exc) >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return error_response(exc)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OrderflowError, orderflow_error_handler)
