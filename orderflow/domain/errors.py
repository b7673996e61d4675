# orderflow/domain/errors.py
from typing import Any


class OrderflowError(Exception):
    """Base for every error the checkout/payment core raises on purpose."""

    code = "error"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(OrderflowError):
    code = "validation_error"


class EmptyCart(OrderflowError):
    code = "empty_cart"

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class InsufficientStock(OrderflowError):
    """Live stock cannot cover the request. ``details`` lists the offending variants."""

    code = "insufficient_stock"


class PriceChanged(OrderflowError):
    """Catalog prices moved since the buyer last saw them.

    ``details`` is a list of ``{variant_id, sku, old_price, new_price}`` so the
    client can show the difference and resubmit.
    """

    code = "price_changed"


class NotFound(OrderflowError):
    code = "not_found"


class InvalidStateTransition(OrderflowError):
    code = "invalid_state_transition"


class ProviderError(OrderflowError):
    code = "provider_error"


class SignatureInvalid(OrderflowError):
    code = "signature_invalid"

    def __init__(self, message: str = "Invalid callback signature"):
        super().__init__(message)


class OperationInProgress(OrderflowError):
    code = "operation_in_progress"

    def __init__(self, message: str = "Operation already in progress, retry shortly", retry_after: int = 2):
        super().__init__(message)
        self.retry_after = retry_after


class Unauthorized(OrderflowError):
    code = "unauthorized"
