# orderflow/utils/codes.py
import secrets

from orderflow.utils.clock import utcnow


def human_code(prefix: str) -> str:
    """PREFIX-YYYYMMDD-XXXXXX with a random hex suffix, e.g. ORD-20250101-9F3A1C."""
    return f"{prefix}-{utcnow():%Y%m%d}-{secrets.token_hex(3).upper()}"


def order_code() -> str:
    return human_code("ORD")


def transaction_code() -> str:
    return human_code("TXN")
