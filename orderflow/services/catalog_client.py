# orderflow/services/catalog_client.py
from decimal import Decimal

import requests

from orderflow.domain.errors import NotFound, ProviderError
from orderflow.utils.logging import get_logger
from orderflow.utils.retry import http_retry
from orderflow.utils.settings import CATALOG_SERVICE_URL

logger = get_logger(__name__)


class CatalogClient:
    """Read-only view of the external catalog: variant price and active flags."""

    def __init__(self, base_url: str | None = None, timeout: int = 2):
        self.base_url = (base_url or CATALOG_SERVICE_URL).rstrip("/")
        self.timeout = timeout

    @http_retry()
    def _fetch(self, variant_id: str) -> requests.Response:
        url = f"{self.base_url}/variants/{variant_id}"
        logger.info(f"CatalogClient GET {url}")
        return requests.get(url, timeout=self.timeout)

    def get_variant(self, variant_id: str) -> dict:
        try:
            resp = self._fetch(variant_id)
        except requests.RequestException as e:
            logger.error(f"Catalog unreachable for variant {variant_id}: {e}")
            raise ProviderError(f"Catalog unreachable: {e}")
        if resp.status_code == 404:
            raise NotFound(f"Variant {variant_id} not found", details={"variant_id": variant_id})
        try:
            resp.raise_for_status()
            data = resp.json()
        except (requests.HTTPError, ValueError) as e:
            raise ProviderError(f"Catalog lookup failed for variant {variant_id}: {e}")

        return {
            "id": str(data.get("id", variant_id)),
            "sku": data["sku"],
            "name": data.get("name") or data["sku"],
            "price": Decimal(str(data["price"])),
            "is_active": bool(data.get("is_active", True)),
            "parent_active": bool(data.get("parent_active", True)),
        }
