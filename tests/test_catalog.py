from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests
from fastapi.testclient import TestClient

from catalog_service.main import app as catalog_app
from orderflow.data.seed import DEV_STOCK, seed
from orderflow.domain.errors import NotFound, ProviderError
from orderflow.services.catalog_client import CatalogClient


def response(status_code, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status_code}")
    return resp


def test_dev_catalog_serves_variants():
    client = TestClient(catalog_app)
    body = client.get("/variants/kb-black").json()
    assert body["sku"] == "KB-001-BLK"
    assert client.get("/variants/unknown").status_code == 404


def test_client_parses_variant():
    body = {"id": "kb-black", "sku": "KB-001-BLK", "name": "Keyboard", "price": "450000",
            "is_active": True, "parent_active": False}
    with patch("orderflow.services.catalog_client.requests.get", return_value=response(200, body)) as get:
        variant = CatalogClient("http://catalog.test/").get_variant("kb-black")

    get.assert_called_once_with("http://catalog.test/variants/kb-black", timeout=2)
    assert variant["price"] == Decimal("450000")
    assert variant["parent_active"] is False


def test_client_maps_failures():
    client = CatalogClient("http://catalog.test")
    with patch("orderflow.services.catalog_client.requests.get", return_value=response(404)):
        with pytest.raises(NotFound):
            client.get_variant("nope")
    with patch("orderflow.services.catalog_client.requests.get", return_value=response(500)):
        with pytest.raises(ProviderError):
            client.get_variant("kb-black")


def test_client_retries_connection_errors():
    body = {"id": "x", "sku": "X", "price": "1"}
    side_effect = [requests.ConnectionError("refused"), response(200, body)]
    with patch("orderflow.services.catalog_client.requests.get", side_effect=side_effect) as get:
        assert CatalogClient("http://catalog.test").get_variant("x")["name"] == "X"
    assert get.call_count == 2


def test_client_gives_up_after_retries():
    with patch("orderflow.services.catalog_client.requests.get", side_effect=requests.Timeout("slow")) as get:
        with pytest.raises(ProviderError):
            CatalogClient("http://catalog.test").get_variant("x")
    assert get.call_count == 3


def test_seed_only_fills_empty_variants(db, ledger):
    assert seed(db) == len(DEV_STOCK)
    assert ledger.levels("kb-black")["on_hand"] == DEV_STOCK["kb-black"]

    assert seed(db) == 0
    assert ledger.levels("kb-black")["on_hand"] == DEV_STOCK["kb-black"]
