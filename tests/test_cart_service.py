from decimal import Decimal

import pytest

from orderflow.domain.errors import EmptyCart, InsufficientStock, NotFound, PriceChanged, ValidationError
from orderflow.domain.identity import Owner
from orderflow.utils.settings import MAX_LINE_QUANTITY


def test_empty_cart_for_unknown_owner(cart_service, buyer):
    cart = cart_service.get(buyer)
    assert cart["cart_id"] is None
    assert cart["items"] == []
    assert cart["sub_total"] == Decimal("0.00")


def test_add_item_snapshots_price(cart_service, buyer, stock):
    stock("var-x", 10)
    cart = cart_service.add_item(buyer, "var-x", 2)

    assert cart["owner"] == "user:user-1"
    assert cart["item_count"] == 2
    [line] = cart["items"]
    assert line["snapshot_price"] == Decimal("100000")
    assert line["line_total"] == Decimal("200000")


def test_readding_reprices_whole_line(cart_service, catalog, buyer, stock):
    stock("var-x", 10)
    cart_service.add_item(buyer, "var-x", 1)
    catalog.set_price("var-x", "120000")

    cart = cart_service.add_item(buyer, "var-x", 2)

    [line] = cart["items"]
    assert line["quantity"] == 3
    assert line["snapshot_price"] == Decimal("120000")
    assert cart["sub_total"] == Decimal("360000")


def test_add_rejects_inactive_and_unknown_variants(cart_service, buyer, stock):
    stock("var-off", 10)
    with pytest.raises(ValidationError):
        cart_service.add_item(buyer, "var-off", 1)
    with pytest.raises(NotFound):
        cart_service.add_item(buyer, "var-nope", 1)


def test_add_checks_live_stock_and_line_cap(cart_service, buyer, stock):
    stock("var-x", 3)
    with pytest.raises(InsufficientStock) as exc:
        cart_service.add_item(buyer, "var-x", 4)
    assert exc.value.details[0]["available"] == 3

    stock("var-x", 200)
    with pytest.raises(ValidationError):
        cart_service.add_item(buyer, "var-x", MAX_LINE_QUANTITY + 1)

    assert cart_service.get(buyer)["items"] == []


def test_update_and_remove(cart_service, buyer, stock):
    stock("var-x", 10)
    stock("var-y", 10)
    cart_service.add_item(buyer, "var-x", 1)
    cart_service.add_item(buyer, "var-y", 1)

    cart = cart_service.update_item(buyer, "var-x", 5)
    assert {i["variant_id"]: i["quantity"] for i in cart["items"]} == {"var-x": 5, "var-y": 1}

    cart = cart_service.update_item(buyer, "var-y", 0)
    assert [i["variant_id"] for i in cart["items"]] == ["var-x"]

    with pytest.raises(NotFound):
        cart_service.remove_item(buyer, "var-y")
    with pytest.raises(NotFound):
        cart_service.update_item(buyer, "var-y", 2)
    with pytest.raises(InsufficientStock):
        cart_service.update_item(buyer, "var-x", 11)


def test_merge_sums_quantities_and_clamps(cart_service, buyer, guest, stock):
    stock("var-x", 200)
    stock("var-y", 10)
    cart_service.add_item(buyer, "var-x", 60)
    cart_service.add_item(guest, "var-x", 50)
    cart_service.add_item(guest, "var-y", 2)

    cart = cart_service.merge(guest, buyer)

    quantities = {i["variant_id"]: i["quantity"] for i in cart["items"]}
    assert quantities == {"var-x": MAX_LINE_QUANTITY, "var-y": 2}
    assert cart_service.get(guest)["cart_id"] is None


def test_merge_hands_guest_cart_over_when_user_has_none(cart_service, buyer, guest, stock):
    stock("var-x", 10)
    guest_cart = cart_service.add_item(guest, "var-x", 2)

    cart = cart_service.merge(guest, buyer)

    assert cart["cart_id"] == guest_cart["cart_id"]
    assert cart["owner"] == buyer.key
    assert cart_service.get(buyer)["item_count"] == 2
    assert cart_service.get(guest)["cart_id"] is None


def test_merge_without_guest_cart_is_noop(cart_service, buyer, guest):
    assert cart_service.merge(guest, buyer)["items"] == []


def test_merge_requires_guest_and_user(cart_service, buyer):
    with pytest.raises(ValidationError):
        cart_service.merge(buyer, Owner.user("user-2"))


def test_review_reports_price_changes(cart_service, catalog, buyer, stock):
    stock("var-x", 10)
    stock("var-y", 10)
    cart_service.add_item(buyer, "var-x", 1)
    cart_service.add_item(buyer, "var-y", 2)

    review = cart_service.review(buyer)
    assert review["sub_total"] == Decimal("600000")

    catalog.set_price("var-y", "240000")
    with pytest.raises(PriceChanged) as exc:
        cart_service.review(buyer)
    assert exc.value.details == [{
        "variant_id": "var-y",
        "sku": "SKU-Y",
        "old_price": Decimal("250000"),
        "new_price": Decimal("240000"),
    }]


def test_review_of_empty_cart(cart_service, buyer):
    with pytest.raises(EmptyCart):
        cart_service.review(buyer)


def test_refresh_prices_accepts_live_prices(cart_service, catalog, buyer, stock):
    stock("var-x", 10)
    cart_service.add_item(buyer, "var-x", 2)
    catalog.set_price("var-x", "90000")

    cart = cart_service.refresh_prices(buyer)

    assert cart["changes"][0]["old_price"] == Decimal("100000")
    assert cart["items"][0]["snapshot_price"] == Decimal("90000")
    # snapshots match again
    assert cart_service.review(buyer)["sub_total"] == Decimal("180000")
