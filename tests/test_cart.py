import pytest

from storefront.errors import CartItemNotFound, InsufficientStock, InvalidQuantity, ProductNotFound, ValidationError
from storefront.models.registry import Product


def test_add_merges_lines_and_caps_at_stock(services, make_product):
    cart = services["cart"]
    a = make_product(price="19.90", stock=3)

    cart.add_item(session_id=None, user_id="u1", product_id=a, quantity=1)
    result = cart.add_item(session_id=None, user_id="u1", product_id=a, quantity=2)
    assert result["quantity"] == 3

    with pytest.raises(InsufficientStock):
        cart.add_item(session_id=None, user_id="u1", product_id=a, quantity=1)

    view = cart.get_cart(session_id=None, user_id="u1")
    assert len(view["items"]) == 1
    assert view["subtotal"] == "59.70"


def test_cart_reads_live_prices(db, services, make_product):
    a = make_product(price="10.00", stock=5)
    services["cart"].add_item(session_id="s1", user_id=None, product_id=a, quantity=2)
    with db.session() as s:
        s.get(Product, a).price = 12
    assert services["cart"].get_cart(session_id="s1", user_id=None)["subtotal"] == "24.00"


def test_update_remove_and_ownership(services, make_product):
    cart = services["cart"]
    a = make_product(stock=5)
    item_id = cart.add_item(session_id=None, user_id="u1", product_id=a)["item_id"]

    assert cart.update_item(session_id=None, user_id="u1", item_id=item_id, quantity=4)["quantity"] == 4
    with pytest.raises(CartItemNotFound):
        cart.update_item(session_id=None, user_id="u2", item_id=item_id, quantity=1)
    with pytest.raises(InvalidQuantity):
        cart.update_item(session_id=None, user_id="u1", item_id=item_id, quantity=-1)

    assert cart.update_item(session_id=None, user_id="u1", item_id=item_id, quantity=0)["status"] == "removed"
    with pytest.raises(CartItemNotFound):
        cart.remove_item(session_id=None, user_id="u1", item_id=item_id)


def test_inactive_products_and_missing_owner(services, make_product):
    hidden = make_product(is_active=False)
    with pytest.raises(ProductNotFound):
        services["cart"].add_item(session_id="s1", user_id=None, product_id=hidden)
    with pytest.raises(ValidationError):
        services["cart"].get_cart(session_id=None, user_id=None)


def test_merge_moves_session_lines_into_user_cart(services, make_product):
    cart = services["cart"]
    a = make_product(name="Mug", stock=10)
    b = make_product(name="Plate", stock=10)
    cart.add_item(session_id="guest", user_id=None, product_id=a, quantity=2)
    cart.add_item(session_id="guest", user_id=None, product_id=b, quantity=1)
    cart.add_item(session_id=None, user_id="u1", product_id=a, quantity=3)

    assert cart.merge_carts(user_id="u1", session_id="guest")["lines"] == 2

    items = {it["name"]: it["quantity"] for it in cart.get_cart(session_id=None, user_id="u1")["items"]}
    assert items == {"Mug": 5, "Plate": 1}
    assert cart.get_cart(session_id="guest", user_id=None)["items"] == []
    assert cart.clear(session_id=None, user_id="u1") == 2


def test_fractional_quantity_is_not_truncated(services, make_product):
    a = make_product(stock=5)
    with pytest.raises(InvalidQuantity):
        services["cart"].add_item(session_id=None, user_id="u1", product_id=a, quantity=1.9)
    assert services["cart"].get_cart(session_id=None, user_id="u1")["items"] == []
