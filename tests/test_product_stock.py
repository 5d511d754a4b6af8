from decimal import Decimal

import pytest

from storefront.errors import InsufficientStock, InvalidQuantity, ProductNotFound
from storefront.services.product_stock import StockRequest


def test_reserve_decrements_all_lines_and_snapshots_price(db, services, make_product, stock_of):
    a = make_product(name="Lamp", price="100.00", stock=2)
    b = make_product(name="Desk", price="250.50", stock=5)

    with db.session() as s:
        lines = services["stock"].check_and_reserve(s, [StockRequest(a, 2), StockRequest(b, 1)])

    assert [(l.name_snapshot, l.price_snapshot, l.quantity) for l in lines] == [
        ("Lamp", Decimal("100.00"), 2),
        ("Desk", Decimal("250.50"), 1),
    ]
    assert stock_of(a) == 0
    assert stock_of(b) == 4


def test_duplicate_product_lines_are_summed(db, services, make_product, stock_of):
    a = make_product(stock=3)
    with db.session() as s, pytest.raises(InsufficientStock) as exc:
        services["stock"].check_and_reserve(s, [StockRequest(a, 2), StockRequest(a, 2)])
    assert exc.value.requested == 4
    assert stock_of(a) == 3


def test_one_short_line_aborts_the_whole_reservation(db, services, make_product, stock_of):
    plenty = make_product(name="Cable", stock=10)
    scarce = make_product(name="Monitor", stock=1)

    with pytest.raises(InsufficientStock) as exc:
        with db.session() as s:
            services["stock"].check_and_reserve(s, [StockRequest(plenty, 3), StockRequest(scarce, 2)])

    assert exc.value.product_name == "Monitor"
    assert (exc.value.available, exc.value.requested) == (1, 2)
    assert stock_of(plenty) == 10
    assert stock_of(scarce) == 1


def test_inactive_or_missing_product_is_not_found(db, services, make_product):
    hidden = make_product(is_active=False)
    with db.session() as s, pytest.raises(ProductNotFound):
        services["stock"].check_and_reserve(s, [StockRequest(hidden, 1)])
    with db.session() as s, pytest.raises(ProductNotFound):
        services["stock"].check_and_reserve(s, [StockRequest("missing", 1)])


def test_non_positive_quantity_is_rejected(db, services, make_product):
    a = make_product()
    with db.session() as s, pytest.raises(InvalidQuantity):
        services["stock"].check_and_reserve(s, [StockRequest(a, 0)])


def test_restore_is_the_inverse_of_reserve(db, services, make_product, stock_of):
    a = make_product(stock=4)
    with db.session() as s:
        services["stock"].check_and_reserve(s, [StockRequest(a, 3)])
    with db.session() as s:
        services["stock"].restore(s, [StockRequest(a, 3), StockRequest("gone", 1)])
    assert stock_of(a) == 4
