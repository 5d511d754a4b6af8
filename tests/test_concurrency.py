import threading
from decimal import Decimal

from conftest import ADDRESS, CARD, customer
from storefront.errors import CouponRejected, InsufficientStock, StoreError
from storefront.models.registry import Coupon, CouponUsage, Order
from storefront.services.product_stock import StockRequest


def _race(workers):
    barrier = threading.Barrier(len(workers))
    outcomes = [None] * len(workers)

    def run(i, fn):
        barrier.wait()
        try:
            outcomes[i] = fn()
        except StoreError as exc:
            outcomes[i] = exc

    threads = [threading.Thread(target=run, args=(i, fn)) for i, fn in enumerate(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


def test_two_checkouts_for_the_last_unit(db, services, make_product, stock_of):
    last = make_product(name="Last one", price="99.00", stock=1)
    buyers = [customer("racer-1"), customer("racer-2")]
    for b in buyers:
        services["cart"].add_item(session_id=None, user_id=b.user_id, product_id=last, quantity=1)

    outcomes = _race(
        [
            lambda b=b: services["checkout"].create_order(principal=b, shipping_address=ADDRESS, payment_fields=CARD)
            for b in buyers
        ]
    )

    orders = [o for o in outcomes if isinstance(o, dict)]
    failures = [o for o in outcomes if isinstance(o, InsufficientStock)]
    assert len(orders) == 1
    assert len(failures) == 1
    assert failures[0].available == 0
    assert stock_of(last) == 0
    with db.session() as s:
        assert s.query(Order).count() == 1


def test_same_user_same_coupon_concurrently(db, services, make_product, make_coupon):
    a = make_product(price="100.00", stock=10)
    coupon_id = make_coupon(code="ONCE", discount_value="10", usage_limit=10)
    user = customer("twice")

    def attempt():
        return services["checkout"].checkout(
            principal=user,
            cart_snapshot=[StockRequest(a, 1)],
            shipping_address=ADDRESS,
            payment_fields=CARD,
            coupon_code="ONCE",
        )

    outcomes = _race([attempt, attempt])

    assert sum(isinstance(o, dict) for o in outcomes) == 1
    rejected = [o for o in outcomes if isinstance(o, CouponRejected)]
    assert [r.reason for r in rejected] == [CouponRejected.ALREADY_USED_BY_USER]
    with db.session() as s:
        assert s.get(Coupon, coupon_id).used_count == 1
        assert s.query(CouponUsage).count() == 1


def test_usage_limit_is_never_exceeded(db, services, make_product, make_coupon):
    a = make_product(price="100.00", stock=10)
    coupon_id = make_coupon(code="FIRST2", discount_value="20", usage_limit=2)
    users = [customer(f"shopper-{i}") for i in range(4)]

    outcomes = _race(
        [
            lambda u=u: services["checkout"].checkout(
                principal=u,
                cart_snapshot=[StockRequest(a, 1)],
                shipping_address=ADDRESS,
                payment_fields=CARD,
                coupon_code="FIRST2",
            )
            for u in users
        ]
    )

    assert sum(isinstance(o, dict) for o in outcomes) == 2
    assert all(o.reason == CouponRejected.USAGE_LIMIT_REACHED for o in outcomes if isinstance(o, CouponRejected))
    with db.session() as s:
        assert s.get(Coupon, coupon_id).used_count == 2
        discounts = sorted(o.discount_amount for o in s.query(Order).all())
    assert discounts == [Decimal("20.00"), Decimal("20.00")]
