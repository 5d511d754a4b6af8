from datetime import datetime
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

import pytest

from app import build_components, create_app
from storefront.config import AppConfig
from storefront.db.migrations import migrate
from storefront.db.session import Database
from storefront.models.registry import Coupon, DiscountType, Product
from storefront.principal import Principal
from storefront.services.notifications import RecordingNotificationSink
from storefront.services.payment import FakeAuthorizer

ADDRESS = {
    "fullName": "Ayşe Yılmaz",
    "phone": "0532 123 45 67",
    "address": "Bağdat Caddesi No 12",
    "city": "İstanbul",
    "postalCode": "34710",
}

CARD = {
    "cardNumber": "4111 1111 1111 1111",
    "cardHolder": "Ayse Yilmaz",
    "expiryDate": "12/29",
    "cvc": "123",
}


def customer(user_id):
    return Principal(user_id=user_id)


def admin(user_id):
    return Principal(user_id=user_id, is_admin=True)


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "concurrency" in Path(str(item.fspath)).name:
            item.add_marker(pytest.mark.slow)


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        database_url=f"sqlite:///{tmp_path / 'store.db'}",
        secret_key="test-secret",
        log_level="WARNING",
        currency="TRY",
        lock_timeout_seconds=10.0,
        settings_file=tmp_path / "settings.json",
    )


@pytest.fixture
def db(config):
    database = Database(config.database_url, lock_timeout_seconds=config.lock_timeout_seconds)
    migrate(database)
    yield database
    database.dispose()


@pytest.fixture
def notifier():
    return RecordingNotificationSink()


@pytest.fixture
def payments():
    return FakeAuthorizer()


@pytest.fixture
def services(db, config, payments, notifier):
    return build_components(db, config, payments=payments, notifier=notifier)


@pytest.fixture
def buyer():
    return customer("user-1")


@pytest.fixture
def staff():
    return admin("admin-1")


@pytest.fixture
def make_product(db):
    def _make(name="Keyboard", price="100.00", stock=10, is_active=True):
        product_id = str(uuid4())
        with db.session() as s:
            s.add(
                Product(
                    id=product_id,
                    sku=f"SKU-{product_id[:8]}",
                    name=name,
                    price=Decimal(price),
                    stock=stock,
                    is_active=is_active,
                )
            )
        return product_id

    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE10", discount_type=DiscountType.PERCENTAGE, discount_value="10", **fields):
        coupon_id = str(uuid4())
        fields.setdefault("valid_from", datetime(2020, 1, 1))
        used_count = fields.pop("used_count", 0)
        with db.session() as s:
            s.add(
                Coupon(
                    id=coupon_id,
                    code=code,
                    discount_type=discount_type,
                    discount_value=Decimal(discount_value),
                    used_count=used_count,
                    **fields,
                )
            )
        return coupon_id

    return _make


@pytest.fixture
def stock_of(db):
    def _stock(product_id):
        with db.session() as s:
            return s.get(Product, product_id).stock

    return _stock


@pytest.fixture
def place_order(services):
    """Fill the principal's cart and check it out."""

    def _place(principal, lines, coupon_code=None):
        for product_id, qty in lines:
            services["cart"].add_item(session_id=None, user_id=principal.user_id, product_id=product_id, quantity=qty)
        return services["checkout"].create_order(
            principal=principal,
            shipping_address=ADDRESS,
            payment_fields=CARD,
            coupon_code=coupon_code,
        )

    return _place


@pytest.fixture
def app(config, payments, notifier):
    flask_app = create_app(config, payments=payments, notifier=notifier)
    flask_app.config["TESTING"] = True
    database = flask_app.extensions["storefront_components"]["database"]
    migrate(database)
    yield flask_app
    database.dispose()


@pytest.fixture
def client(app):
    return app.test_client()
