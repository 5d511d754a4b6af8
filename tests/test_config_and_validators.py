import json

import pytest

from conftest import admin, customer
from storefront.config import load_env, validate_currency, validate_lock_timeout
from storefront.db.migrations import LATEST_VERSION, current_version, migrate
from storefront.errors import AdminRequired, Forbidden, InvalidAddress, InvalidPayment, InvalidQuantity
from storefront.principal import Principal
from storefront.utils.validators import ensure_quantity, validate_payment_fields, validate_shipping_address


def test_settings_file_wins_over_environment(tmp_path, monkeypatch):
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"CURRENCY": "eur", "LOCK_TIMEOUT_SECONDS": 2}), encoding="utf-8")
    monkeypatch.setenv("CURRENCY", "USD")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///from-env.db")

    cfg = load_env(settings)

    assert cfg.currency == "EUR"
    assert cfg.lock_timeout_seconds == 2.0
    assert cfg.database_url == "sqlite:///from-env.db"


def test_config_validation():
    assert validate_currency(None) == "TRY"
    with pytest.raises(ValueError):
        validate_currency("EURO")
    assert validate_lock_timeout("") == 5.0
    with pytest.raises(ValueError):
        validate_lock_timeout(0)


def test_migrate_is_idempotent(db):
    assert current_version(db) == LATEST_VERSION
    assert migrate(db) == LATEST_VERSION


def test_shipping_address_rules():
    addr = validate_shipping_address(
        {"full_name": "Can", "phone": "+90 555 111 2233", "address": "Main st 5", "city": "Izmir", "postal_code": "35000"}
    )
    assert addr.country == "Türkiye"
    with pytest.raises(InvalidAddress) as exc:
        validate_shipping_address({"fullName": "Can", "phone": "555-12", "address": "Main st 5"})
    assert exc.value.field == "phone"


@pytest.mark.parametrize(
    "override, field",
    [
        ({"cardNumber": "4111 1111 1111"}, "cardNumber"),
        ({"cardHolder": "X"}, "cardHolder"),
        ({"expiryDate": "1229"}, "expiryDate"),
        ({"cvc": "12a"}, "cvc"),
    ],
)
def test_payment_field_rules(override, field):
    raw = {"cardNumber": "4111-1111-1111-1111", "cardHolder": "Can Ak", "expiryDate": "12/29", "cvc": "123"}
    raw.update(override)
    with pytest.raises(InvalidPayment) as exc:
        validate_payment_fields(raw)
    assert exc.value.field == field


def test_card_is_masked():
    card = validate_payment_fields(
        {"cardNumber": "4111-1111-1111-1234", "cardHolder": "Can Ak", "expiryDate": "12/29", "cvc": "123"}
    )
    assert card.masked()["card_number"] == "************1234"
    assert "cvc" not in card.masked()


def test_quantities():
    assert ensure_quantity("3") == 3
    assert ensure_quantity(0, allow_zero=True) == 0
    with pytest.raises(InvalidQuantity):
        ensure_quantity(0)
    with pytest.raises(InvalidQuantity):
        ensure_quantity("many")
    assert ensure_quantity(" 4 ") == 4


@pytest.mark.parametrize("value", [1.9, 2.0, "1.5", True, None, "--3"])
def test_quantities_must_be_whole_numbers(value):
    with pytest.raises(InvalidQuantity):
        ensure_quantity(value)


def test_principal_roles():
    guest = Principal(session_id="guest-1")
    with pytest.raises(Forbidden):
        guest.require_user()
    assert not guest.can_access("user-1")

    buyer = customer("user-1")
    assert buyer.require_user() == "user-1"
    assert buyer.can_access("user-1") and not buyer.can_access("user-2")
    with pytest.raises(AdminRequired):
        buyer.require_admin()

    staff = admin("admin-1")
    assert staff.require_admin() == "admin-1"
    assert staff.can_access("user-2")
    # an admin flag without a user id is not enough
    with pytest.raises(AdminRequired):
        Principal(is_admin=True).require_admin()
