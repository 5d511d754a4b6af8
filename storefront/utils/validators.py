"""Input validation for checkout, cart and return requests.

Everything here runs before a transaction is opened, so a rejection never has
side effects.
"""

import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from ..errors import InvalidAddress, InvalidPayment, InvalidQuantity

DEFAULT_COUNTRY = "Türkiye"

_EXPIRY_RE = re.compile(r"^\d{2}/\d{2}$")
_INT_RE = re.compile(r"^-?[0-9]+$")


@dataclass(frozen=True)
class ShippingAddress:
    """Point-in-time delivery address stored on the order."""

    full_name: str
    phone: str
    address: str
    city: str
    postal_code: str
    country: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class CardFields:
    number: str
    holder: str
    expiry: str
    cvc: str

    @property
    def last4(self) -> str:
        return self.number[-4:]

    def masked(self) -> Dict[str, str]:
        # never log the CVC
        return {
            "card_number": "*" * (len(self.number) - 4) + self.last4,
            "card_holder": self.holder,
            "expiry": self.expiry,
        }


def _pick(raw: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return str(value).strip()
    return ""


def _require_min(value: str, minimum: int, field: str, message: str) -> str:
    if len(value) < minimum:
        raise InvalidAddress(field, message)
    return value


def validate_shipping_address(raw: Optional[Mapping[str, Any]]) -> ShippingAddress:
    raw = raw or {}
    full_name = _require_min(_pick(raw, "fullName", "full_name"), 2, "fullName", "Full name is required")
    phone = _pick(raw, "phone")
    if len(re.sub(r"\D", "", phone)) < 10:
        raise InvalidAddress("phone", "Phone number must contain at least 10 digits")
    address = _require_min(_pick(raw, "address"), 5, "address", "Address is required")
    city = _require_min(_pick(raw, "city"), 2, "city", "City is required")
    postal_code = _require_min(_pick(raw, "postalCode", "postal_code"), 5, "postalCode", "Postal code is required")
    country = _pick(raw, "country") or DEFAULT_COUNTRY
    _require_min(country, 2, "country", "Country is required")
    return ShippingAddress(
        full_name=full_name,
        phone=phone,
        address=address,
        city=city,
        postal_code=postal_code,
        country=country,
    )


def validate_payment_fields(raw: Optional[Mapping[str, Any]]) -> CardFields:
    """Format-only validation of card fields; nothing is sent to a processor here."""
    raw = raw or {}
    number = re.sub(r"\D", "", _pick(raw, "cardNumber", "card_number"))
    if len(number) != 16:
        raise InvalidPayment("cardNumber", "Card number must have 16 digits")
    holder = _pick(raw, "cardHolder", "card_holder")
    if len(holder) < 2:
        raise InvalidPayment("cardHolder", "Card holder name is required")
    expiry = _pick(raw, "expiryDate", "expiry_date")
    if not _EXPIRY_RE.match(expiry):
        raise InvalidPayment("expiryDate", "Expiry date must be in MM/YY format")
    cvc = _pick(raw, "cvc")
    if len(cvc) != 3 or not cvc.isdigit():
        raise InvalidPayment("cvc", "CVC must have 3 digits")
    return CardFields(number=number, holder=holder, expiry=expiry, cvc=cvc)


def ensure_quantity(value: Any, field: str = "quantity", allow_zero: bool = False) -> int:
    # whole numbers only; floats and booleans are rejected
    if isinstance(value, int) and not isinstance(value, bool):
        qty = value
    elif isinstance(value, str) and _INT_RE.match(value.strip()):
        qty = int(value)
    else:
        raise InvalidQuantity(field, f"{field} must be an integer")
    if qty < 0 or (qty == 0 and not allow_zero):
        raise InvalidQuantity(field, f"{field} must be {'>= 0' if allow_zero else '> 0'}")
    return qty


def normalize_coupon_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()
