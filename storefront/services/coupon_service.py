"""Coupon validation, redemption and administration.

Rules are evaluated in a fixed order and the first failing one is reported:
not found, inactive, not yet valid, expired, usage limit reached, below the
minimum purchase, already used by this user.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import CouponNotFound, CouponRejected, InvalidCouponData
from ..models.registry import Coupon, CouponUsage, DiscountType
from ..principal import Principal
from ..utils.clock import to_naive_utc, utcnow
from ..utils.dto import money, quantize, to_coupon_dto
from ..utils.validators import normalize_coupon_code
from .logging import log_event


@dataclass(frozen=True)
class CouponReservation:
    coupon: Coupon
    discount: Decimal


def compute_discount(coupon: Coupon, purchase_total: Decimal) -> Decimal:
    total = Decimal(purchase_total)
    value = Decimal(coupon.discount_value)
    if coupon.discount_type is DiscountType.PERCENTAGE:
        discount = total * value / Decimal(100)
        if coupon.max_discount_amount is not None and discount > Decimal(coupon.max_discount_amount):
            discount = Decimal(coupon.max_discount_amount)
    else:
        discount = value
    # a discount never makes the order negative
    if discount > total:
        discount = total
    return quantize(discount)


def _decimal(value: Any, field: str, allow_none: bool = True) -> Optional[Decimal]:
    if value is None or value == "":
        if allow_none:
            return None
        raise InvalidCouponData(field, f"{field} is required")
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidCouponData(field, f"{field} must be a number") from None
    if not parsed.is_finite():
        raise InvalidCouponData(field, f"{field} must be a number")
    if parsed < 0:
        raise InvalidCouponData(field, f"{field} must be >= 0")
    return parsed


_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def _flag(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise InvalidCouponData(field, f"{field} must be true or false")


def _usage_limit(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise InvalidCouponData("usage_limit", "usage_limit must be an integer") from None
    if limit <= 0:
        raise InvalidCouponData("usage_limit", "usage_limit must be a positive integer")
    return limit


def _datetime(value: Any, field: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    try:
        return to_naive_utc(datetime.fromisoformat(str(value)))
    except ValueError:
        raise InvalidCouponData(field, f"{field} must be an ISO-8601 timestamp") from None


class CouponService:
    """CouponLedger: read-only previews, in-transaction reservation, admin CRUD."""

    def __init__(self, session_factory, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    # -- rule evaluation -----------------------------------------------------

    def _evaluate(self, session: Session, coupon: Optional[Coupon], user_id: str, purchase_total: Decimal) -> Decimal:
        if coupon is None:
            raise CouponRejected(CouponRejected.NOT_FOUND)
        if not coupon.is_active:
            raise CouponRejected(CouponRejected.INACTIVE)
        now = self._clock()
        if coupon.valid_from and coupon.valid_from > now:
            raise CouponRejected(CouponRejected.NOT_YET_VALID)
        if coupon.valid_until and coupon.valid_until < now:
            raise CouponRejected(CouponRejected.EXPIRED)
        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            raise CouponRejected(CouponRejected.USAGE_LIMIT_REACHED)
        if coupon.min_purchase_amount is not None and Decimal(purchase_total) < Decimal(coupon.min_purchase_amount):
            raise CouponRejected(CouponRejected.BELOW_MINIMUM_PURCHASE, minimum=Decimal(coupon.min_purchase_amount))
        already_used = (
            session.query(CouponUsage.id)
            .filter(CouponUsage.coupon_id == coupon.id, CouponUsage.user_id == user_id)
            .first()
        )
        if already_used:
            raise CouponRejected(CouponRejected.ALREADY_USED_BY_USER)
        return compute_discount(coupon, purchase_total)

    def validate_coupon(self, code: str, user_id: str, subtotal: Any) -> Dict:
        """Preview the discount for a subtotal without reserving anything."""
        total = _decimal(subtotal, "subtotal", allow_none=False)
        with self._session_factory() as session:
            coupon = session.query(Coupon).filter(Coupon.code == normalize_coupon_code(code)).first()
            discount = self._evaluate(session, coupon, user_id, total)
            return {"discountAmount": money(discount), "couponId": coupon.id, "code": coupon.code}

    def validate_and_reserve(self, session: Session, code: str, user_id: str, purchase_total: Decimal) -> CouponReservation:
        """Evaluate the coupon under a row lock held by the checkout transaction."""
        coupon = (
            session.query(Coupon)
            .filter(Coupon.code == normalize_coupon_code(code))
            .with_for_update()
            .populate_existing()
            .first()
        )
        discount = self._evaluate(session, coupon, user_id, purchase_total)
        return CouponReservation(coupon=coupon, discount=discount)

    def redeem(self, session: Session, reservation: CouponReservation, *, user_id: str, order_id: str) -> CouponUsage:
        """Count the use and record who used it, in the caller's transaction."""
        coupon = reservation.coupon
        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            raise CouponRejected(CouponRejected.USAGE_LIMIT_REACHED)
        coupon.used_count += 1
        coupon.updated_at = self._clock()
        usage = CouponUsage(id=str(uuid4()), coupon_id=coupon.id, user_id=user_id, order_id=order_id)
        session.add(usage)
        try:
            session.flush()
        except IntegrityError as exc:
            # the (coupon_id, user_id) constraint caught a concurrent redemption
            raise CouponRejected(CouponRejected.ALREADY_USED_BY_USER) from exc
        log_event("info", "coupon.redeemed", coupon_id=coupon.id, user_id=user_id, order_id=order_id)
        return usage

    # -- administration ------------------------------------------------------

    @staticmethod
    def _check_code(code: Optional[str]) -> str:
        normalized = normalize_coupon_code(code)
        if not normalized or len(normalized) > 50:
            raise InvalidCouponData("code", "Coupon code must be 1-50 characters")
        return normalized

    @staticmethod
    def _check_discount(discount_type: Any, discount_value: Any) -> tuple:
        try:
            dtype = discount_type if isinstance(discount_type, DiscountType) else DiscountType(str(discount_type).upper())
        except ValueError:
            raise InvalidCouponData("discount_type", "discount_type must be PERCENTAGE or FIXED") from None
        value = _decimal(discount_value, "discount_value", allow_none=False)
        if value <= 0:
            raise InvalidCouponData("discount_value", "discount_value must be positive")
        if dtype is DiscountType.PERCENTAGE and value > 100:
            raise InvalidCouponData("discount_value", "A percentage discount cannot exceed 100")
        return dtype, value

    def create_coupon(
        self,
        principal: Principal,
        *,
        code: str,
        discount_type: Any,
        discount_value: Any,
        description: Optional[str] = None,
        min_purchase_amount: Any = None,
        max_discount_amount: Any = None,
        usage_limit: Optional[int] = None,
        valid_from: Any = None,
        valid_until: Any = None,
    ) -> Dict:
        principal.require_admin()
        normalized = self._check_code(code)
        dtype, value = self._check_discount(discount_type, discount_value)
        limit = _usage_limit(usage_limit)
        starts = _datetime(valid_from, "valid_from") or self._clock()
        ends = _datetime(valid_until, "valid_until")
        if ends is not None and ends < starts:
            raise InvalidCouponData("valid_until", "valid_until must be after valid_from")
        with self._session_factory() as session:
            if session.query(Coupon.id).filter(Coupon.code == normalized).first():
                raise InvalidCouponData("code", f"Coupon code already exists: {normalized}")
            coupon = Coupon(
                id=str(uuid4()),
                code=normalized,
                description=description,
                discount_type=dtype,
                discount_value=value,
                min_purchase_amount=_decimal(min_purchase_amount, "min_purchase_amount"),
                max_discount_amount=_decimal(max_discount_amount, "max_discount_amount"),
                usage_limit=limit,
                used_count=0,
                is_active=True,
                valid_from=starts,
                valid_until=ends,
            )
            session.add(coupon)
            session.flush()
            dto = to_coupon_dto(coupon)
        log_event("info", "coupon.created", coupon_id=dto["id"], code=normalized)
        return dto

    _UPDATABLE = {
        "code",
        "description",
        "discount_type",
        "discount_value",
        "min_purchase_amount",
        "max_discount_amount",
        "usage_limit",
        "is_active",
        "valid_from",
        "valid_until",
    }

    def update_coupon(self, principal: Principal, coupon_id: str, **changes) -> Dict:
        principal.require_admin()
        unknown = set(changes) - self._UPDATABLE
        if unknown:
            raise InvalidCouponData(sorted(unknown)[0], "Unknown coupon field")
        with self._session_factory() as session:
            coupon = session.query(Coupon).filter(Coupon.id == coupon_id).with_for_update().first()
            if coupon is None:
                raise CouponNotFound(coupon_id)
            if "code" in changes:
                normalized = self._check_code(changes["code"])
                clash = session.query(Coupon.id).filter(Coupon.code == normalized, Coupon.id != coupon_id).first()
                if clash:
                    raise InvalidCouponData("code", f"Coupon code already exists: {normalized}")
                coupon.code = normalized
            if "discount_type" in changes or "discount_value" in changes:
                coupon.discount_type, coupon.discount_value = self._check_discount(
                    changes.get("discount_type", coupon.discount_type),
                    changes.get("discount_value", coupon.discount_value),
                )
            if "description" in changes:
                coupon.description = changes["description"]
            for field in ("min_purchase_amount", "max_discount_amount"):
                if field in changes:
                    setattr(coupon, field, _decimal(changes[field], field))
            if "usage_limit" in changes:
                limit = _usage_limit(changes["usage_limit"])
                if limit is not None and limit < coupon.used_count:
                    raise InvalidCouponData("usage_limit", "usage_limit cannot be below the current used count")
                coupon.usage_limit = limit
            if "is_active" in changes:
                coupon.is_active = _flag(changes["is_active"], "is_active")
            if "valid_from" in changes:
                coupon.valid_from = _datetime(changes["valid_from"], "valid_from") or coupon.valid_from
            if "valid_until" in changes:
                coupon.valid_until = _datetime(changes["valid_until"], "valid_until")
            coupon.updated_at = self._clock()
            session.flush()
            return to_coupon_dto(coupon)

    def list_coupons(self, principal: Principal, include_inactive: bool = False) -> List[Dict]:
        principal.require_admin()
        with self._session_factory() as session:
            q = session.query(Coupon)
            if not include_inactive:
                q = q.filter(Coupon.is_active.is_(True))
            return [to_coupon_dto(c) for c in q.order_by(Coupon.created_at.desc()).all()]
