import enum

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Enum, Integer, Numeric, String, Text

from ..utils.clock import utcnow
from .base import Base


class DiscountType(enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint(
            "usage_limit IS NULL OR used_count <= usage_limit",
            name="ck_coupons_usage_within_limit",
        ),
    )

    id = Column(String(36), primary_key=True)
    # stored upper-cased, which makes lookups case-insensitive
    code = Column(String(50), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    discount_type = Column(
        Enum(DiscountType, native_enum=False, validate_strings=True, length=16),
        nullable=False,
    )
    discount_value = Column(Numeric(12, 2), nullable=False)
    min_purchase_amount = Column(Numeric(12, 2), nullable=True)
    max_discount_amount = Column(Numeric(12, 2), nullable=True)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    valid_from = Column(DateTime, nullable=False, default=utcnow)
    valid_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
