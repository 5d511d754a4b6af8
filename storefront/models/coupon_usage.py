from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint

from ..utils.clock import utcnow
from .base import Base


class CouponUsage(Base):
    __tablename__ = "coupon_usage"
    # final guard against two concurrent redemptions by the same user
    __table_args__ = (UniqueConstraint("coupon_id", "user_id", name="uq_coupon_usage_coupon_user"),)

    id = Column(String(36), primary_key=True)
    coupon_id = Column(String(36), ForeignKey("coupons.id"), nullable=False)
    user_id = Column(String(128), nullable=False)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=True)
    used_at = Column(DateTime, nullable=False, default=utcnow)
