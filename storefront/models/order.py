import enum
from decimal import Decimal

from sqlalchemy import JSON, Column, DateTime, Enum, Numeric, String
from sqlalchemy.orm import relationship

from ..utils.clock import utcnow
from .base import Base


class OrderStatus(enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


def status_column(nullable: bool = False) -> Column:
    # stored as VARCHAR, unknown strings are rejected on load
    return Column(
        Enum(OrderStatus, native_enum=False, validate_strings=True, length=16),
        nullable=nullable,
    )


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(128), nullable=False, index=True)
    total = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    coupon_code = Column(String(50), nullable=True)
    currency = Column(String(3), nullable=False)
    status = status_column()
    shipping_address = Column(JSON, nullable=False)
    tracking_number = Column(String(255), nullable=True)
    payment_reference = Column(String(128), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    confirmed_at = Column(DateTime, nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )
    history = relationship(
        "OrderStatusEvent",
        back_populates="order",
        order_by="OrderStatusEvent.id",
        lazy="selectin",
    )

    @property
    def payable_total(self) -> Decimal:
        return Decimal(self.total) - Decimal(self.discount_amount or 0)
