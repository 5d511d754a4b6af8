import enum

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from ..utils.clock import utcnow
from .base import Base


class ReturnStatus(enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"


class RequestType(enum.Enum):
    RETURN = "RETURN"
    CANCELLATION = "CANCELLATION"


OUTSTANDING_STATUSES = (ReturnStatus.PENDING, ReturnStatus.PROCESSING)


class OrderReturn(Base):
    """A return request; without items it is a cancellation request."""

    __tablename__ = "order_returns"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    request_type = Column(
        Enum(RequestType, native_enum=False, validate_strings=True, length=16),
        nullable=False,
    )
    reason = Column(Text, nullable=False)
    status = Column(
        Enum(ReturnStatus, native_enum=False, validate_strings=True, length=16),
        nullable=False,
        default=ReturnStatus.PENDING,
    )
    admin_note = Column(Text, nullable=True)
    refund_amount = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    processed_at = Column(DateTime, nullable=True)

    items = relationship("ReturnItem", back_populates="order_return", cascade="all, delete-orphan", lazy="selectin")

    @property
    def is_outstanding(self) -> bool:
        return self.status in OUTSTANDING_STATUSES


class ReturnItem(Base):
    __tablename__ = "return_items"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_return_items_quantity_positive"),)

    id = Column(String(36), primary_key=True)
    return_id = Column(String(36), ForeignKey("order_returns.id"), nullable=False, index=True)
    order_item_id = Column(String(36), ForeignKey("order_items.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)

    order_return = relationship("OrderReturn", back_populates="items")
