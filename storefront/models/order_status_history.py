from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from ..utils.clock import utcnow
from .base import Base
from .order import status_column


class OrderStatusEvent(Base):
    """Append-only audit row, one per status change (including creation)."""

    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    actor_id = Column(String(128), nullable=False)
    old_status = status_column(nullable=True)
    new_status = status_column()
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    order = relationship("Order", back_populates="history")
