from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text

from ..utils.clock import utcnow
from .base import Base


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),)

    id = Column(String(36), primary_key=True)
    sku = Column(String(128), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    # explicit switch; availability also needs stock, see is_available
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def is_available(self) -> bool:
        return bool(self.is_active) and (self.stock or 0) > 0
