"""Inventory reservation and restoration.

Both operations run inside a session owned by the caller, so the product row
locks they take are held until the caller's transaction ends.
"""

from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from sqlalchemy.orm import Session

from ..errors import InsufficientStock, ProductNotFound
from ..models.registry import Product
from ..utils.clock import utcnow
from ..utils.validators import ensure_quantity
from .logging import log_event


@dataclass(frozen=True)
class StockRequest:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class ReservedLine:
    product_id: str
    name_snapshot: str
    price_snapshot: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.price_snapshot * self.quantity


def _merge_requests(items: Iterable[StockRequest]) -> "OrderedDict[str, int]":
    merged: "OrderedDict[str, int]" = OrderedDict()
    for item in items:
        qty = ensure_quantity(item.quantity)
        merged[item.product_id] = merged.get(item.product_id, 0) + qty
    return merged


class ProductStockService:
    def check_and_reserve(self, session: Session, items: Sequence[StockRequest]) -> List[ReservedLine]:
        """Validate every line against locked stock, then decrement all of them.

        Any failing line raises before a single row is modified.
        """
        requested = _merge_requests(items)
        products = self._lock_products(session, requested.keys())

        lines: List[ReservedLine] = []
        for product_id, quantity in requested.items():
            product = products.get(product_id)
            if product is None or not product.is_active:
                raise ProductNotFound(product_id)
            if product.stock < quantity:
                raise InsufficientStock(product.id, product.name, product.stock, quantity)
            lines.append(
                ReservedLine(
                    product_id=product.id,
                    name_snapshot=product.name,
                    price_snapshot=Decimal(product.price),
                    quantity=quantity,
                )
            )

        now = utcnow()
        for line in lines:
            product = products[line.product_id]
            product.stock -= line.quantity
            product.updated_at = now
        session.flush()
        log_event(
            "info",
            "stock.reserved",
            lines=[{"product_id": l.product_id, "quantity": l.quantity} for l in lines],
        )
        return lines

    def restore(self, session: Session, items: Sequence[StockRequest]) -> None:
        """Exact inverse of check_and_reserve.

        Callers guard against restoring the same order twice by checking the
        order status under its row lock first.
        """
        requested = _merge_requests(items)
        products = self._lock_products(session, requested.keys())
        now = utcnow()
        restored = []
        for product_id, quantity in requested.items():
            product = products.get(product_id)
            if product is None:
                log_event("warning", "stock.restore_skipped", product_id=product_id, quantity=quantity)
                continue
            product.stock += quantity
            product.updated_at = now
            restored.append({"product_id": product_id, "quantity": quantity})
        session.flush()
        log_event("info", "stock.restored", lines=restored)

    @staticmethod
    def _lock_products(session: Session, product_ids: Iterable[str]) -> Dict[str, Product]:
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        # ascending id order so two checkouts never wait on each other crosswise
        rows = (
            session.query(Product)
            .filter(Product.id.in_(ids))
            .order_by(Product.id)
            .with_for_update()
            .populate_existing()
            .all()
        )
        return {p.id: p for p in rows}
