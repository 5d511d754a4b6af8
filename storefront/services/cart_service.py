from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from ..errors import CartItemNotFound, InsufficientStock, ProductNotFound, ValidationError
from ..models.registry import CartItem, Product
from ..utils.dto import money
from ..utils.validators import ensure_quantity
from .logging import log_event
from .product_stock import StockRequest


class CartService:
    """Cart operations backed by DB.

    A cart belongs to a signed-in user or, before login, to an anonymous
    session. Prices are never cached on cart lines; they are read from the
    product whenever the cart is shown or checked out.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    @staticmethod
    def _identity(session_id: Optional[str], user_id: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        sid, uid = session_id or None, user_id or None
        if not sid and not uid:
            raise ValidationError("owner", "A cart needs a user or a session")
        return sid, uid

    @staticmethod
    def _owned(q, sid: Optional[str], uid: Optional[str]):
        if uid:
            return q.filter(CartItem.user_id == uid)
        return q.filter(CartItem.session_id == sid)

    def get_cart(self, *, session_id: Optional[str], user_id: Optional[str]) -> Dict:
        sid, uid = self._identity(session_id, user_id)
        with self._session_factory() as session:
            rows = (
                self._owned(session.query(CartItem, Product), sid, uid)
                .join(Product, Product.id == CartItem.product_id)
                .order_by(CartItem.added_at, CartItem.id)
                .all()
            )
            items = []
            subtotal = Decimal("0")
            for it, prod in rows:
                line_total = Decimal(prod.price) * it.quantity
                subtotal += line_total
                items.append(
                    {
                        "id": it.id,
                        "product_id": prod.id,
                        "name": prod.name,
                        "quantity": it.quantity,
                        "unit_price": money(prod.price),
                        "line_total": money(line_total),
                        "available": prod.is_available and prod.stock >= it.quantity,
                    }
                )
            return {"items": items, "subtotal": money(subtotal)}

    def add_item(self, *, session_id: Optional[str], user_id: Optional[str], product_id: str, quantity: int = 1) -> Dict:
        if not product_id:
            raise ValidationError("product_id", "product_id required")
        qnty = ensure_quantity(quantity if quantity is not None else 1)
        sid, uid = self._identity(session_id, user_id)
        with self._session_factory() as session:
            prod = session.query(Product).filter(Product.id == product_id).first()
            if not prod or not prod.is_active:
                raise ProductNotFound(product_id)

            # merge with an existing line for the same product
            existing = self._owned(session.query(CartItem), sid, uid).filter(CartItem.product_id == product_id).first()
            new_q = qnty + (existing.quantity if existing else 0)
            if new_q > prod.stock:
                raise InsufficientStock(prod.id, prod.name, prod.stock, new_q)
            if existing:
                existing.quantity = new_q
                item_id = existing.id
            else:
                item = CartItem(
                    id=str(uuid4()),
                    session_id=None if uid else sid,
                    user_id=uid,
                    product_id=product_id,
                    quantity=qnty,
                )
                session.add(item)
                item_id = item.id
            session.flush()
            return {"status": "added", "item_id": item_id, "quantity": new_q}

    def update_item(self, *, session_id: Optional[str], user_id: Optional[str], item_id: str, quantity: int) -> Dict:
        qnty = ensure_quantity(quantity, allow_zero=True)
        sid, uid = self._identity(session_id, user_id)
        with self._session_factory() as session:
            it = self._owned(session.query(CartItem), sid, uid).filter(CartItem.id == item_id).first()
            if not it:
                raise CartItemNotFound(item_id)
            if qnty == 0:
                session.delete(it)
                session.flush()
                return {"status": "removed", "item_id": item_id}
            prod = session.query(Product).filter(Product.id == it.product_id).first()
            if prod is None or not prod.is_active:
                raise ProductNotFound(it.product_id)
            if qnty > prod.stock:
                raise InsufficientStock(prod.id, prod.name, prod.stock, qnty)
            it.quantity = qnty
            session.flush()
            return {"status": "updated", "item_id": item_id, "quantity": qnty}

    def remove_item(self, *, session_id: Optional[str], user_id: Optional[str], item_id: str) -> None:
        sid, uid = self._identity(session_id, user_id)
        with self._session_factory() as session:
            it = self._owned(session.query(CartItem), sid, uid).filter(CartItem.id == item_id).first()
            if not it:
                raise CartItemNotFound(item_id)
            session.delete(it)
        return None

    def clear(self, *, session_id: Optional[str], user_id: Optional[str]) -> int:
        sid, uid = self._identity(session_id, user_id)
        with self._session_factory() as session:
            return self._owned(session.query(CartItem), sid, uid).delete(synchronize_session=False)

    def merge_carts(self, *, user_id: str, session_id: str) -> Dict:
        """Move an anonymous session cart into the user's cart on login."""
        if not user_id or not session_id:
            raise ValidationError("owner", "Both user and session are required to merge carts")
        with self._session_factory() as session:
            guest_items = session.query(CartItem).filter(CartItem.session_id == session_id).all()
            user_items = {it.product_id: it for it in session.query(CartItem).filter(CartItem.user_id == user_id)}
            merged = 0
            for guest in guest_items:
                mine = user_items.get(guest.product_id)
                if mine is not None:
                    mine.quantity += guest.quantity
                    session.delete(guest)
                else:
                    guest.user_id = user_id
                    guest.session_id = None
                merged += 1
            session.flush()
        log_event("info", "cart.merged", user_id=user_id, lines=merged)
        return {"status": "merged", "lines": merged}

    # -- used inside the checkout transaction --------------------------------

    @staticmethod
    def snapshot(session: Session, user_id: str) -> List[StockRequest]:
        rows = (
            session.query(CartItem)
            .filter(CartItem.user_id == user_id)
            .order_by(CartItem.added_at, CartItem.id)
            .all()
        )
        return [StockRequest(product_id=it.product_id, quantity=it.quantity) for it in rows]

    @staticmethod
    def clear_in(session: Session, user_id: str) -> int:
        return session.query(CartItem).filter(CartItem.user_id == user_id).delete(synchronize_session=False)
