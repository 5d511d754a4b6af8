from typing import Any, Dict, List, Optional

from ..errors import Forbidden, OrderNotFound
from ..models.registry import Order, OrderStatusEvent
from ..principal import Principal
from ..utils.dto import to_order_dto, to_status_event_dto
from ..utils.pagination import page_window
from .status_service import parse_status


class OrderService:
    """Order retrieval backed by DB."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    @staticmethod
    def _load_visible(session, order_id: str, principal: Principal) -> Order:
        o = session.query(Order).filter(Order.id == order_id).first()
        if not o:
            raise OrderNotFound(order_id)
        if not principal.can_access(o.user_id):
            raise Forbidden("You do not have access to this order")
        return o

    def get_order(self, order_id: str, principal: Principal) -> Dict:
        with self._session_factory() as session:
            return to_order_dto(self._load_visible(session, order_id, principal))

    def get_history(self, order_id: str, principal: Principal) -> List[Dict]:
        with self._session_factory() as session:
            self._load_visible(session, order_id, principal)
            events = (
                session.query(OrderStatusEvent)
                .filter(OrderStatusEvent.order_id == order_id)
                .order_by(OrderStatusEvent.id)
                .all()
            )
            return [to_status_event_dto(e) for e in events]

    def list_orders_for_user(self, principal: Principal, page: int = 1, page_size: int = 20) -> Dict:
        user_id = principal.require_user()
        return self._list(lambda q: q.filter(Order.user_id == user_id), page, page_size)

    def list_all_orders(
        self,
        principal: Principal,
        status: Optional[Any] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict:
        principal.require_admin()
        wanted = parse_status(status) if status else None
        return self._list(lambda q: q.filter(Order.status == wanted) if wanted else q, page, page_size)

    def _list(self, scope, page, page_size) -> Dict:
        p, ps, offset, limit = page_window(page, page_size)
        with self._session_factory() as session:
            q = scope(session.query(Order))
            total = q.count()
            rows = q.order_by(Order.created_at.desc(), Order.id).offset(offset).limit(limit).all()
            return {
                "items": [to_order_dto(r, with_lines=False) for r in rows],
                "page": p,
                "page_size": ps,
                "total": total,
            }
