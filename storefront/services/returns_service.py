from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from ..errors import (
    Forbidden,
    InvalidReturnRequest,
    NotReturnable,
    RequestAlreadyPending,
    RequestAlreadyResolved,
    RequestNotFound,
    ValidationError,
)
from ..models.order_return import OUTSTANDING_STATUSES
from ..models.registry import OrderItem, OrderReturn, OrderStatus, RequestType, ReturnItem, ReturnStatus
from ..principal import Principal
from ..utils.clock import utcnow
from ..utils.dto import quantize, to_return_dto
from ..utils.pagination import page_window
from ..utils.validators import ensure_quantity
from .logging import log_event
from .notifications import NotificationSink, dispatch
from .status_service import lock_order

RESOLVED_STATUSES = frozenset({ReturnStatus.REJECTED, ReturnStatus.COMPLETED})


def _parse_return_status(value: Any) -> ReturnStatus:
    if isinstance(value, ReturnStatus):
        return value
    try:
        return ReturnStatus(str(value or "").strip().upper())
    except ValueError:
        raise ValidationError("status", f"Unknown return status: {value!r}") from None


def _refund(value: Any, ceiling: Decimal) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        amount = quantize(value)
    except (InvalidOperation, ValueError):
        raise ValidationError("refund_amount", "refund_amount must be a number") from None
    if amount < 0:
        raise ValidationError("refund_amount", "refund_amount cannot be negative")
    if amount > ceiling:
        raise ValidationError("refund_amount", "refund_amount cannot exceed the amount paid")
    return amount


class ReturnService:
    """Item returns for delivered orders."""

    def __init__(self, session_factory, notifier: Optional[NotificationSink] = None):
        self._session_factory = session_factory
        self._notifier = notifier

    def request_return(
        self,
        order_id: str,
        *,
        actor: Principal,
        reason: str,
        items: Iterable[Dict[str, Any]],
    ) -> Dict:
        user_id = actor.require_user()
        reason = (reason or "").strip()
        if not 10 <= len(reason) <= 500:
            raise InvalidReturnRequest("reason", "Reason must be between 10 and 500 characters")
        wanted = list(items or [])
        if not wanted:
            raise InvalidReturnRequest("items", "Select at least one item to return")

        with self._session_factory() as session:
            order = lock_order(session, order_id)
            if order.user_id != user_id:
                raise Forbidden("This order does not belong to you")
            if order.status is not OrderStatus.DELIVERED:
                raise NotReturnable(order.id, order.status.value)
            outstanding = (
                session.query(OrderReturn.id)
                .filter(
                    OrderReturn.order_id == order_id,
                    OrderReturn.request_type == RequestType.RETURN,
                    OrderReturn.status.in_(OUTSTANDING_STATUSES),
                )
                .first()
            )
            if outstanding:
                raise RequestAlreadyPending(order_id)

            lines: Dict[str, OrderItem] = {it.id: it for it in order.items}
            req = OrderReturn(
                id=str(uuid4()),
                order_id=order_id,
                user_id=user_id,
                request_type=RequestType.RETURN,
                reason=reason,
                status=ReturnStatus.PENDING,
            )
            seen = set()
            for raw in wanted:
                line_id = str(raw.get("order_item_id") or raw.get("orderItemId") or "")
                line = lines.get(line_id)
                if line is None:
                    raise InvalidReturnRequest("items", f"Item {line_id!r} is not part of this order")
                if line_id in seen:
                    raise InvalidReturnRequest("items", f"Item {line_id!r} is listed twice")
                seen.add(line_id)
                qty = ensure_quantity(raw.get("quantity", line.quantity))
                if qty > line.quantity:
                    raise InvalidReturnRequest("items", f"Cannot return more than {line.quantity} of {line.name_snapshot}")
                req.items.append(
                    ReturnItem(id=str(uuid4()), order_item_id=line_id, quantity=qty, reason=raw.get("reason"))
                )
            session.add(req)
            session.flush()
            result = to_return_dto(req)
        log_event("info", "return.requested", order_id=order_id, return_id=result["id"], items=len(result["items"]))
        return result

    def update_return_status(
        self,
        return_id: str,
        status: Any,
        *,
        actor: Principal,
        admin_note: Optional[str] = None,
        refund_amount: Any = None,
    ) -> Dict:
        admin_id = actor.require_admin()
        target = _parse_return_status(status)
        with self._session_factory() as session:
            req = (
                session.query(OrderReturn)
                .filter(OrderReturn.id == return_id)
                .with_for_update()
                .populate_existing()
                .one_or_none()
            )
            if req is None:
                raise RequestNotFound(return_id)
            if req.request_type is not RequestType.RETURN:
                raise ValidationError("return_id", "Cancellation requests are resolved through the cancellation workflow")
            if req.status in RESOLVED_STATUSES:
                raise RequestAlreadyResolved(return_id, req.status.value)
            order = lock_order(session, req.order_id)
            refund = _refund(refund_amount, order.payable_total)

            now = utcnow()
            req.status = target
            if admin_note is not None:
                req.admin_note = admin_note
            if refund is not None:
                req.refund_amount = refund
            req.updated_at = now
            if target in RESOLVED_STATUSES:
                req.processed_at = now
            session.flush()
            result = to_return_dto(req)
        log_event("info", "return.status_changed", return_id=return_id, status=target.value, admin_id=admin_id)
        dispatch(
            self._notifier,
            user_id=result["user_id"],
            kind="RETURN",
            title="Return request updated",
            message=f"Your return request is now {target.value}",
            data={"return_id": return_id, "order_id": result["order_id"]},
        )
        return result

    def list_returns_for_user(self, principal: Principal) -> List[Dict]:
        user_id = principal.require_user()
        with self._session_factory() as session:
            rows = (
                session.query(OrderReturn)
                .filter(OrderReturn.user_id == user_id)
                .order_by(OrderReturn.created_at.desc())
                .all()
            )
            return [to_return_dto(r) for r in rows]

    def list_all_returns(
        self,
        principal: Principal,
        status: Optional[Any] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict:
        principal.require_admin()
        p, ps, offset, limit = page_window(page, page_size)
        with self._session_factory() as session:
            q = session.query(OrderReturn)
            if status:
                q = q.filter(OrderReturn.status == _parse_return_status(status))
            total = q.count()
            rows = q.order_by(OrderReturn.created_at.desc(), OrderReturn.id).offset(offset).limit(limit).all()
            return {"items": [to_return_dto(r) for r in rows], "page": p, "page_size": ps, "total": total}
