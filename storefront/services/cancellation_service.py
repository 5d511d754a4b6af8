"""Order cancellation: direct cancel and the request/approval flow.

Direct cancel is open to the order owner and to admins while the order is
PENDING or CONFIRMED. A cancellation request is an OrderReturn without items;
approving it runs exactly the direct-cancel path.
"""

from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..errors import (
    Forbidden,
    NotCancellable,
    RequestAlreadyPending,
    RequestAlreadyResolved,
    RequestNotFound,
    ValidationError,
)
from ..models.registry import Order, OrderReturn, OrderStatus, RequestType, ReturnStatus
from ..models.order_return import OUTSTANDING_STATUSES
from ..principal import Principal
from ..utils.clock import utcnow
from ..utils.dto import to_order_dto, to_return_dto
from .logging import log_event
from .notifications import NotificationSink, dispatch
from .product_stock import ProductStockService, StockRequest
from .status_service import OrderStatusService, lock_order

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

DEFAULT_CANCEL_NOTE = "order cancelled"
DEFAULT_REQUEST_REASON = "I would like this order to be cancelled."
APPROVED_NOTE = "Cancellation request approved and order cancelled."
CLOSED_BY_DIRECT_CANCEL_NOTE = "Order was cancelled directly."

APPROVE = "APPROVE"
REJECT = "REJECT"


def _parse_decision(value: Any) -> str:
    decision = str(value or "").strip().upper()
    if decision in ("APPROVE", "APPROVED"):
        return APPROVE
    if decision in ("REJECT", "REJECTED"):
        return REJECT
    raise ValidationError("decision", "decision must be APPROVE or REJECT")


class CancellationService:
    def __init__(
        self,
        session_factory,
        stock: ProductStockService,
        status_machine: OrderStatusService,
        notifier: Optional[NotificationSink] = None,
    ):
        self._session_factory = session_factory
        self._stock = stock
        self._status = status_machine
        self._notifier = notifier

    # -- shared effect -------------------------------------------------------

    def _cancel_locked(self, session: Session, order: Order, *, actor_id: str, note: str) -> None:
        """Restore stock and move the order to CANCELLED; order row must be locked."""
        if order.status not in CANCELLABLE_STATUSES:
            raise NotCancellable(order.id, order.status.value)
        self._stock.restore(
            session,
            [StockRequest(product_id=it.product_id, quantity=it.quantity) for it in order.items if it.product_id],
        )
        self._status.apply(session, order, OrderStatus.CANCELLED, actor_id=actor_id, note=note)

    @staticmethod
    def _outstanding_requests(session: Session, order_id: str, user_id: Optional[str] = None) -> List[OrderReturn]:
        q = session.query(OrderReturn).filter(
            OrderReturn.order_id == order_id,
            OrderReturn.request_type == RequestType.CANCELLATION,
            OrderReturn.status.in_(OUTSTANDING_STATUSES),
        )
        if user_id:
            q = q.filter(OrderReturn.user_id == user_id)
        return q.order_by(OrderReturn.created_at.desc()).all()

    # -- direct cancel -------------------------------------------------------

    def cancel_order(self, order_id: str, *, actor: Principal, note: Optional[str] = None) -> Dict:
        actor_id = actor.require_user()
        with self._session_factory() as session:
            order = lock_order(session, order_id)
            if not actor.can_access(order.user_id):
                raise Forbidden("You can only cancel your own orders")
            self._cancel_locked(session, order, actor_id=actor_id, note=note or DEFAULT_CANCEL_NOTE)
            now = utcnow()
            for req in self._outstanding_requests(session, order_id):
                req.status = ReturnStatus.COMPLETED
                req.admin_note = CLOSED_BY_DIRECT_CANCEL_NOTE
                req.processed_at = now
                req.updated_at = now
            session.flush()
            result = to_order_dto(order)
        log_event(
            "info",
            "order.cancelled",
            order_id=order_id,
            actor_id=actor_id,
            initiated_by="ADMIN" if actor.is_admin and actor_id != result["user_id"] else "USER",
        )
        dispatch(
            self._notifier,
            user_id=result["user_id"],
            kind="ORDER",
            title="Order cancelled",
            message="Your order has been cancelled and the items were released.",
            data={"order_id": order_id},
        )
        return result

    # -- request / approval --------------------------------------------------

    def request_cancellation(self, order_id: str, *, actor: Principal, reason: Optional[str] = None) -> Dict:
        user_id = actor.require_user()
        reason = (reason or "").strip()
        if len(reason) > 500:
            raise ValidationError("reason", "Reason must be at most 500 characters")
        if len(reason) < 5:
            reason = DEFAULT_REQUEST_REASON
        with self._session_factory() as session:
            # the order row lock serializes concurrent submissions
            order = lock_order(session, order_id)
            if order.user_id != user_id:
                raise Forbidden("This order does not belong to you")
            if order.status not in CANCELLABLE_STATUSES:
                raise NotCancellable(order.id, order.status.value)
            if self._outstanding_requests(session, order_id, user_id):
                raise RequestAlreadyPending(order_id)
            req = OrderReturn(
                id=str(uuid4()),
                order_id=order_id,
                user_id=user_id,
                request_type=RequestType.CANCELLATION,
                reason=reason,
                status=ReturnStatus.PENDING,
            )
            session.add(req)
            session.flush()
            result = to_return_dto(req)
        log_event("info", "cancellation.requested", order_id=order_id, request_id=result["id"], user_id=user_id)
        return result

    def resolve_cancellation_request(
        self,
        request_id: str,
        decision: Any,
        *,
        actor: Principal,
        note: Optional[str] = None,
    ) -> Dict:
        admin_id = actor.require_admin()
        decision = _parse_decision(decision)
        with self._session_factory() as session:
            peek = session.query(OrderReturn.order_id).filter(OrderReturn.id == request_id).first()
            if peek is None:
                raise RequestNotFound(request_id)
            # lock order before request, the same order cancel_order uses
            order = lock_order(session, peek.order_id)
            req = (
                session.query(OrderReturn)
                .filter(OrderReturn.id == request_id)
                .with_for_update()
                .populate_existing()
                .one()
            )
            if req.request_type is not RequestType.CANCELLATION:
                raise ValidationError("request_id", "Item returns are resolved with update_return_status")
            if not req.is_outstanding:
                raise RequestAlreadyResolved(request_id, req.status.value)

            now = utcnow()
            if decision == APPROVE:
                self._cancel_locked(session, order, actor_id=admin_id, note=note or "cancellation request approved")
                req.status = ReturnStatus.COMPLETED
                req.admin_note = note or APPROVED_NOTE
            else:
                req.status = ReturnStatus.REJECTED
                req.admin_note = note
            req.processed_at = now
            req.updated_at = now
            session.flush()
            result = to_return_dto(req)
            result["order"] = to_order_dto(order, with_lines=False)
        log_event(
            "info",
            "cancellation.resolved",
            request_id=request_id,
            order_id=result["order_id"],
            decision=decision,
            admin_id=admin_id,
        )
        dispatch(
            self._notifier,
            user_id=result["user_id"],
            kind="RETURN",
            title="Cancellation request " + ("approved" if decision == APPROVE else "rejected"),
            message=note or ("Your order has been cancelled." if decision == APPROVE else "Your order will proceed."),
            data={"order_id": result["order_id"], "request_id": request_id},
        )
        return result
