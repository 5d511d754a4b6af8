"""Order status state machine with an append-only audit trail.

    PENDING -> CONFIRMED -> SHIPPED -> DELIVERED
    PENDING | CONFIRMED -> CANCELLED

DELIVERED and CANCELLED are terminal. Every applied transition writes one
OrderStatusEvent in the same transaction as the order update.
"""

from typing import Any, Dict, FrozenSet, Iterable, Optional

from sqlalchemy.orm import Session

from ..errors import InvalidTransition, OrderNotFound, TrackingNumberRequired, ValidationError
from ..models.registry import Order, OrderStatus, OrderStatusEvent
from ..principal import Principal
from ..utils.clock import utcnow
from ..utils.dto import to_order_dto
from .logging import log_event
from .notifications import NotificationSink, dispatch

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)


def parse_status(value: Any) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value or "").strip().upper())
    except ValueError:
        raise ValidationError("status", f"Unknown order status: {value!r}") from None


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def lock_order(session: Session, order_id: str) -> Order:
    order = (
        session.query(Order)
        .filter(Order.id == order_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if order is None:
        raise OrderNotFound(order_id)
    return order


def append_status_event(
    session: Session,
    order: Order,
    *,
    actor_id: str,
    old_status: Optional[OrderStatus],
    new_status: OrderStatus,
    note: Optional[str] = None,
) -> OrderStatusEvent:
    event = OrderStatusEvent(
        order=order,
        actor_id=actor_id,
        old_status=old_status,
        new_status=new_status,
        note=note,
    )
    session.add(event)
    return event


def replay_history(events: Iterable[OrderStatusEvent]) -> Optional[OrderStatus]:
    """Rebuild the status from its audit trail.

    Raises ValueError on a gap, a repeated status, or an edge the machine
    does not allow.
    """
    status: Optional[OrderStatus] = None
    for event in events:
        if event.old_status != status:
            raise ValueError(f"audit gap: expected {status}, event {event.id} starts at {event.old_status}")
        if status is None:
            if event.new_status is not OrderStatus.PENDING:
                raise ValueError("first event must create the order as PENDING")
        elif not can_transition(status, event.new_status):
            raise ValueError(f"illegal edge {status.value} -> {event.new_status.value}")
        status = event.new_status
    return status


class OrderStatusService:
    def __init__(self, session_factory, notifier: Optional[NotificationSink] = None):
        self._session_factory = session_factory
        self._notifier = notifier

    def apply(
        self,
        session: Session,
        order: Order,
        target: OrderStatus,
        *,
        actor_id: str,
        tracking_number: Optional[str] = None,
        note: Optional[str] = None,
    ) -> OrderStatusEvent:
        """Validate and apply one transition inside the caller's transaction."""
        tracking = (tracking_number or "").strip()
        if target is OrderStatus.SHIPPED and not tracking:
            raise TrackingNumberRequired()
        current = order.status
        if not can_transition(current, target):
            raise InvalidTransition(current.value, target.value)

        now = utcnow()
        order.status = target
        order.updated_at = now
        if target is OrderStatus.CONFIRMED:
            order.confirmed_at = now
        if target is OrderStatus.SHIPPED:
            order.tracking_number = tracking
        event = append_status_event(
            session, order, actor_id=actor_id, old_status=current, new_status=target, note=note
        )
        # a failed event insert aborts the status update with it
        session.flush()
        log_event(
            "info",
            "order.status_changed",
            order_id=order.id,
            old_status=current.value,
            new_status=target.value,
            actor_id=actor_id,
        )
        return event

    def transition(
        self,
        order_id: str,
        new_status: Any,
        *,
        actor: Principal,
        tracking_number: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Dict:
        admin_id = actor.require_admin()
        target = parse_status(new_status)
        if target is OrderStatus.CANCELLED:
            raise ValidationError("status", "Cancel orders through the cancellation workflow so stock is restored")
        with self._session_factory() as session:
            order = lock_order(session, order_id)
            old = order.status
            self.apply(session, order, target, actor_id=admin_id, tracking_number=tracking_number, note=note)
            result = to_order_dto(order)
        dispatch(
            self._notifier,
            user_id=result["user_id"],
            kind="ORDER",
            title="Order status updated",
            message=f"Your order is now {target.value}",
            data={"order_id": order_id, "old_status": old.value, "new_status": target.value},
        )
        return result
