from types import SimpleNamespace

import pytest

from storefront.errors import (
    AdminRequired,
    InvalidTransition,
    OrderNotFound,
    TrackingNumberRequired,
    TransientStoreError,
    ValidationError,
)
from storefront.models.registry import Order, OrderStatus
from storefront.services import status_service
from storefront.services.status_service import can_transition, replay_history


def _statuses(history):
    return [(e["old_status"], e["new_status"]) for e in history]


def test_allowed_edges():
    assert can_transition(OrderStatus.PENDING, OrderStatus.CONFIRMED)
    assert can_transition(OrderStatus.CONFIRMED, OrderStatus.CANCELLED)
    assert not can_transition(OrderStatus.PENDING, OrderStatus.SHIPPED)
    assert not can_transition(OrderStatus.DELIVERED, OrderStatus.CANCELLED)
    assert not can_transition(OrderStatus.CANCELLED, OrderStatus.PENDING)


def test_shipping_needs_tracking_number_before_edge_check(services, buyer, staff, make_product, place_order):
    order = place_order(buyer, [(make_product(), 1)])
    status = services["status"]

    with pytest.raises(TrackingNumberRequired):
        status.transition(order["id"], "SHIPPED", actor=staff)
    with pytest.raises(InvalidTransition):
        status.transition(order["id"], "SHIPPED", actor=staff, tracking_number="X123")

    assert _statuses(services["orders"].get_history(order["id"], staff)) == [(None, "PENDING")]


def test_full_lifecycle_writes_one_event_per_transition(services, buyer, staff, notifier, make_product, place_order):
    order = place_order(buyer, [(make_product(), 1)])
    status = services["status"]

    confirmed = status.transition(order["id"], "confirmed", actor=staff, note="payment captured")
    assert confirmed["confirmed_at"] is not None
    shipped = status.transition(order["id"], OrderStatus.SHIPPED, actor=staff, tracking_number=" X123 ")
    assert shipped["tracking_number"] == "X123"
    status.transition(order["id"], "DELIVERED", actor=staff)

    history = services["orders"].get_history(order["id"], buyer)
    assert _statuses(history) == [
        (None, "PENDING"),
        ("PENDING", "CONFIRMED"),
        ("CONFIRMED", "SHIPPED"),
        ("SHIPPED", "DELIVERED"),
    ]
    assert history[1]["note"] == "payment captured"
    assert history[1]["actor_id"] == staff.user_id
    assert [n["data"]["new_status"] for n in notifier.sent if "new_status" in n["data"]] == [
        "CONFIRMED",
        "SHIPPED",
        "DELIVERED",
    ]

    with pytest.raises(InvalidTransition):
        status.transition(order["id"], "CONFIRMED", actor=staff)


def test_cancelled_target_must_use_cancellation_workflow(services, buyer, staff, make_product, place_order):
    order = place_order(buyer, [(make_product(), 1)])
    with pytest.raises(ValidationError):
        services["status"].transition(order["id"], "CANCELLED", actor=staff)


def test_transition_requires_admin_and_known_status(services, buyer, staff, make_product, place_order):
    order = place_order(buyer, [(make_product(), 1)])
    with pytest.raises(AdminRequired):
        services["status"].transition(order["id"], "CONFIRMED", actor=buyer)
    with pytest.raises(ValidationError):
        services["status"].transition(order["id"], "LOST", actor=staff)
    with pytest.raises(OrderNotFound):
        services["status"].transition("missing", "CONFIRMED", actor=staff)


def _event(old, new, event_id=1):
    return SimpleNamespace(id=event_id, old_status=old, new_status=new)


def test_replay_history_rebuilds_the_live_status():
    events = [
        _event(None, OrderStatus.PENDING, 1),
        _event(OrderStatus.PENDING, OrderStatus.CONFIRMED, 2),
        _event(OrderStatus.CONFIRMED, OrderStatus.CANCELLED, 3),
    ]
    assert replay_history(events) is OrderStatus.CANCELLED
    assert replay_history([]) is None


def test_replay_history_rejects_gaps_and_illegal_edges():
    with pytest.raises(ValueError):
        replay_history([_event(None, OrderStatus.PENDING), _event(OrderStatus.CONFIRMED, OrderStatus.SHIPPED, 2)])
    with pytest.raises(ValueError):
        replay_history([_event(None, OrderStatus.PENDING), _event(OrderStatus.PENDING, OrderStatus.DELIVERED, 2)])
    with pytest.raises(ValueError):
        replay_history([_event(None, OrderStatus.CONFIRMED)])


def test_stored_history_replays_to_order_status(db, services, buyer, staff, make_product, place_order):
    order = place_order(buyer, [(make_product(), 1)])
    services["status"].transition(order["id"], "CONFIRMED", actor=staff)
    services["cancellation"].cancel_order(order["id"], actor=buyer)

    with db.session() as s:
        stored = s.get(Order, order["id"])
        assert replay_history(stored.history) is stored.status is OrderStatus.CANCELLED


def test_failed_event_insert_rolls_back_the_status_change(
    db, monkeypatch, services, buyer, staff, notifier, make_product, place_order
):
    order = place_order(buyer, [(make_product(), 1)])
    sent = len(notifier.sent)
    real_append = status_service.append_status_event

    def append_without_actor(session, order, **fields):
        fields["actor_id"] = None
        return real_append(session, order, **fields)

    monkeypatch.setattr(status_service, "append_status_event", append_without_actor)

    with pytest.raises(TransientStoreError):
        services["status"].transition(order["id"], "CONFIRMED", actor=staff)

    with db.session() as s:
        stored = s.get(Order, order["id"])
        assert stored.status is OrderStatus.PENDING
        assert stored.confirmed_at is None
        assert len(stored.history) == 1
    assert len(notifier.sent) == sent
