"""Admin API: order status, cancellations, returns and coupons."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, session

from storefront.errors import AdminRequired
from storefront.models.registry import OrderStatus
from storefront.principal import Principal
from storefront.services.status_service import parse_status

admin_bp = Blueprint("storefront_admin", __name__, url_prefix="/admin")


def _components() -> dict:
    return current_app.extensions["storefront_components"]


def _admin() -> Principal:
    return Principal(user_id=session.get("user_id") or None, is_admin=bool(session.get("is_admin")))


def _payload() -> dict:
    return request.get_json(silent=True) or {}


@admin_bp.before_request
def guard_admin_routes():
    if not _admin().is_admin:
        raise AdminRequired()
    return None


# -- orders ------------------------------------------------------------------


@admin_bp.get("/orders")
def list_orders():
    result = _components()["orders"].list_all_orders(
        _admin(),
        status=request.args.get("status"),
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 20, type=int),
    )
    return jsonify(result)


@admin_bp.post("/orders/<order_id>/status")
def update_order_status(order_id: str):
    payload = _payload()
    target = parse_status(payload.get("status"))
    if target is OrderStatus.CANCELLED:
        # cancelling must restore stock
        result = _components()["cancellation"].cancel_order(order_id, actor=_admin(), note=payload.get("note"))
    else:
        result = _components()["status"].transition(
            order_id,
            target,
            actor=_admin(),
            tracking_number=payload.get("tracking_number") or payload.get("trackingNumber"),
            note=payload.get("note"),
        )
    return jsonify(result)


@admin_bp.post("/orders/<order_id>/cancel")
def cancel_order(order_id: str):
    result = _components()["cancellation"].cancel_order(order_id, actor=_admin(), note=_payload().get("note"))
    return jsonify(result)


# -- returns and cancellation requests ---------------------------------------


@admin_bp.get("/returns")
def list_returns():
    result = _components()["returns"].list_all_returns(
        _admin(),
        status=request.args.get("status"),
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 20, type=int),
    )
    return jsonify(result)


@admin_bp.post("/returns/<request_id>/resolve")
def resolve_cancellation_request(request_id: str):
    payload = _payload()
    result = _components()["cancellation"].resolve_cancellation_request(
        request_id,
        payload.get("decision"),
        actor=_admin(),
        note=payload.get("note"),
    )
    return jsonify(result)


@admin_bp.post("/returns/<return_id>/status")
def update_return_status(return_id: str):
    payload = _payload()
    result = _components()["returns"].update_return_status(
        return_id,
        payload.get("status"),
        actor=_admin(),
        admin_note=payload.get("admin_note"),
        refund_amount=payload.get("refund_amount"),
    )
    return jsonify(result)


# -- coupons -----------------------------------------------------------------


@admin_bp.get("/coupons")
def list_coupons():
    include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
    return jsonify({"coupons": _components()["coupons"].list_coupons(_admin(), include_inactive)})


@admin_bp.post("/coupons")
def create_coupon():
    payload = _payload()
    coupon = _components()["coupons"].create_coupon(
        _admin(),
        code=payload.get("code"),
        discount_type=payload.get("discount_type"),
        discount_value=payload.get("discount_value"),
        description=payload.get("description"),
        min_purchase_amount=payload.get("min_purchase_amount"),
        max_discount_amount=payload.get("max_discount_amount"),
        usage_limit=payload.get("usage_limit"),
        valid_from=payload.get("valid_from"),
        valid_until=payload.get("valid_until"),
    )
    return jsonify(coupon), 201


@admin_bp.patch("/coupons/<coupon_id>")
def update_coupon(coupon_id: str):
    return jsonify(_components()["coupons"].update_coupon(_admin(), coupon_id, **_payload()))
