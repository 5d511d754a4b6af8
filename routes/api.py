"""Customer API: cart, checkout, orders, cancellations and returns."""

from __future__ import annotations

from typing import Any, Dict
from uuid import uuid4

from flask import Blueprint, current_app, jsonify, request, session

from storefront.principal import Principal

api_bp = Blueprint("storefront_api", __name__, url_prefix="/api")


def _components() -> Dict[str, Any]:
    return current_app.extensions["storefront_components"]


def _principal() -> Principal:
    # user_id / is_admin are written by the upstream auth layer
    if not session.get("session_id"):
        session["session_id"] = uuid4().hex
    return Principal(
        user_id=session.get("user_id") or None,
        session_id=session["session_id"],
        is_admin=bool(session.get("is_admin")),
    )


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def _owner() -> Dict[str, Any]:
    p = _principal()
    return {"session_id": p.session_id, "user_id": p.user_id}


# -- cart --------------------------------------------------------------------


@api_bp.get("/cart")
def get_cart():
    return jsonify(_components()["cart"].get_cart(**_owner()))


@api_bp.post("/cart/items")
def add_cart_item():
    payload = _payload()
    result = _components()["cart"].add_item(
        **_owner(),
        product_id=str(payload.get("product_id", "")).strip(),
        quantity=payload.get("quantity", 1),
    )
    return jsonify(result), 201


@api_bp.patch("/cart/items/<item_id>")
def update_cart_item(item_id: str):
    result = _components()["cart"].update_item(**_owner(), item_id=item_id, quantity=_payload().get("quantity"))
    return jsonify(result)


@api_bp.delete("/cart/items/<item_id>")
def remove_cart_item(item_id: str):
    _components()["cart"].remove_item(**_owner(), item_id=item_id)
    return jsonify({"status": "removed", "item_id": item_id})


@api_bp.post("/cart/merge")
def merge_cart():
    p = _principal()
    return jsonify(_components()["cart"].merge_carts(user_id=p.user_id, session_id=p.session_id))


# -- checkout and orders -----------------------------------------------------


@api_bp.post("/orders")
def create_order():
    payload = _payload()
    order = _components()["checkout"].create_order(
        principal=_principal(),
        shipping_address=payload.get("shipping_address") or payload.get("shippingAddress"),
        payment_fields=payload.get("payment") or payload.get("paymentInfo"),
        coupon_code=payload.get("coupon_code") or payload.get("couponCode"),
    )
    return jsonify(order), 201


@api_bp.get("/orders")
def list_orders():
    result = _components()["orders"].list_orders_for_user(
        _principal(),
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 20, type=int),
    )
    return jsonify(result)


@api_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    return jsonify(_components()["orders"].get_order(order_id, _principal()))


@api_bp.get("/orders/<order_id>/history")
def get_order_history(order_id: str):
    return jsonify({"events": _components()["orders"].get_history(order_id, _principal())})


@api_bp.post("/orders/<order_id>/cancel")
def cancel_order(order_id: str):
    result = _components()["cancellation"].cancel_order(order_id, actor=_principal(), note=_payload().get("note"))
    return jsonify(result)


@api_bp.post("/orders/<order_id>/cancellation-requests")
def request_cancellation(order_id: str):
    result = _components()["cancellation"].request_cancellation(
        order_id, actor=_principal(), reason=_payload().get("reason")
    )
    return jsonify(result), 201


@api_bp.post("/orders/<order_id>/returns")
def request_return(order_id: str):
    payload = _payload()
    result = _components()["returns"].request_return(
        order_id,
        actor=_principal(),
        reason=payload.get("reason", ""),
        items=payload.get("items") or [],
    )
    return jsonify(result), 201


@api_bp.get("/returns")
def list_returns():
    return jsonify({"returns": _components()["returns"].list_returns_for_user(_principal())})


@api_bp.post("/coupons/validate")
def validate_coupon():
    payload = _payload()
    p = _principal()
    result = _components()["coupons"].validate_coupon(
        payload.get("code", ""),
        p.require_user(),
        payload.get("subtotal"),
    )
    return jsonify(result)
