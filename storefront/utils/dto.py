from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

CENT = Decimal("0.01")


def quantize(value: Any) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def money(value: Any) -> str:
    return str(quantize(value))


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _enum(value) -> Optional[str]:
    return value.value if value is not None else None


def to_order_line_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "product_id": row.product_id,
        "name": row.name_snapshot,
        "unit_price": money(row.price_snapshot),
        "quantity": row.quantity,
        "line_total": money(row.line_total),
    }


def to_status_event_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "actor_id": row.actor_id,
        "old_status": _enum(row.old_status),
        "new_status": _enum(row.new_status),
        "note": row.note,
        "created_at": _iso(row.created_at),
    }


def to_order_dto(row: Any, with_lines: bool = True) -> Dict:
    dto = {
        "id": row.id,
        "user_id": row.user_id,
        "status": _enum(row.status),
        "total": money(row.total),
        "discount_amount": money(row.discount_amount),
        "payable_total": money(row.payable_total),
        "coupon_code": row.coupon_code,
        "currency": row.currency,
        "shipping_address": dict(row.shipping_address or {}),
        "tracking_number": row.tracking_number,
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
        "confirmed_at": _iso(row.confirmed_at),
    }
    if with_lines:
        dto["items"] = [to_order_line_dto(it) for it in row.items]
    return dto


def to_return_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "order_id": row.order_id,
        "user_id": row.user_id,
        "request_type": _enum(row.request_type),
        "reason": row.reason,
        "status": _enum(row.status),
        "admin_note": row.admin_note,
        "refund_amount": money(row.refund_amount) if row.refund_amount is not None else None,
        "created_at": _iso(row.created_at),
        "processed_at": _iso(row.processed_at),
        "items": [
            {"order_item_id": it.order_item_id, "quantity": it.quantity, "reason": it.reason}
            for it in row.items
        ],
    }


def to_coupon_dto(row: Any) -> Dict:
    def opt_money(v):
        return money(v) if v is not None else None

    return {
        "id": row.id,
        "code": row.code,
        "description": row.description,
        "discount_type": _enum(row.discount_type),
        "discount_value": money(row.discount_value),
        "min_purchase_amount": opt_money(row.min_purchase_amount),
        "max_discount_amount": opt_money(row.max_discount_amount),
        "usage_limit": row.usage_limit,
        "used_count": row.used_count,
        "is_active": bool(row.is_active),
        "valid_from": _iso(row.valid_from),
        "valid_until": _iso(row.valid_until),
    }
