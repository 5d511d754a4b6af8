"""Checkout: turn a cart into a PENDING order in one transaction.

Inputs are validated before the transaction opens. Inside it, stock is
reserved under row locks, the coupon is evaluated under its own row lock,
payment is authorized, and the order, its lines, the creation event, the
coupon redemption and the cart clearing are written together. Any failure
rolls back every step.
"""

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence
from uuid import uuid4

from sqlalchemy.orm import Session

from ..errors import EmptyCart, PaymentDeclined, StoreError
from ..models.registry import Order, OrderItem, OrderStatus
from ..principal import Principal
from ..utils.dto import money, quantize, to_order_dto
from ..utils.validators import CardFields, ShippingAddress, validate_payment_fields, validate_shipping_address
from .cart_service import CartService
from .coupon_service import CouponReservation, CouponService
from .logging import log_event
from .notifications import NotificationSink, dispatch
from .payment import FormatOnlyAuthorizer, PaymentAuthorizer
from .product_stock import ProductStockService, StockRequest
from .status_service import append_status_event

ORDER_CREATED_NOTE = "order created"


class CheckoutService:
    def __init__(
        self,
        session_factory,
        stock: ProductStockService,
        coupons: CouponService,
        payments: Optional[PaymentAuthorizer] = None,
        notifier: Optional[NotificationSink] = None,
        currency: str = "TRY",
    ):
        self._session_factory = session_factory
        self._stock = stock
        self._coupons = coupons
        self._payments = payments or FormatOnlyAuthorizer()
        self._notifier = notifier
        self._currency = currency

    def create_order(
        self,
        *,
        principal: Principal,
        shipping_address: Optional[Mapping[str, Any]],
        payment_fields: Optional[Mapping[str, Any]],
        coupon_code: Optional[str] = None,
    ) -> Dict:
        """Check out the caller's current cart."""
        return self.checkout(
            principal=principal,
            cart_snapshot=None,
            shipping_address=shipping_address,
            payment_fields=payment_fields,
            coupon_code=coupon_code,
        )

    def checkout(
        self,
        *,
        principal: Principal,
        cart_snapshot: Optional[Sequence[StockRequest]],
        shipping_address: Optional[Mapping[str, Any]],
        payment_fields: Optional[Mapping[str, Any]],
        coupon_code: Optional[str] = None,
    ) -> Dict:
        """Place an order for ``cart_snapshot``, or for the stored cart when it is None.

        The user's cart is cleared in the same transaction either way.
        """
        user_id = principal.require_user()
        address = validate_shipping_address(shipping_address)
        card = validate_payment_fields(payment_fields)
        code = (coupon_code or "").strip() or None
        if cart_snapshot is not None and not cart_snapshot:
            raise EmptyCart()

        order_id = str(uuid4())
        try:
            with self._session_factory() as session:
                items = list(cart_snapshot) if cart_snapshot is not None else CartService.snapshot(session, user_id)
                if not items:
                    raise EmptyCart()
                order = self._place(session, order_id, user_id, items, address, card, code)
                result = to_order_dto(order)
        except StoreError as exc:
            log_event("info", "checkout.rejected", user_id=user_id, error=exc.code, message=str(exc))
            raise

        log_event(
            "info",
            "order.created",
            order_id=order_id,
            user_id=user_id,
            total=result["total"],
            discount=result["discount_amount"],
            coupon=result["coupon_code"],
            lines=len(result["items"]),
        )
        dispatch(
            self._notifier,
            user_id=user_id,
            kind="ORDER",
            title="Order received",
            message=f"Your order for {result['payable_total']} {result['currency']} has been placed.",
            data={"order_id": order_id},
        )
        return result

    def _place(
        self,
        session: Session,
        order_id: str,
        user_id: str,
        items: List[StockRequest],
        address: ShippingAddress,
        card: CardFields,
        coupon_code: Optional[str],
    ) -> Order:
        reserved = self._stock.check_and_reserve(session, items)
        total = quantize(sum((line.line_total for line in reserved), Decimal("0")))

        reservation: Optional[CouponReservation] = None
        discount = Decimal("0.00")
        if coupon_code:
            reservation = self._coupons.validate_and_reserve(session, coupon_code, user_id, total)
            discount = reservation.discount
        payable = total - discount

        auth = self._payments.authorize(card, payable, self._currency, order_id)
        if not auth.approved:
            log_event("warning", "payment.declined", order_id=order_id, card=card.masked(), reason=auth.failure_reason)
            raise PaymentDeclined(auth.failure_reason)
        log_event("info", "payment.authorized", order_id=order_id, amount=money(payable), card_last4=card.last4)

        order = Order(
            id=order_id,
            user_id=user_id,
            total=total,
            discount_amount=discount,
            coupon_code=reservation.coupon.code if reservation else None,
            currency=self._currency,
            status=OrderStatus.PENDING,
            shipping_address=address.to_dict(),
            payment_reference=auth.authorization_id,
        )
        for position, line in enumerate(reserved):
            order.items.append(
                OrderItem(
                    id=str(uuid4()),
                    position=position,
                    product_id=line.product_id,
                    name_snapshot=line.name_snapshot,
                    price_snapshot=line.price_snapshot,
                    quantity=line.quantity,
                )
            )
        session.add(order)
        append_status_event(
            session,
            order,
            actor_id=user_id,
            old_status=None,
            new_status=OrderStatus.PENDING,
            note=ORDER_CREATED_NOTE,
        )
        # the redemption row references the order
        session.flush()

        if reservation is not None:
            self._coupons.redeem(session, reservation, user_id=user_id, order_id=order_id)
        CartService.clear_in(session, user_id)
        return order
