"""Typed errors raised by the order engine.

Every error carries a stable ``code`` the caller can render, the HTTP status
the Flask layer maps it to, and whether retrying the same call can succeed.
"""

from decimal import Decimal
from typing import Optional


class StoreError(Exception):
    """Base exception for all storefront errors."""

    code = "STORE_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self), "retryable": self.retryable}


# -- validation --------------------------------------------------------------


class ValidationError(StoreError):
    """Malformed input, rejected before any transaction opens."""

    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["field"] = self.field
        return payload


class InvalidAddress(ValidationError):
    code = "INVALID_ADDRESS"


class InvalidPayment(ValidationError):
    code = "INVALID_PAYMENT"


class InvalidQuantity(ValidationError):
    code = "INVALID_QUANTITY"


class InvalidCouponData(ValidationError):
    code = "INVALID_COUPON_DATA"


class InvalidReturnRequest(ValidationError):
    code = "INVALID_RETURN_REQUEST"


class EmptyCart(ValidationError):
    code = "EMPTY_CART"

    def __init__(self):
        super().__init__("cart", "Cart is empty")


# -- not found ---------------------------------------------------------------


class NotFoundError(StoreError):
    code = "NOT_FOUND"
    http_status = 404


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class ProductNotFound(NotFoundError):
    """Raised when a product is missing or has been deactivated."""

    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found or inactive: {product_id}")


class CartItemNotFound(NotFoundError):
    code = "CART_ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Cart item not found: {item_id}")


class RequestNotFound(NotFoundError):
    code = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Return or cancellation request not found: {request_id}")


class CouponNotFound(NotFoundError):
    code = "COUPON_NOT_FOUND"

    def __init__(self, coupon_id: str):
        self.coupon_id = coupon_id
        super().__init__(f"Coupon not found: {coupon_id}")


# -- business rules ----------------------------------------------------------


class BusinessRuleError(StoreError):
    """A rule violated inside a transaction; the whole transaction rolls back."""

    code = "BUSINESS_RULE"
    http_status = 409


class InsufficientStock(BusinessRuleError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, product_name: str, available: int, requested: int):
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {product_name}: available {available}, requested {requested}"
        )

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload.update(product_id=self.product_id, available=self.available, requested=self.requested)
        return payload


class CouponRejected(BusinessRuleError):
    """Raised with the first coupon rule that failed."""

    code = "COUPON_REJECTED"
    http_status = 422

    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    NOT_YET_VALID = "NOT_YET_VALID"
    EXPIRED = "EXPIRED"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
    BELOW_MINIMUM_PURCHASE = "BELOW_MINIMUM_PURCHASE"
    ALREADY_USED_BY_USER = "ALREADY_USED_BY_USER"

    _MESSAGES = {
        NOT_FOUND: "Coupon code not found",
        INACTIVE: "This coupon is not active",
        NOT_YET_VALID: "This coupon is not valid yet",
        EXPIRED: "This coupon has expired",
        USAGE_LIMIT_REACHED: "This coupon has reached its usage limit",
        BELOW_MINIMUM_PURCHASE: "Purchase total is below the coupon minimum",
        ALREADY_USED_BY_USER: "You have already used this coupon",
    }

    def __init__(self, reason: str, minimum: Optional[Decimal] = None):
        self.reason = reason
        message = self._MESSAGES.get(reason, reason)
        if reason == self.BELOW_MINIMUM_PURCHASE and minimum is not None:
            message = f"A minimum purchase of {minimum:.2f} is required for this coupon"
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["reason"] = self.reason
        return payload


class InvalidTransition(BusinessRuleError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current} to {target}")


class TrackingNumberRequired(BusinessRuleError):
    code = "TRACKING_NUMBER_REQUIRED"
    http_status = 422

    def __init__(self):
        super().__init__("A tracking number is required to ship an order")


class NotCancellable(BusinessRuleError):
    code = "NOT_CANCELLABLE"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} cannot be cancelled in status {status}")


class RequestAlreadyPending(BusinessRuleError):
    code = "REQUEST_ALREADY_PENDING"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"A request is already pending for order {order_id}")


class RequestAlreadyResolved(BusinessRuleError):
    code = "REQUEST_ALREADY_RESOLVED"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Request {request_id} was already resolved as {status}")


class NotReturnable(BusinessRuleError):
    code = "NOT_RETURNABLE"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Only delivered orders can be returned; order {order_id} is {status}")


class PaymentDeclined(BusinessRuleError):
    code = "PAYMENT_DECLINED"
    http_status = 402

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(reason or "Payment was declined")


# -- authorization -----------------------------------------------------------


class AuthorizationError(StoreError):
    code = "FORBIDDEN"
    http_status = 403


class Forbidden(AuthorizationError):
    def __init__(self, message: str = "You do not have access to this resource"):
        super().__init__(message)


class AdminRequired(AuthorizationError):
    code = "ADMIN_REQUIRED"

    def __init__(self):
        super().__init__("Admin capability required")


# -- infrastructure ----------------------------------------------------------


class TransientStoreError(StoreError):
    """Lock conflict, timeout or connection failure. Nothing was committed."""

    code = "TEMPORARILY_UNAVAILABLE"
    http_status = 503
    retryable = True

    def __init__(self, message: str = "The store is temporarily unavailable, please retry"):
        super().__init__(message)
