"""Typed errors raised by the checkout core.

Every error carries the HTTP status it is rendered with. They are caught at a
single boundary in ``main.py`` and turned into the response envelope.
"""


class MarketplaceError(Exception):
    """Base exception for all checkout errors."""

    status_code = 500

    def __init__(self, message: str, data=None):
        self.message = message
        self.data = data
        super().__init__(message)


class ValidationError(MarketplaceError):
    """Malformed or semantically invalid input."""

    status_code = 400


class NotFoundError(MarketplaceError):
    status_code = 404


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class AddressNotFoundError(NotFoundError):
    def __init__(self, address_id: str):
        self.address_id = address_id
        super().__init__("Shipping address not found")


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("Order not found")


class PaymentNotFoundError(NotFoundError):
    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__("Payment not found")


class CartItemNotFoundError(NotFoundError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__("Item not found in cart")


class ForbiddenError(MarketplaceError):
    """Wrong owner or role for the requested operation."""

    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class ConflictError(MarketplaceError):
    status_code = 409


class PaymentAlreadyCompletedError(ConflictError):
    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__("Payment already completed")


class CartEmptyError(ValidationError):
    def __init__(self):
        super().__init__("Cart is empty")


class ProductUnavailableError(ValidationError):
    """Raised at checkout when a product has been deactivated."""

    def __init__(self, product_id: str, name: str | None = None):
        self.product_id = product_id
        super().__init__(f"Product {name or 'unknown'} is not available")


class ProductInactiveError(ProductUnavailableError):
    """Raised when an inactive product is put into a cart."""


class InsufficientStockError(ValidationError):
    def __init__(self, product_id: str, available: int | None = None, name: str | None = None):
        self.product_id = product_id
        self.available = available
        msg = f"Insufficient stock for {name or product_id}"
        if available is not None:
            msg = f"{msg}. Available: {available}"
        super().__init__(msg)


class InvalidTransitionError(ValidationError):
    """An illegal order or payment status move was attempted."""

    def __init__(self, current: str, target: str, message: str | None = None):
        self.current = current
        self.target = target
        super().__init__(message or f"Cannot move from status '{current}' to '{target}'")


class SignatureMismatchError(ValidationError):
    def __init__(self):
        super().__init__("Payment signature verification failed")


class GatewayError(MarketplaceError):
    """The external payment gateway failed or could not be reached."""

    status_code = 502
