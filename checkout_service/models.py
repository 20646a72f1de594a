"""
models.py — Data Models for Checkout and Payment Reconciliation

This module defines the documents persisted by the checkout core and the request
payloads accepted by the API. It uses Pydantic models to ensure type safety and
automatic validation of incoming data.

Documents (one MongoDB collection each):
    - Cart: A customer's mutable basket.
    - Order: The immutable, priced snapshot created at checkout.
    - Payment: The payment record linked 1:1 to an order.

Document ids are stored under `_id` and exposed as `id` in API responses.
Order and Payment reference each other by id only.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return str(ObjectId())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CARD = "card"
    UPI = "upi"
    NET_BANKING = "net_banking"
    COD = "cash_on_delivery"

    @property
    def is_offline(self) -> bool:
        return self is PaymentMethod.COD


class RefundStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    PROCESSED = "processed"
    FAILED = "failed"


class Document(BaseModel):
    """Base class for persisted documents."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str = Field(default_factory=new_id, alias="_id")

    def to_document(self) -> dict:
        """Returns the representation written to the store (`_id` key, native datetimes)."""
        return self.model_dump(by_alias=True)


# --- Cart ---

class CartItem(BaseModel):
    """
    Represents a single product line in a cart.

    Attributes:
        productId (str): Referenced product.
        quantity (int): Requested quantity, at least 1.
        priceSnapshot (float): Discount-or-list price at the time the line was last touched.
            Informational only; checkout always re-prices from the live product.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id, alias="_id")
    productId: str
    quantity: int = Field(..., ge=1)
    priceSnapshot: float


class Cart(Document):
    customerId: str
    items: List[CartItem] = []
    totalAmount: float = 0
    updatedAt: datetime = Field(default_factory=utcnow)

    def find_item(self, item_id: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.id == item_id), None)

    def find_product_line(self, product_id: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.productId == product_id), None)

    def recalculate(self):
        self.totalAmount = round(sum(i.priceSnapshot * i.quantity for i in self.items), 2)


# --- Order ---

class ShippingAddress(BaseModel):
    """Copied address values; never a live reference to the address book."""
    addressLine1: str
    addressLine2: Optional[str] = None
    city: str
    state: str
    pincode: str
    country: str = "India"


class OrderItem(BaseModel):
    """
    Represents a single priced line of an order.

    `unitPrice` and `subtotal` are frozen at checkout and never recomputed.
    """
    productId: str
    supplierId: str
    quantity: int = Field(..., gt=0)
    unitPrice: float
    subtotal: float


class StatusEntry(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: OrderStatus
    timestamp: datetime = Field(default_factory=utcnow)
    note: Optional[str] = None


class Order(Document):
    """
    Represents a placed order.

    After creation only `status`, `statusHistory`, `cancelledAt`, `cancellationReason`
    and `paymentId` change. `statusHistory` is append-only and starts with `pending`.
    """
    orderNumber: str
    customerId: str
    items: List[OrderItem]
    shippingAddress: ShippingAddress
    totalAmount: float
    tax: float
    shippingCharges: float
    discount: float = 0
    finalAmount: float
    status: OrderStatus = OrderStatus.PENDING
    statusHistory: List[StatusEntry] = []
    paymentId: Optional[str] = None
    notes: Optional[str] = None
    cancelledAt: Optional[datetime] = None
    cancellationReason: Optional[str] = None
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)

    @property
    def supplier_ids(self) -> set:
        return {item.supplierId for item in self.items}


# --- Payment ---

class Payment(Document):
    """
    Represents the payment record of an order (exactly one per order).

    Once `completed`, `amount` and `paidAt` never change and the only further
    status is `refunded`.
    """
    transactionId: str
    orderId: str
    customerId: str
    amount: float
    currency: str = "INR"
    paymentMethod: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    gatewayOrderRef: Optional[str] = None
    gatewayPaymentRef: Optional[str] = None
    gatewayResponse: Optional[dict] = None
    paidAt: Optional[datetime] = None
    failureReason: Optional[str] = None
    refundRef: Optional[str] = None
    refundStatus: Optional[RefundStatus] = None
    refundError: Optional[str] = None
    refundedAt: Optional[datetime] = None
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)


# --- Request payloads ---

class AddCartItemRequest(BaseModel):
    productId: str
    quantity: int = Field(..., ge=1)


class UpdateCartItemRequest(BaseModel):
    quantity: int = Field(..., ge=1)


class CreateOrderRequest(BaseModel):
    shippingAddressId: str
    paymentMethod: PaymentMethod
    notes: Optional[str] = None


class CancelOrderRequest(BaseModel):
    cancellationReason: str = Field(..., min_length=1)


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus
    note: Optional[str] = None


class CreatePaymentIntentRequest(BaseModel):
    orderId: str
    paymentMethod: Optional[PaymentMethod] = None  # only used when the order has no payment record yet


class VerifyPaymentRequest(BaseModel):
    """
    Callback data the client received from the gateway checkout.

    Attributes:
        paymentId (str): Our payment record id.
        gatewayOrderId (str): The gateway's intent/order reference.
        gatewayPaymentId (str): The gateway's payment reference.
        gatewaySignature (str): Hex HMAC-SHA256 of "gatewayOrderId|gatewayPaymentId".
    """
    paymentId: str
    gatewayOrderId: str
    gatewayPaymentId: str
    gatewaySignature: str


class PaymentFailureRequest(BaseModel):
    paymentId: str
    error: dict = {}
