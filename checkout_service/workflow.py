"""
workflow.py — Checkout Saga

This module contains the workflow that turns a customer's cart into an order.
The sequence spans several independently persisted documents (product stock
counters, the order, the payment, the cart), so it is run as a saga: every step
that changes state registers a compensation, and on any failure the registered
compensations are replayed in reverse order before the error is re-raised.

Workflow Overview:
1. Load the cart (must not be empty)
2. Resolve the shipping address snapshot
3. For each line: re-fetch the product, check it is active, atomically decrement stock
4. Price the lines at the live discount-or-list price and derive tax/shipping/final amount
5. Create the order (status pending, one history entry)
6. Create the linked payment (status pending)
7. Clear the cart
"""

import logging
import secrets
import string
from functools import partial

from . import config
from .cart import CartService, current_price
from .errors import AddressNotFoundError, CartEmptyError, InsufficientStockError, ProductUnavailableError
from .models import (
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentMethod,
    ShippingAddress,
    StatusEntry,
    utcnow,
)
from .stock import StockLedger
from .store import DocumentStore

log = logging.getLogger(__name__)

ADDRESS_FIELDS = ("addressLine1", "addressLine2", "city", "state", "pincode", "country")


def calculate_totals(total_amount: float, discount: float = 0) -> dict:
    """
    Derives the order's monetary fields from the sum of its line subtotals.

    Returns:
        dict: totalAmount, tax (18%), shippingCharges (free above the threshold),
        discount and finalAmount = totalAmount + tax + shippingCharges - discount.
    """
    total_amount = round(total_amount, 2)
    # Rounded to the paisa, not to whole rupees.
    tax = round(total_amount * config.TAX_RATE, 2)
    shipping = 0 if total_amount > config.FREE_SHIPPING_THRESHOLD else config.FLAT_SHIPPING_CHARGE
    return {
        "totalAmount": total_amount,
        "tax": tax,
        "shippingCharges": shipping,
        "discount": discount,
        "finalAmount": round(total_amount + tax + shipping - discount, 2),
    }


def generate_order_number(store: DocumentStore, now) -> str:
    seq = store.next_sequence("orderNumber")
    return f"ORD{int(now.timestamp() * 1000)}{seq:04d}"


def generate_transaction_id(now) -> str:
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(7))
    return f"TXN{int(now.timestamp() * 1000)}{suffix}"


class CheckoutWorkflow:
    def __init__(self, store: DocumentStore, ledger: StockLedger, carts: CartService):
        self.store = store
        self.ledger = ledger
        self.carts = carts

    def run(self, customer_id: str, shipping_address_id: str, payment_method, notes: str = None):
        """
        Executes the complete checkout for one customer.

        Args:
            customer_id (str): The ordering customer.
            shipping_address_id (str): Address book entry to snapshot.
            payment_method (PaymentMethod | str): Method recorded on the payment.
            notes (str | None): Free-text order notes.

        Returns:
            tuple[Order, Payment]: The created order and its pending payment.

        Raises:
            CartEmptyError: The cart has no items.
            AddressNotFoundError: The address does not exist or belongs to someone else.
            ProductUnavailableError: A product was removed or deactivated.
            InsufficientStockError: A stock decrement was rejected.

        Compensation (Saga Pattern):
            Any failure replays the registered compensations in reverse order
            (delete payment, delete order, restock every decremented line), so no
            order, no payment and no net stock change remain.
        """
        log_prefix = f"[Checkout: {customer_id}]"
        payment_method = PaymentMethod(payment_method)
        compensations = []

        log.info(f"{log_prefix} Starting checkout.")
        try:
            # --- 1. Cart ---
            cart = self.carts.get(customer_id)
            if not cart.items:
                raise CartEmptyError()

            # --- 2. Shipping address snapshot ---
            address = self.store.get_address(customer_id, shipping_address_id)
            if address is None:
                raise AddressNotFoundError(shipping_address_id)
            shipping_address = ShippingAddress(**{k: address[k] for k in ADDRESS_FIELDS if address.get(k) is not None})

            # --- 3. Stock reservation, 4. pricing ---
            order_items = []
            total_amount = 0
            for line in cart.items:
                product = self.store.get_product(line.productId)
                if product is None or not product.get("isActive", True):
                    raise ProductUnavailableError(line.productId, product.get("name") if product else None)

                if not self.ledger.try_decrement(line.productId, line.quantity):
                    latest = self.store.get_product(line.productId) or {}
                    raise InsufficientStockError(line.productId, latest.get("stock"), product.get("name"))
                compensations.append(
                    (f"restock {line.productId} x{line.quantity}",
                     partial(self.ledger.increment, line.productId, line.quantity))
                )

                unit_price = current_price(product)
                subtotal = round(unit_price * line.quantity, 2)
                order_items.append(OrderItem(
                    productId=line.productId,
                    supplierId=product["supplierId"],
                    quantity=line.quantity,
                    unitPrice=unit_price,
                    subtotal=subtotal,
                ))
                total_amount += subtotal

            log.info(f"{log_prefix} Stock reserved for {len(order_items)} line(s).")

            # --- 5. Order ---
            now = utcnow()
            order = Order(
                orderNumber=generate_order_number(self.store, now),
                customerId=customer_id,
                items=order_items,
                shippingAddress=shipping_address,
                notes=notes,
                status=OrderStatus.PENDING,
                statusHistory=[StatusEntry(status=OrderStatus.PENDING, timestamp=now, note="Order placed")],
                createdAt=now,
                updatedAt=now,
                **calculate_totals(total_amount),
            )
            self.store.insert_order(order.to_document())
            compensations.append((f"delete order {order.id}", partial(self.store.delete_order, order.id)))

            # --- 6. Payment ---
            payment = Payment(
                transactionId=generate_transaction_id(now),
                orderId=order.id,
                customerId=customer_id,
                amount=order.finalAmount,
                currency=config.CURRENCY,
                paymentMethod=payment_method,
                createdAt=now,
                updatedAt=now,
            )
            self.store.insert_payment(payment.to_document())
            compensations.append((f"delete payment {payment.id}", partial(self.store.delete_payment, payment.id)))

            order = Order.model_validate(self.store.update_order(order.id, {"paymentId": payment.id}))

            # --- 7. Cart ---
            self.carts.clear(customer_id)

        except Exception as e:
            log.warning(f"{log_prefix} Checkout failed ({e}). Running {len(compensations)} compensation(s).")
            self._compensate(log_prefix, compensations)
            raise

        log.info(
            f"{log_prefix} Order {order.orderNumber} created (Order: {order.id}, Payment: {payment.id}, "
            f"finalAmount: {order.finalAmount})."
        )
        return order, payment

    @staticmethod
    def _compensate(log_prefix: str, compensations: list):
        """
        Replays compensations newest first. A failing compensation is logged and the
        remaining ones still run; the original error is always the one surfaced.
        """
        for description, action in reversed(compensations):
            try:
                action()
                log.info(f"{log_prefix} Compensation done: {description}.")
            except Exception as comp_e:
                log.critical(f"{log_prefix} COMPENSATION FAILED ({description}): {comp_e}. MANUAL ACTION REQUIRED!")
