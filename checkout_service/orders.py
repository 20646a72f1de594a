"""
orders.py — Order Lifecycle

Creates orders (via the checkout saga in workflow.py), serves read and tracking
projections, and drives the order status state machine:

    pending -> confirmed -> processing -> shipped -> delivered
    pending | confirmed | processing -> cancelled   (customer, restocks and refunds)
"""

import logging
import math

from .cart import CartService
from .errors import InvalidTransitionError, OrderNotFoundError
from .identity import Actor
from .models import Order, OrderStatus, utcnow
from .payments import PaymentReconciler
from .policy import Action, require
from .state_machine import CANCELLABLE_STATUSES, transition_order
from .stock import StockLedger
from .store import DocumentStore
from .workflow import CheckoutWorkflow

log = logging.getLogger(__name__)


class OrderService:
    def __init__(self, store: DocumentStore, ledger: StockLedger, carts: CartService, payments: PaymentReconciler):
        self.store = store
        self.ledger = ledger
        self.payments = payments
        self.checkout = CheckoutWorkflow(store, ledger, carts)

    def _load(self, order_id: str) -> Order:
        doc = self.store.find_order(order_id)
        if doc is None:
            raise OrderNotFoundError(order_id)
        return Order.model_validate(doc)

    def create_order(self, actor: Actor, shipping_address_id: str, payment_method, notes: str = None):
        """Runs the checkout saga for the calling customer. Returns (order, payment)."""
        require(actor, Action.PLACE_ORDER)
        return self.checkout.run(actor.id, shipping_address_id, payment_method, notes)

    def get_order(self, order_id: str, actor: Actor) -> Order:
        order = self._load(order_id)
        require(actor, Action.VIEW_ORDER, order)
        return order

    def _page(self, docs, count, page, limit) -> dict:
        return {
            "orders": [Order.model_validate(d) for d in docs],
            "totalPages": math.ceil(count / limit),
            "currentPage": page,
            "totalOrders": count,
        }

    def list_customer_orders(self, actor: Actor, status: str = None, page: int = 1, limit: int = 10) -> dict:
        require(actor, Action.PLACE_ORDER)
        docs, count = self.store.find_orders(customer_id=actor.id, status=status, skip=(page - 1) * limit, limit=limit)
        return self._page(docs, count, page, limit)

    def list_supplier_orders(self, actor: Actor, status: str = None, page: int = 1, limit: int = 10) -> dict:
        require(actor, Action.LIST_SUPPLIER_ORDERS)
        docs, count = self.store.find_orders(supplier_id=actor.id, status=status, skip=(page - 1) * limit, limit=limit)
        return self._page(docs, count, page, limit)

    def track_order(self, order_id: str, actor: Actor) -> dict:
        order = self._load(order_id)
        require(actor, Action.TRACK_ORDER, order)
        return {
            "orderNumber": order.orderNumber,
            "currentStatus": order.status,
            "statusHistory": order.statusHistory,
            "orderDate": order.createdAt,
        }

    def update_status(self, order_id: str, new_status, note: str, actor: Actor) -> Order:
        """
        Moves an order along the fulfilment path (admin, or a supplier with items in it).

        Cancellation is not accepted here: it has stock and payment side effects and
        must go through `cancel_order`.

        Raises:
            InvalidTransitionError: The move is not in the transition table, or targets `cancelled`.
        """
        order = self._load(order_id)
        require(actor, Action.UPDATE_ORDER_STATUS, order)

        new_status = OrderStatus(new_status)
        if new_status == OrderStatus.CANCELLED:
            raise InvalidTransitionError(order.status, new_status.value, "Use order cancellation to cancel an order")
        return transition_order(self.store, order, new_status, note)

    def cancel_order(self, order_id: str, reason: str, actor: Actor):
        """
        Cancels an order on behalf of its customer.

        Allowed while pending, confirmed or processing. Restores stock for every item,
        records the cancellation and marks the linked payment refunded.

        Returns:
            tuple[Order, Payment | None]: The cancelled order and its payment.

        Raises:
            InvalidTransitionError: The order is shipped, delivered or already cancelled.
        """
        order = self._load(order_id)
        require(actor, Action.CANCEL_ORDER, order, "You can only cancel your own orders")
        if order.status not in CANCELLABLE_STATUSES:
            raise InvalidTransitionError(
                order.status, OrderStatus.CANCELLED.value, f"Cannot cancel order with status: {order.status}"
            )

        now = utcnow()
        # The guarded write makes this the only cancellation that restocks.
        order = transition_order(
            self.store,
            order,
            OrderStatus.CANCELLED,
            reason,
            extra_fields={"cancelledAt": now, "cancellationReason": reason},
        )

        for item in order.items:
            self.ledger.increment(item.productId, item.quantity)
        log.info(f"[Order: {order.id}] Cancelled, stock restored for {len(order.items)} line(s).")

        payment = self.payments.refund_for_cancelled_order(order)
        return order, payment
