"""
state_machine.py — Order and Payment Status Transitions

Both lifecycles are closed enumerations with an explicit transition table. Any move
not listed is rejected with InvalidTransitionError. Order transitions are applied
with a status-guarded write so a concurrent transition cannot be overwritten.
"""

import logging

from .errors import InvalidTransitionError, OrderNotFoundError
from .models import Order, OrderStatus, PaymentStatus, StatusEntry, utcnow
from .store import DocumentStore

log = logging.getLogger(__name__)

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

CANCELLABLE_STATUSES = {s for s, targets in ORDER_TRANSITIONS.items() if OrderStatus.CANCELLED in targets}

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: {PaymentStatus.PENDING, PaymentStatus.COMPLETED, PaymentStatus.FAILED,
                           PaymentStatus.REFUNDED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}


def can_transition_order(current, target) -> bool:
    return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]


def check_order_transition(current, target):
    if not can_transition_order(current, target):
        raise InvalidTransitionError(OrderStatus(current).value, OrderStatus(target).value)


def check_payment_transition(current, target):
    if PaymentStatus(target) not in PAYMENT_TRANSITIONS[PaymentStatus(current)]:
        raise InvalidTransitionError(
            PaymentStatus(current).value,
            PaymentStatus(target).value,
            f"Payment cannot move from '{PaymentStatus(current).value}' to '{PaymentStatus(target).value}'",
        )


def payment_sources(target):
    """All payment statuses from which `target` is reachable."""
    return [s.value for s, targets in PAYMENT_TRANSITIONS.items() if PaymentStatus(target) in targets]


def transition_order(store: DocumentStore, order: Order, target, note: str = None, extra_fields: dict = None) -> Order:
    """
    Moves an order to `target`, appending a history entry in the same write.

    Args:
        store (DocumentStore): Persistence.
        order (Order): The order as last read by the caller.
        target (OrderStatus | str): The new status.
        note (str | None): History note.
        extra_fields (dict | None): Additional fields set together with the status.

    Returns:
        Order: The updated order.

    Raises:
        InvalidTransitionError: If the move is not in the table, or the order changed
            status concurrently and the move is no longer legal.
        OrderNotFoundError: If the order disappeared.
    """
    target = OrderStatus(target)
    check_order_transition(order.status, target)

    now = utcnow()
    entry = StatusEntry(status=target, timestamp=now, note=note).model_dump()
    fields = {"status": target.value, "updatedAt": now}
    if extra_fields:
        fields.update(extra_fields)

    sources = [s.value for s, targets in ORDER_TRANSITIONS.items() if target in targets]
    doc = store.transition_order(order.id, sources, fields, entry)
    if doc is None:
        current = store.find_order(order.id)
        if current is None:
            raise OrderNotFoundError(order.id)
        log.warning(f"[Order: {order.id}] Concurrent status change detected ({current['status']}).")
        raise InvalidTransitionError(current["status"], target.value)

    log.info(f"[Order: {order.id}] Status {OrderStatus(order.status).value} -> {target.value}.")
    return Order.model_validate(doc)
