"""
policy.py — Access Policy

Every role and ownership rule of the checkout core lives in `can_perform`.
Services call `require(...)` before touching a resource; nothing else inspects roles.
"""

from enum import Enum

from .errors import ForbiddenError
from .identity import Actor, Role
from .models import Order, Payment


class Action(str, Enum):
    MANAGE_CART = "manage_cart"
    PLACE_ORDER = "place_order"
    VIEW_ORDER = "view_order"
    TRACK_ORDER = "track_order"
    CANCEL_ORDER = "cancel_order"
    UPDATE_ORDER_STATUS = "update_order_status"
    LIST_SUPPLIER_ORDERS = "list_supplier_orders"
    CREATE_PAYMENT_INTENT = "create_payment_intent"
    VERIFY_PAYMENT = "verify_payment"
    RECORD_PAYMENT_FAILURE = "record_payment_failure"
    VIEW_PAYMENT = "view_payment"


_CUSTOMER_ONLY = {Action.MANAGE_CART, Action.PLACE_ORDER}
_OWNER_ONLY = {
    Action.TRACK_ORDER,
    Action.CANCEL_ORDER,
    Action.CREATE_PAYMENT_INTENT,
    Action.VERIFY_PAYMENT,
    Action.RECORD_PAYMENT_FAILURE,
}


def _owner_id(resource):
    if isinstance(resource, (Order, Payment)):
        return resource.customerId
    return None


def can_perform(actor: Actor, action: Action, resource=None) -> bool:
    """
    Decides whether `actor` may perform `action` on `resource`.

    Args:
        actor (Actor): The authenticated caller.
        action (Action): The operation being attempted.
        resource (Order | Payment | None): The target document, if the action has one.

    Returns:
        bool: True if the operation is permitted.
    """
    if action in _CUSTOMER_ONLY:
        return actor.role == Role.CUSTOMER

    if action == Action.LIST_SUPPLIER_ORDERS:
        return actor.role == Role.SUPPLIER

    is_owner = actor.role == Role.CUSTOMER and _owner_id(resource) == actor.id

    if action in _OWNER_ONLY:
        return is_owner

    if action == Action.VIEW_PAYMENT:
        return is_owner or actor.is_admin

    is_order_supplier = (
        actor.role == Role.SUPPLIER
        and isinstance(resource, Order)
        and actor.id in resource.supplier_ids
    )

    if action == Action.VIEW_ORDER:
        return is_owner or actor.is_admin or is_order_supplier

    if action == Action.UPDATE_ORDER_STATUS:
        return actor.is_admin or is_order_supplier

    return False


def require(actor: Actor, action: Action, resource=None, message: str = "Access denied"):
    """Raises ForbiddenError unless `can_perform` allows the action."""
    if not can_perform(actor, action, resource):
        raise ForbiddenError(message)
