"""
store.py — Document Store Contract

The checkout core talks to persistence only through `DocumentStore`. Every
method works on plain documents (dicts keyed by `_id`) and each call is a single
atomic write against one document, which is all the coordination the core needs:

    • try_decrement_stock is a conditional write (stock >= qty), never read-then-write
    • transition_order / update_payment only apply when the current status is expected
    • next_sequence hands out strictly increasing numbers

Implementations:
    - MemoryStore (this module): in-process, lock-protected. Used by tests and
      the `memory` backend.
    - MongoStore (mongo_store.py): MongoDB via pymongo.
"""

import copy
import threading
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Tuple


class DocumentStore(ABC):

    # --- products (Product Catalog) ---

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[dict]: ...

    @abstractmethod
    def insert_product(self, doc: dict) -> str: ...

    @abstractmethod
    def try_decrement_stock(self, product_id: str, quantity: int) -> bool:
        """Atomically subtracts `quantity` if and only if stock >= quantity."""

    @abstractmethod
    def increment_stock(self, product_id: str, quantity: int) -> bool:
        """Unconditionally adds `quantity`. Returns False if the product is gone."""

    # --- addresses (Address Book) ---

    @abstractmethod
    def get_address(self, customer_id: str, address_id: str) -> Optional[dict]: ...

    @abstractmethod
    def insert_address(self, doc: dict) -> str: ...

    # --- carts ---

    @abstractmethod
    def find_cart(self, customer_id: str) -> Optional[dict]: ...

    @abstractmethod
    def save_cart(self, doc: dict) -> None:
        """Replaces (or creates) the customer's cart document."""

    # --- orders ---

    @abstractmethod
    def insert_order(self, doc: dict) -> str: ...

    @abstractmethod
    def find_order(self, order_id: str) -> Optional[dict]: ...

    @abstractmethod
    def delete_order(self, order_id: str) -> None: ...

    @abstractmethod
    def update_order(self, order_id: str, fields: dict) -> Optional[dict]: ...

    @abstractmethod
    def transition_order(
            self,
            order_id: str,
            from_statuses: Iterable[str],
            fields: dict,
            history_entry: dict
    ) -> Optional[dict]:
        """
        Sets `fields` and appends `history_entry` in one write, but only if the
        order's current status is in `from_statuses`.

        Returns:
            dict | None: The updated document, or None if the guard did not match.
        """

    @abstractmethod
    def find_orders(
            self,
            customer_id: str = None,
            supplier_id: str = None,
            status: str = None,
            skip: int = 0,
            limit: int = 10
    ) -> Tuple[List[dict], int]:
        """Returns one page of matching orders (newest first) and the total match count."""

    # --- payments ---

    @abstractmethod
    def insert_payment(self, doc: dict) -> str: ...

    @abstractmethod
    def find_payment(self, payment_id: str) -> Optional[dict]: ...

    @abstractmethod
    def find_payment_by_order(self, order_id: str) -> Optional[dict]: ...

    @abstractmethod
    def delete_payment(self, payment_id: str) -> None: ...

    @abstractmethod
    def update_payment(self, payment_id: str, fields: dict, from_statuses: Iterable[str] = None) -> Optional[dict]:
        """
        Sets `fields` on the payment, optionally guarded by its current status.

        Returns:
            dict | None: The updated document, or None if missing or the guard did not match.
        """

    @abstractmethod
    def find_payments(
            self,
            customer_id: str,
            status: str = None,
            skip: int = 0,
            limit: int = 10
    ) -> Tuple[List[dict], int]: ...

    # --- sequences ---

    @abstractmethod
    def next_sequence(self, name: str) -> int: ...


class MemoryStore(DocumentStore):
    """
    In-process implementation of the store.

    A single lock serializes all writes, which gives every method the same
    per-call atomicity MongoDB gives a single-document update. Documents are
    deep-copied on the way in and out so callers never share state.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._products = {}
        self._addresses = {}
        self._carts = {}
        self._orders = {}
        self._payments = {}
        self._sequences = {}

    @staticmethod
    def _copy(doc):
        return copy.deepcopy(doc) if doc is not None else None

    # --- products ---

    def get_product(self, product_id):
        with self._lock:
            return self._copy(self._products.get(product_id))

    def insert_product(self, doc):
        with self._lock:
            self._products[doc["_id"]] = self._copy(doc)
        return doc["_id"]

    def try_decrement_stock(self, product_id, quantity):
        with self._lock:
            product = self._products.get(product_id)
            if product is None or product.get("stock", 0) < quantity:
                return False
            product["stock"] -= quantity
            return True

    def increment_stock(self, product_id, quantity):
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                return False
            product["stock"] = product.get("stock", 0) + quantity
            return True

    # --- addresses ---

    def get_address(self, customer_id, address_id):
        with self._lock:
            address = self._addresses.get(address_id)
            if address is None or address.get("customerId") != customer_id:
                return None
            return self._copy(address)

    def insert_address(self, doc):
        with self._lock:
            self._addresses[doc["_id"]] = self._copy(doc)
        return doc["_id"]

    # --- carts ---

    def find_cart(self, customer_id):
        with self._lock:
            return self._copy(self._carts.get(customer_id))

    def save_cart(self, doc):
        with self._lock:
            self._carts[doc["customerId"]] = self._copy(doc)

    # --- orders ---

    def insert_order(self, doc):
        with self._lock:
            self._orders[doc["_id"]] = self._copy(doc)
        return doc["_id"]

    def find_order(self, order_id):
        with self._lock:
            return self._copy(self._orders.get(order_id))

    def delete_order(self, order_id):
        with self._lock:
            self._orders.pop(order_id, None)

    def update_order(self, order_id, fields):
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                return None
            order.update(self._copy(fields))
            return self._copy(order)

    def transition_order(self, order_id, from_statuses, fields, history_entry):
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order["status"] not in set(from_statuses):
                return None
            order.update(self._copy(fields))
            order.setdefault("statusHistory", []).append(self._copy(history_entry))
            return self._copy(order)

    def find_orders(self, customer_id=None, supplier_id=None, status=None, skip=0, limit=10):
        with self._lock:
            matches = [
                o for o in self._orders.values()
                if (customer_id is None or o["customerId"] == customer_id)
                and (supplier_id is None or any(i["supplierId"] == supplier_id for i in o["items"]))
                and (status is None or o["status"] == status)
            ]
            matches.sort(key=lambda o: o["createdAt"], reverse=True)
            return [self._copy(o) for o in matches[skip:skip + limit]], len(matches)

    # --- payments ---

    def insert_payment(self, doc):
        with self._lock:
            self._payments[doc["_id"]] = self._copy(doc)
        return doc["_id"]

    def find_payment(self, payment_id):
        with self._lock:
            return self._copy(self._payments.get(payment_id))

    def find_payment_by_order(self, order_id):
        with self._lock:
            payment = next((p for p in self._payments.values() if p["orderId"] == order_id), None)
            return self._copy(payment)

    def delete_payment(self, payment_id):
        with self._lock:
            self._payments.pop(payment_id, None)

    def update_payment(self, payment_id, fields, from_statuses=None):
        with self._lock:
            payment = self._payments.get(payment_id)
            if payment is None:
                return None
            if from_statuses is not None and payment["status"] not in set(from_statuses):
                return None
            payment.update(self._copy(fields))
            return self._copy(payment)

    def find_payments(self, customer_id, status=None, skip=0, limit=10):
        with self._lock:
            matches = [
                p for p in self._payments.values()
                if p["customerId"] == customer_id and (status is None or p["status"] == status)
            ]
            matches.sort(key=lambda p: p["createdAt"], reverse=True)
            return [self._copy(p) for p in matches[skip:skip + limit]], len(matches)

    # --- sequences ---

    def next_sequence(self, name):
        with self._lock:
            self._sequences[name] = self._sequences.get(name, 0) + 1
            return self._sequences[name]
