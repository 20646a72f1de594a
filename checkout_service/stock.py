"""
stock.py — Stock Ledger

The authoritative per-product available-quantity counter. Stock only changes here:
decremented when an order is created, incremented when an order is cancelled or a
checkout is compensated.
"""

import logging

from .errors import ValidationError
from .store import DocumentStore

log = logging.getLogger(__name__)


class StockLedger:
    def __init__(self, store: DocumentStore):
        self.store = store

    def try_decrement(self, product_id: str, quantity: int) -> bool:
        """
        Atomically reserves `quantity` units of a product.

        The decrement is a single conditional write against the stored counter, so two
        concurrent callers can never both succeed when only one unit remains.

        Args:
            product_id (str): Product to reserve.
            quantity (int): Units to take, must be positive.

        Returns:
            bool: True if the stock was decremented, False if it was insufficient.
        """
        if quantity <= 0:
            raise ValidationError("Quantity must be at least 1")
        ok = self.store.try_decrement_stock(product_id, quantity)
        if ok:
            log.info(f"[Stock: {product_id}] -{quantity}")
        else:
            log.warning(f"[Stock: {product_id}] Decrement of {quantity} rejected (insufficient stock).")
        return ok

    def increment(self, product_id: str, quantity: int):
        """Adds `quantity` units back. Used for cancellation restock and checkout compensation."""
        if quantity <= 0:
            raise ValidationError("Quantity must be at least 1")
        if not self.store.increment_stock(product_id, quantity):
            # The product was deleted from the catalog; nothing to give back to.
            log.error(f"[Stock: {product_id}] Restock of {quantity} skipped: product no longer exists.")
            return
        log.info(f"[Stock: {product_id}] +{quantity}")
