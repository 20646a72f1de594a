"""
cart.py — Cart Store

One mutable basket per customer. Every operation loads the cart document, changes
it, and writes the whole document back. Stock is checked against the live product
but never reserved here; reservation happens at checkout.
"""

import logging

from .errors import (
    CartItemNotFoundError,
    InsufficientStockError,
    ProductInactiveError,
    ProductNotFoundError,
    ValidationError,
)
from .models import Cart, CartItem, utcnow
from .store import DocumentStore

log = logging.getLogger(__name__)


def current_price(product: dict) -> float:
    """The price a customer pays right now: the discount price if one is set, else the list price."""
    return product.get("discountPrice") or product["price"]


class CartService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, customer_id: str) -> Cart:
        """Returns the customer's cart, creating an empty one on first access."""
        doc = self.store.find_cart(customer_id)
        if doc is not None:
            return Cart.model_validate(doc)
        cart = Cart(customerId=customer_id)
        self.store.save_cart(cart.to_document())
        log.info(f"[Cart: {customer_id}] Created empty cart.")
        return cart

    def _save(self, cart: Cart) -> Cart:
        cart.recalculate()
        cart.updatedAt = utcnow()
        self.store.save_cart(cart.to_document())
        return cart

    def _load_sellable_product(self, product_id: str) -> dict:
        product = self.store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if not product.get("isActive", True):
            raise ProductInactiveError(product_id, product.get("name"))
        return product

    def add_item(self, customer_id: str, product_id: str, quantity: int) -> Cart:
        """
        Adds a product to the cart, merging with an existing line for the same product.

        Args:
            customer_id (str): Cart owner.
            product_id (str): Product to add.
            quantity (int): Units to add (>= 1).

        Returns:
            Cart: The updated cart.

        Raises:
            ProductNotFoundError: Unknown product.
            ProductInactiveError: Product is deactivated.
            InsufficientStockError: The resulting line quantity exceeds live stock.
        """
        product = self._load_sellable_product(product_id)
        cart = self.get(customer_id)
        price = current_price(product)

        line = cart.find_product_line(product_id)
        new_quantity = quantity + (line.quantity if line else 0)
        if product.get("stock", 0) < new_quantity:
            raise InsufficientStockError(product_id, product.get("stock", 0), product.get("name"))

        if line:
            line.quantity = new_quantity
            line.priceSnapshot = price
        else:
            cart.items.append(CartItem(productId=product_id, quantity=quantity, priceSnapshot=price))

        log.info(f"[Cart: {customer_id}] Product {product_id} now at quantity {new_quantity}.")
        return self._save(cart)

    def update_item(self, customer_id: str, item_id: str, quantity: int) -> Cart:
        """Sets a line's quantity (>= 1), re-validated against live stock and re-priced."""
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        cart = self.get(customer_id)
        line = cart.find_item(item_id)
        if line is None:
            raise CartItemNotFoundError(item_id)

        product = self._load_sellable_product(line.productId)
        if product.get("stock", 0) < quantity:
            raise InsufficientStockError(line.productId, product.get("stock", 0), product.get("name"))

        line.quantity = quantity
        line.priceSnapshot = current_price(product)
        return self._save(cart)

    def remove_item(self, customer_id: str, item_id: str) -> Cart:
        cart = self.get(customer_id)
        cart.items = [item for item in cart.items if item.id != item_id]
        return self._save(cart)

    def clear(self, customer_id: str) -> Cart:
        cart = self.get(customer_id)
        cart.items = []
        log.info(f"[Cart: {customer_id}] Cleared.")
        return self._save(cart)
