"""Tests for the cart store."""

import pytest

from checkout_service.errors import (
    CartItemNotFoundError,
    InsufficientStockError,
    ProductInactiveError,
    ProductNotFoundError,
    ValidationError,
)

from .conftest import CUSTOMER, add_product, stock_of


class TestGetCart:
    def test_creates_empty_cart_on_first_access(self, services, store):
        assert store.find_cart(CUSTOMER.id) is None

        cart = services.carts.get(CUSTOMER.id)

        assert cart.items == []
        assert cart.totalAmount == 0
        assert store.find_cart(CUSTOMER.id)["_id"] == cart.id

    def test_returns_same_cart_afterwards(self, services):
        first = services.carts.get(CUSTOMER.id)
        assert services.carts.get(CUSTOMER.id).id == first.id


class TestAddItem:
    def test_adds_line_with_price_snapshot(self, services, catalog):
        cart = services.carts.add_item(CUSTOMER.id, catalog["a"], 2)

        assert len(cart.items) == 1
        assert cart.items[0].productId == catalog["a"]
        assert cart.items[0].quantity == 2
        assert cart.items[0].priceSnapshot == 100
        assert cart.totalAmount == 200

    def test_uses_discount_price(self, services, store):
        product_id = add_product(store, price=120, discount_price=90, stock=5)

        cart = services.carts.add_item(CUSTOMER.id, product_id, 1)

        assert cart.items[0].priceSnapshot == 90

    def test_merges_existing_line_and_restamps_price(self, services, store, catalog):
        services.carts.add_item(CUSTOMER.id, catalog["a"], 2)
        product = store.get_product(catalog["a"])
        product["discountPrice"] = 80
        store.insert_product(product)

        cart = services.carts.add_item(CUSTOMER.id, catalog["a"], 3)

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 5
        assert cart.items[0].priceSnapshot == 80

    def test_rejects_quantity_above_stock(self, services, catalog):
        with pytest.raises(InsufficientStockError) as exc_info:
            services.carts.add_item(CUSTOMER.id, catalog["b"], 6)
        assert exc_info.value.available == 5

    def test_rejects_merge_above_stock(self, services, catalog):
        services.carts.add_item(CUSTOMER.id, catalog["b"], 4)
        with pytest.raises(InsufficientStockError):
            services.carts.add_item(CUSTOMER.id, catalog["b"], 2)
        assert services.carts.get(CUSTOMER.id).items[0].quantity == 4

    def test_rejects_unknown_product(self, services):
        with pytest.raises(ProductNotFoundError):
            services.carts.add_item(CUSTOMER.id, "missing", 1)

    def test_rejects_inactive_product(self, services, store):
        product_id = add_product(store, price=10, stock=5, active=False)
        with pytest.raises(ProductInactiveError):
            services.carts.add_item(CUSTOMER.id, product_id, 1)

    def test_does_not_touch_stock(self, services, store, catalog):
        services.carts.add_item(CUSTOMER.id, catalog["a"], 3)
        assert stock_of(store, catalog["a"]) == 10


class TestUpdateItem:
    def test_sets_quantity(self, services, catalog):
        item_id = services.carts.add_item(CUSTOMER.id, catalog["a"], 1).items[0].id

        cart = services.carts.update_item(CUSTOMER.id, item_id, 4)

        assert cart.items[0].quantity == 4
        assert cart.totalAmount == 400

    def test_rejects_zero(self, services, catalog):
        item_id = services.carts.add_item(CUSTOMER.id, catalog["a"], 1).items[0].id
        with pytest.raises(ValidationError):
            services.carts.update_item(CUSTOMER.id, item_id, 0)

    def test_revalidates_against_live_stock(self, services, store, catalog):
        item_id = services.carts.add_item(CUSTOMER.id, catalog["b"], 1).items[0].id
        store.try_decrement_stock(catalog["b"], 4)

        with pytest.raises(InsufficientStockError):
            services.carts.update_item(CUSTOMER.id, item_id, 2)

    def test_unknown_item(self, services):
        with pytest.raises(CartItemNotFoundError):
            services.carts.update_item(CUSTOMER.id, "nope", 1)


class TestRemoveAndClear:
    def test_remove_item(self, services, catalog):
        services.carts.add_item(CUSTOMER.id, catalog["a"], 1)
        cart = services.carts.add_item(CUSTOMER.id, catalog["b"], 1)
        b_item = next(i for i in cart.items if i.productId == catalog["b"])

        cart = services.carts.remove_item(CUSTOMER.id, b_item.id)

        assert [i.productId for i in cart.items] == [catalog["a"]]
        assert cart.totalAmount == 100

    def test_remove_missing_item_is_noop(self, services, catalog):
        services.carts.add_item(CUSTOMER.id, catalog["a"], 1)
        cart = services.carts.remove_item(CUSTOMER.id, "nope")
        assert len(cart.items) == 1

    def test_clear_keeps_cart_document(self, services, store, catalog):
        cart = services.carts.add_item(CUSTOMER.id, catalog["a"], 1)

        cleared = services.carts.clear(CUSTOMER.id)

        assert cleared.id == cart.id
        assert cleared.items == []
        assert cleared.totalAmount == 0
        assert store.find_cart(CUSTOMER.id) is not None
