"""Tests for the checkout saga: pricing, stock consumption and compensation."""

import threading

import pytest

from checkout_service.errors import (
    AddressNotFoundError,
    CartEmptyError,
    InsufficientStockError,
    ProductUnavailableError,
)
from checkout_service.identity import Actor, Role
from checkout_service.workflow import calculate_totals

from .conftest import CUSTOMER, OTHER_CUSTOMER, add_address, add_product, stock_of


def assert_nothing_created(store, customer_id):
    orders, count = store.find_orders(customer_id=customer_id)
    assert count == 0
    payments, count = store.find_payments(customer_id)
    assert count == 0


class TestCalculateTotals:
    def test_below_free_shipping(self):
        totals = calculate_totals(250)
        assert totals == {
            "totalAmount": 250,
            "tax": 45,
            "shippingCharges": 50,
            "discount": 0,
            "finalAmount": 345,
        }

    def test_threshold_is_exclusive(self):
        assert calculate_totals(500)["shippingCharges"] == 50
        assert calculate_totals(500.01)["shippingCharges"] == 0

    def test_tax_rounded_to_paisa(self):
        totals = calculate_totals(333)
        assert totals["tax"] == 59.94
        assert totals["finalAmount"] == 442.94

    def test_final_amount_formula_with_discount(self):
        totals = calculate_totals(999.99, discount=20)
        assert totals["tax"] == round(999.99 * 0.18, 2)
        assert totals["finalAmount"] == round(999.99 + totals["tax"] + 0 - 20, 2)


class TestCreateOrder:
    def test_reference_scenario(self, services, store, catalog, placed_order):
        order, payment = placed_order

        assert order.totalAmount == 250
        assert order.tax == 45
        assert order.shippingCharges == 50
        assert order.discount == 0
        assert order.finalAmount == 345
        assert stock_of(store, catalog["a"]) == 8
        assert stock_of(store, catalog["b"]) == 4

    def test_order_snapshot(self, catalog, placed_order):
        order, payment = placed_order

        assert order.status == "pending"
        assert order.orderNumber.startswith("ORD")
        assert [(i.productId, i.quantity, i.unitPrice, i.subtotal) for i in order.items] == [
            (catalog["a"], 2, 100, 200),
            (catalog["b"], 1, 50, 50),
        ]
        assert all(i.supplierId == "sup-1" for i in order.items)
        assert order.shippingAddress.city == "Rajkot"
        assert len(order.statusHistory) == 1
        assert order.statusHistory[0].status == "pending"

    def test_payment_created_and_linked(self, store, placed_order):
        order, payment = placed_order

        assert payment.status == "pending"
        assert payment.amount == 345
        assert payment.paymentMethod == "card"
        assert payment.transactionId.startswith("TXN")
        assert order.paymentId == payment.id
        assert payment.orderId == order.id
        assert store.find_order(order.id)["paymentId"] == payment.id

    def test_cart_cleared(self, services, placed_order):
        assert services.carts.get(CUSTOMER.id).items == []

    def test_prices_frozen_after_creation(self, services, store, catalog, placed_order):
        order, _ = placed_order
        product = store.get_product(catalog["a"])
        product["price"] = 999
        store.insert_product(product)

        assert services.orders.get_order(order.id, CUSTOMER).items[0].unitPrice == 100

    def test_reprices_at_commit_time(self, services, store, catalog):
        services.carts.add_item(CUSTOMER.id, catalog["a"], 1)
        product = store.get_product(catalog["a"])
        product["discountPrice"] = 70
        store.insert_product(product)

        order, _ = services.orders.create_order(CUSTOMER, catalog["address"], "upi")

        assert order.items[0].unitPrice == 70

    def test_order_numbers_are_unique(self, services, catalog):
        numbers = set()
        for _ in range(3):
            services.carts.add_item(CUSTOMER.id, catalog["a"], 1)
            order, _ = services.orders.create_order(CUSTOMER, catalog["address"], "card")
            numbers.add(order.orderNumber)
        assert len(numbers) == 3


class TestCreateOrderFailures:
    def test_empty_cart(self, services, store, catalog):
        with pytest.raises(CartEmptyError):
            services.orders.create_order(CUSTOMER, catalog["address"], "card")
        assert_nothing_created(store, CUSTOMER.id)

    def test_unknown_address(self, services, store, catalog):
        services.carts.add_item(CUSTOMER.id, catalog["a"], 1)
        with pytest.raises(AddressNotFoundError):
            services.orders.create_order(CUSTOMER, "missing", "card")
        assert stock_of(store, catalog["a"]) == 10
        assert_nothing_created(store, CUSTOMER.id)

    def test_someone_elses_address(self, services, store, catalog):
        services.carts.add_item(CUSTOMER.id, catalog["a"], 1)
        foreign = add_address(store, OTHER_CUSTOMER.id)
        with pytest.raises(AddressNotFoundError):
            services.orders.create_order(CUSTOMER, foreign, "card")

    def test_insufficient_stock_rolls_back_earlier_lines(self, services, store, catalog):
        services.carts.add_item(CUSTOMER.id, catalog["a"], 2)
        services.carts.add_item(CUSTOMER.id, catalog["b"], 3)
        store.try_decrement_stock(catalog["b"], 4)  # someone else bought B meanwhile

        with pytest.raises(InsufficientStockError):
            services.orders.create_order(CUSTOMER, catalog["address"], "card")

        assert stock_of(store, catalog["a"]) == 10
        assert stock_of(store, catalog["b"]) == 1
        assert_nothing_created(store, CUSTOMER.id)
        assert len(services.carts.get(CUSTOMER.id).items) == 2

    def test_deactivated_product_rolls_back(self, services, store, catalog):
        services.carts.add_item(CUSTOMER.id, catalog["a"], 2)
        services.carts.add_item(CUSTOMER.id, catalog["b"], 1)
        product = store.get_product(catalog["b"])
        product["isActive"] = False
        store.insert_product(product)

        with pytest.raises(ProductUnavailableError):
            services.orders.create_order(CUSTOMER, catalog["address"], "card")

        assert stock_of(store, catalog["a"]) == 10
        assert_nothing_created(store, CUSTOMER.id)

    def test_failure_after_order_insert_removes_order(self, services, store, catalog, monkeypatch):
        services.carts.add_item(CUSTOMER.id, catalog["a"], 2)

        def broken_insert(doc):
            raise RuntimeError("write concern timeout")

        monkeypatch.setattr(store, "insert_payment", broken_insert)

        with pytest.raises(RuntimeError):
            services.orders.create_order(CUSTOMER, catalog["address"], "card")

        assert stock_of(store, catalog["a"]) == 10
        assert_nothing_created(store, CUSTOMER.id)

    def test_failed_compensation_does_not_hide_original_error(self, services, store, catalog, monkeypatch, caplog):
        services.carts.add_item(CUSTOMER.id, catalog["a"], 2)
        services.carts.add_item(CUSTOMER.id, catalog["b"], 1)
        store.try_decrement_stock(catalog["b"], 5)

        def broken_increment(product_id, quantity):
            raise RuntimeError("store down")

        monkeypatch.setattr(services.orders.checkout.ledger, "increment", broken_increment)

        with pytest.raises(InsufficientStockError):
            services.orders.create_order(CUSTOMER, catalog["address"], "card")
        assert "COMPENSATION FAILED" in caplog.text


class TestConcurrentCheckout:
    def test_last_unit_sold_once(self, services, store):
        product_id = add_product(store, price=10, stock=1)
        buyers = [Actor(f"buyer-{n}", Role.CUSTOMER) for n in range(2)]
        addresses = {}
        for buyer in buyers:
            addresses[buyer.id] = add_address(store, buyer.id)
            services.carts.add_item(buyer.id, product_id, 1)

        barrier = threading.Barrier(len(buyers))
        outcomes = []

        def checkout(buyer):
            barrier.wait()
            try:
                services.orders.create_order(buyer, addresses[buyer.id], "card")
                outcomes.append("ok")
            except InsufficientStockError:
                outcomes.append("insufficient")

        threads = [threading.Thread(target=checkout, args=(b,)) for b in buyers]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["insufficient", "ok"]
        assert stock_of(store, product_id) == 0
