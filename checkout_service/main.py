"""
main.py — FastAPI Entry Point for the Checkout Service

This module provides the REST API of the marketplace's checkout core: cart,
order checkout and lifecycle, and payment reconciliation.

Responsibilities:
    • Wire the store, stock ledger, services and payment gateway client
    • Resolve the calling actor for every request (bearer token)
    • Render every result and every error in one envelope:
      {success, statusCode, message, data}
    • Provide system health information
"""

from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config
from .cart import CartService
from .clients import PaymentGatewayClient
from .errors import MarketplaceError
from .identity import Actor, get_current_actor
from .logging_config import get_logger, setup_logging
from .models import (
    AddCartItemRequest,
    CancelOrderRequest,
    CreateOrderRequest,
    CreatePaymentIntentRequest,
    OrderStatus,
    PaymentFailureRequest,
    PaymentStatus,
    UpdateCartItemRequest,
    UpdateOrderStatusRequest,
    VerifyPaymentRequest,
)
from .orders import OrderService
from .payments import PaymentReconciler
from .policy import Action, require
from .stock import StockLedger
from .store import DocumentStore, MemoryStore

log = get_logger(__name__)


class Services:
    """All collaborators of one running application, built once at startup."""

    def __init__(self, store: DocumentStore, gateway: PaymentGatewayClient):
        self.store = store
        self.gateway = gateway
        self.ledger = StockLedger(store)
        self.carts = CartService(store)
        self.payments = PaymentReconciler(store, gateway)
        self.orders = OrderService(store, self.ledger, self.carts, self.payments)


def build_store() -> DocumentStore:
    if config.STORE_BACKEND == "memory":
        log.warning("Using in-memory store; data is lost on restart.")
        return MemoryStore()
    from .mongo_store import MongoStore
    return MongoStore()


def get_services(request: Request) -> Services:
    return request.app.state.services


# Response envelope

def to_jsonable(data):
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, dict):
        return {k: to_jsonable(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [to_jsonable(v) for v in data]
    return jsonable_encoder(data)


def api_response(status_code: int, message: str, data=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": 200 <= status_code < 300,
            "statusCode": status_code,
            "message": message,
            "data": to_jsonable(data),
        },
    )


router = APIRouter()


# Health Check Endpoint
@router.get("/health")
def health_check():
    return {"status": "ok"}


# Cart

@router.get("/cart")
def get_cart(actor: Actor = Depends(get_current_actor), services: Services = Depends(get_services)):
    require(actor, Action.MANAGE_CART)
    return api_response(200, "Cart fetched successfully", services.carts.get(actor.id))


@router.post("/cart/items")
def add_cart_item(
        body: AddCartItemRequest,
        actor: Actor = Depends(get_current_actor),
        services: Services = Depends(get_services)
):
    require(actor, Action.MANAGE_CART)
    cart = services.carts.add_item(actor.id, body.productId, body.quantity)
    return api_response(200, "Item added to cart successfully", cart)


@router.put("/cart/items/{item_id}")
def update_cart_item(
        item_id: str,
        body: UpdateCartItemRequest,
        actor: Actor = Depends(get_current_actor),
        services: Services = Depends(get_services)
):
    require(actor, Action.MANAGE_CART)
    cart = services.carts.update_item(actor.id, item_id, body.quantity)
    return api_response(200, "Cart updated successfully", cart)


@router.delete("/cart/items/{item_id}")
def remove_cart_item(item_id: str, actor: Actor = Depends(get_current_actor),
                     services: Services = Depends(get_services)):
    require(actor, Action.MANAGE_CART)
    cart = services.carts.remove_item(actor.id, item_id)
    return api_response(200, "Item removed from cart successfully", cart)


@router.delete("/cart")
def clear_cart(actor: Actor = Depends(get_current_actor), services: Services = Depends(get_services)):
    require(actor, Action.MANAGE_CART)
    return api_response(200, "Cart cleared successfully", services.carts.clear(actor.id))


# Orders

@router.post("/orders")
def create_order(
        body: CreateOrderRequest,
        actor: Actor = Depends(get_current_actor),
        services: Services = Depends(get_services)
):
    """
    Runs the checkout saga: cart -> priced order + pending payment, stock decremented.

    Returns:
        201 envelope with `{order, payment}`.
    """
    order, payment = services.orders.create_order(actor, body.shippingAddressId, body.paymentMethod, body.notes)
    return api_response(201, "Order created successfully", {"order": order, "payment": payment})


@router.get("/orders/customer/my-orders")
def list_customer_orders(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        status: Optional[OrderStatus] = None,
        actor: Actor = Depends(get_current_actor),
        services: Services = Depends(get_services)
):
    result = services.orders.list_customer_orders(actor, status.value if status else None, page, limit)
    return api_response(200, "Orders fetched successfully", result)


@router.get("/orders/supplier/my-orders")
def list_supplier_orders(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        status: Optional[OrderStatus] = None,
        actor: Actor = Depends(get_current_actor),
        services: Services = Depends(get_services)
):
    result = services.orders.list_supplier_orders(actor, status.value if status else None, page, limit)
    return api_response(200, "Supplier orders fetched successfully", result)


@router.get("/orders/{order_id}")
def get_order(order_id: str, actor: Actor = Depends(get_current_actor), services: Services = Depends(get_services)):
    return api_response(200, "Order fetched successfully", services.orders.get_order(order_id, actor))


@router.get("/orders/{order_id}/track")
def track_order(order_id: str, actor: Actor = Depends(get_current_actor), services: Services = Depends(get_services)):
    return api_response(200, "Order tracking fetched successfully", services.orders.track_order(order_id, actor))


@router.put("/orders/{order_id}/cancel")
def cancel_order(
        order_id: str,
        body: CancelOrderRequest,
        actor: Actor = Depends(get_current_actor),
        services: Services = Depends(get_services)
):
    order, payment = services.orders.cancel_order(order_id, body.cancellationReason, actor)
    return api_response(200, "Order cancelled successfully", {"order": order, "payment": payment})


@router.put("/orders/{order_id}/status")
def update_order_status(
        order_id: str,
        body: UpdateOrderStatusRequest,
        actor: Actor = Depends(get_current_actor),
        services: Services = Depends(get_services)
):
    order = services.orders.update_status(order_id, body.status, body.note, actor)
    return api_response(200, "Order status updated successfully", order)


# Payments

@router.post("/payments/orders")
def create_payment_intent(
        body: CreatePaymentIntentRequest,
        actor: Actor = Depends(get_current_actor),
        services: Services = Depends(get_services)
):
    result = services.payments.create_payment_intent(body.orderId, actor, body.paymentMethod)
    return api_response(200, "Payment order created successfully", result)


@router.post("/payments/verify")
def verify_payment(
        body: VerifyPaymentRequest,
        actor: Actor = Depends(get_current_actor),
        services: Services = Depends(get_services)
):
    payment, order = services.payments.verify_payment(
        body.paymentId, body.gatewayOrderId, body.gatewayPaymentId, body.gatewaySignature, actor
    )
    return api_response(200, "Payment verified successfully", {"payment": payment, "order": order})


@router.post("/payments/failure")
def record_payment_failure(
        body: PaymentFailureRequest,
        actor: Actor = Depends(get_current_actor),
        services: Services = Depends(get_services)
):
    payment = services.payments.record_failure(body.paymentId, body.error, actor)
    return api_response(200, "Payment failure recorded", payment)


@router.get("/payments/customer/history")
def list_customer_payments(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        status: Optional[PaymentStatus] = None,
        actor: Actor = Depends(get_current_actor),
        services: Services = Depends(get_services)
):
    result = services.payments.list_customer_payments(actor, status.value if status else None, page, limit)
    return api_response(200, "Payment history fetched successfully", result)


@router.get("/payments/{payment_id}/invoice")
def get_payment_invoice(payment_id: str, actor: Actor = Depends(get_current_actor),
                        services: Services = Depends(get_services)):
    return api_response(200, "Invoice fetched successfully", services.payments.get_invoice(payment_id, actor))


@router.get("/payments/{payment_id}")
def get_payment(payment_id: str, actor: Actor = Depends(get_current_actor),
                services: Services = Depends(get_services)):
    return api_response(200, "Payment fetched successfully", services.payments.get_payment(payment_id, actor))


# Error boundary

async def handle_marketplace_error(request: Request, exc: MarketplaceError):
    log.warning(f"{request.method} {request.url.path} -> {exc.status_code} {type(exc).__name__}: {exc.message}")
    return api_response(exc.status_code, exc.message, exc.data)


async def handle_validation_error(request: Request, exc: RequestValidationError):
    return api_response(400, "Validation failed", exc.errors())


async def handle_http_error(request: Request, exc: StarletteHTTPException):
    return api_response(exc.status_code, str(exc.detail))


async def handle_unexpected_error(request: Request, exc: Exception):
    log.critical(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return api_response(500, "Internal server error")


def create_app(store: DocumentStore = None, gateway: PaymentGatewayClient = None) -> FastAPI:
    """
    Builds the FastAPI application.

    Args:
        store (DocumentStore | None): Persistence; default chosen by STORE_BACKEND.
        gateway (PaymentGatewayClient | None): Gateway client; default from PAYMENT_GATEWAY_URL.

    Returns:
        FastAPI: The configured application.
    """
    app = FastAPI(title="Marketplace Checkout Service")
    app.state.services = Services(store or build_store(), gateway or PaymentGatewayClient())
    app.include_router(router)

    app.add_exception_handler(MarketplaceError, handle_marketplace_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.on_event("startup")
    def on_startup():
        log.info("Checkout service starting...")
        ensure_indexes = getattr(app.state.services.store, "ensure_indexes", None)
        if ensure_indexes:
            ensure_indexes()

    @app.on_event("shutdown")
    def on_shutdown():
        app.state.services.gateway.close()

    return app


# Initialization
# Configure logging and initialize FastAPI app
setup_logging()
app = create_app()
