"""
mock_payment_gateway.py — Mock Implementation of the Payment Gateway (REST API)

This module provides a simulated payment gateway for local runs and integration tests
of the checkout service. It exposes a small FastAPI application that mimics the
gateway's order/payment/refund API, including HMAC-signed checkout callbacks.

Simulation Scenarios:
    • Successful payment (captured)
    • Failed payment (checkout outcome "fail")
    • Timeout simulation for payment lookups (payment ids starting with "pay_timeout_")

Endpoints:
    POST /v1/orders                      — Creates a remote order (payment intent).
    POST /v1/checkout/{order_id}/pay     — Simulates the customer completing checkout.
    GET  /v1/payments/{payment_id}       — Fetches a payment.
    POST /v1/payments/{payment_id}/refund — Refunds a captured payment.

Port:
    Default: 8001 (HTTP)
"""

import hashlib
import hmac
import logging
import os
import time
import uuid
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel

KEY_ID = os.environ.get("GATEWAY_KEY_ID", "rzp_test_key")
KEY_SECRET = os.environ.get("GATEWAY_KEY_SECRET", "rzp_test_secret")
TIMEOUT_SECONDS = float(os.environ.get("MOCK_GATEWAY_TIMEOUT_SECONDS", "10"))

app = FastAPI(title="Mock Payment Gateway")
log = logging.getLogger(__name__)
security = HTTPBasic()

# In-memory gateway state
orders = {}
payments = {}
refunds = {}
idempotency_cache = {}


def _now():
    return int(time.time())


def authenticate(credentials: HTTPBasicCredentials = Depends(security)):
    if credentials.username != KEY_ID or credentials.password != KEY_SECRET:
        raise HTTPException(status_code=401, detail={"code": "BAD_REQUEST_ERROR", "description": "Authentication failed"})


def sign(order_id: str, payment_id: str) -> str:
    return hmac.new(KEY_SECRET.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


class OrderRequest(BaseModel):
    """
    Represents a remote order (payment intent) request payload.

    Attributes:
        amount (int): Amount in the smallest currency unit (e.g. paise).
        currency (str): ISO 4217 currency code (e.g. 'INR').
        receipt (str): Merchant reference for the order.
        payment_capture (int): 1 to capture automatically on success.
    """
    amount: int
    currency: str
    receipt: str
    payment_capture: int = 1


class CheckoutRequest(BaseModel):
    outcome: str = "success"  # "success" | "fail"


class RefundRequest(BaseModel):
    amount: Optional[int] = None


@app.post("/v1/orders", dependencies=[Depends(authenticate)])
def create_order(request: OrderRequest, idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")):
    """
    Creates a remote order. Repeating a request with the same Idempotency-Key
    returns the order created the first time.
    """
    if idempotency_key and idempotency_key in idempotency_cache:
        log.info(f"[GW] Idempotent replay for order request {idempotency_key}.")
        return idempotency_cache[idempotency_key]
    if request.amount <= 0:
        raise HTTPException(status_code=400, detail={"code": "BAD_REQUEST_ERROR", "description": "Invalid amount"})

    order = {
        "id": f"order_{uuid.uuid4().hex[:14]}",
        "entity": "order",
        "amount": request.amount,
        "currency": request.currency,
        "receipt": request.receipt,
        "status": "created",
        "created_at": _now(),
    }
    orders[order["id"]] = order
    if idempotency_key:
        idempotency_cache[idempotency_key] = order
    log.info(f"[GW] Order {order['id']} created for receipt {request.receipt}.")
    return order


@app.post("/v1/checkout/{order_id}/pay")
def simulate_checkout(order_id: str, request: CheckoutRequest):
    """
    Simulates the customer paying in the gateway checkout.

    Returns:
        dict: The callback data a browser client would forward to the merchant:
            gatewayOrderId, gatewayPaymentId, gatewaySignature.
    """
    order = orders.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail={"code": "BAD_REQUEST_ERROR", "description": "Order not found"})

    payment_id = f"pay_{uuid.uuid4().hex[:14]}"
    payments[payment_id] = {
        "id": payment_id,
        "entity": "payment",
        "order_id": order_id,
        "amount": order["amount"],
        "currency": order["currency"],
        "status": "captured" if request.outcome == "success" else "failed",
        "created_at": _now(),
    }
    if request.outcome == "success":
        order["status"] = "paid"
    log.info(f"[GW] Checkout for {order_id}: payment {payment_id} {payments[payment_id]['status']}.")
    return {
        "gatewayOrderId": order_id,
        "gatewayPaymentId": payment_id,
        "gatewaySignature": sign(order_id, payment_id),
    }


@app.get("/v1/payments/{payment_id}", dependencies=[Depends(authenticate)])
def fetch_payment(payment_id: str):
    if payment_id.startswith("pay_timeout_"):
        log.info(f"[GW] Simulating timeout for {payment_id}...")
        time.sleep(TIMEOUT_SECONDS)
    payment = payments.get(payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail={"code": "BAD_REQUEST_ERROR", "description": "Payment not found"})
    return payment


@app.post("/v1/payments/{payment_id}/refund", dependencies=[Depends(authenticate)])
def refund_payment(
        payment_id: str,
        request: RefundRequest,
        idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")
):
    if idempotency_key and idempotency_key in idempotency_cache:
        return idempotency_cache[idempotency_key]

    payment = payments.get(payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail={"code": "BAD_REQUEST_ERROR", "description": "Payment not found"})
    if payment["status"] != "captured":
        raise HTTPException(
            status_code=400,
            detail={"code": "BAD_REQUEST_ERROR", "description": f"Payment is {payment['status']}, cannot refund"},
        )

    refund = {
        "id": f"rfnd_{uuid.uuid4().hex[:14]}",
        "entity": "refund",
        "payment_id": payment_id,
        "amount": request.amount or payment["amount"],
        "currency": payment["currency"],
        "status": "processed",
        "created_at": _now(),
    }
    refunds[refund["id"]] = refund
    payment["status"] = "refunded"
    if idempotency_key:
        idempotency_cache[idempotency_key] = refund
    log.info(f"[GW] Refund {refund['id']} processed for {payment_id}.")
    return refund


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=8001)
