"""
This module provides the communication client for the external Payment Gateway (REST API).

The gateway follows the usual "order + checkout + signature" flow:
    1. The server creates a remote order (payment intent) for an amount in minor units.
    2. The customer pays in the gateway's checkout; the client receives a payment id
       and an HMAC signature over "<gateway order id>|<gateway payment id>".
    3. The server verifies the signature and fetches the canonical payment record.

All calls have bounded timeouts and a bounded number of retries on transient
failures. POST requests reuse one Idempotency-Key across retries so a retried
request can never create a second intent or refund.
"""

import hashlib
import hmac
import logging
import time
import uuid

import httpx

from . import config
from .errors import GatewayError

log = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {502, 503, 504}


def to_minor_units(amount: float) -> int:
    """Converts an amount in rupees (e.g. 345.5) to paise (34550)."""
    return int(round(amount * 100))


def compute_signature(secret: str, gateway_order_ref: str, gateway_payment_ref: str) -> str:
    """Hex HMAC-SHA256 of "<order ref>|<payment ref>" keyed with the gateway secret."""
    message = f"{gateway_order_ref}|{gateway_payment_ref}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class PaymentGatewayClient:
    """
    Client for the Payment Gateway (REST API).
    Handles intent creation, signature verification, payment lookup and refunds.
    """

    def __init__(
            self,
            base_url: str = None,
            key_id: str = None,
            key_secret: str = None,
            max_retries: int = None,
            retry_backoff: float = None,
            http_client: httpx.Client = None
    ):
        """
        Initializes the HTTP client with proper timeout configuration.

        Args:
            base_url (str | None): Gateway base URL (default PAYMENT_GATEWAY_URL).
            key_id (str | None): API key id used for basic auth.
            key_secret (str | None): API secret used for basic auth and signature verification.
            max_retries (int | None): Extra attempts after a transient failure.
            retry_backoff (float | None): Base delay in seconds, doubled after every attempt.
            http_client (httpx.Client | None): Pre-built client (tests, custom transports).
        """
        self.key_id = key_id or config.GATEWAY_KEY_ID
        self.key_secret = key_secret or config.GATEWAY_KEY_SECRET
        self.max_retries = config.GATEWAY_MAX_RETRIES if max_retries is None else max_retries
        self.retry_backoff = config.GATEWAY_RETRY_BACKOFF if retry_backoff is None else retry_backoff

        if http_client is None:
            timeout_config = httpx.Timeout(config.GATEWAY_CONNECT_TIMEOUT, read=config.GATEWAY_READ_TIMEOUT)
            http_client = httpx.Client(base_url=base_url or config.PAYMENT_GATEWAY_URL, timeout=timeout_config)
        self.client = http_client

    def close(self):
        """Closes the HTTP client session."""
        self.client.close()

    def _request(self, method: str, path: str, reference: str, json: dict = None) -> dict:
        """
        Sends one logical request, retrying transient failures.

        Args:
            method (str): HTTP method.
            path (str): Path relative to the base URL.
            reference (str): Our identifier, used as log prefix.
            json (dict | None): Request body.

        Returns:
            dict: Decoded JSON response.

        Raises:
            GatewayError: On a non-retryable error response, or when all attempts failed.
        """
        headers = {}
        if method == "POST":
            headers["Idempotency-Key"] = str(uuid.uuid4())

        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = self.client.request(
                    method, path, json=json, headers=headers, auth=(self.key_id, self.key_secret)
                )
                response.raise_for_status()
                return response.json()

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status not in RETRYABLE_STATUS_CODES or attempt == attempts:
                    log.error(f"[{reference}] Gateway returned HTTP {status} for {method} {path}: {e.response.text}")
                    raise GatewayError(f"Payment gateway error (HTTP {status})", data=_error_body(e.response)) from e
                log.warning(f"[{reference}] Gateway HTTP {status}, retry {attempt}/{self.max_retries}.")

            except httpx.TransportError as e:
                # Timeout or connection failure; the outcome on the gateway side is unknown,
                # the Idempotency-Key makes the retry safe.
                if attempt == attempts:
                    log.error(f"[{reference}] Gateway unreachable after {attempts} attempts: {e!r}")
                    raise GatewayError(f"Payment gateway unreachable: {e}") from e
                log.warning(f"[{reference}] Gateway transport error ({e!r}), retry {attempt}/{self.max_retries}.")

            time.sleep(self.retry_backoff * (2 ** (attempt - 1)))

    def create_remote_intent(self, amount: float, currency: str, reference: str) -> dict:
        """
        Creates a remote order (payment intent) on the gateway.

        Args:
            amount (float): Amount in major units; converted to minor units.
            currency (str): ISO currency code (e.g. 'INR').
            reference (str): Our receipt/transaction reference.

        Returns:
            dict: Gateway order, including `id`, `amount`, `currency`, `status`.
        """
        payload = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": reference,
            "payment_capture": 1,
        }
        intent = self._request("POST", "/v1/orders", reference, json=payload)
        log.info(f"[{reference}] Gateway intent created (ID: {intent.get('id')}).")
        return intent

    def verify_signature(self, gateway_order_ref: str, gateway_payment_ref: str, signature: str) -> bool:
        expected = compute_signature(self.key_secret, gateway_order_ref, gateway_payment_ref)
        return hmac.compare_digest(expected.encode(), (signature or "").encode())

    def fetch_remote_payment(self, gateway_payment_ref: str) -> dict:
        return self._request("GET", f"/v1/payments/{gateway_payment_ref}", gateway_payment_ref)

    def refund(self, gateway_payment_ref: str, amount: float) -> dict:
        """
        Refunds a captured payment.

        Returns:
            dict: Gateway refund record, including `id` and `status`.
        """
        refund = self._request(
            "POST",
            f"/v1/payments/{gateway_payment_ref}/refund",
            gateway_payment_ref,
            json={"amount": to_minor_units(amount)},
        )
        log.info(f"[{gateway_payment_ref}] Refund issued (ID: {refund.get('id')}).")
        return refund


def _error_body(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}
