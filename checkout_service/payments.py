"""
payments.py — Payment Reconciler

Owns the payment record of each order and reconciles it with the external
gateway's asynchronous confirmation:

    • create_payment_intent: idempotent per order, offline methods skip the gateway
    • verify_payment: HMAC signature check, canonical fetch, payment completion,
      order pending -> confirmed
    • record_failure: stores the gateway's error payload
    • refund_for_cancelled_order: called by the order lifecycle on cancellation

Payment status changes are guarded writes (see state_machine.PAYMENT_TRANSITIONS),
so a completed payment can only ever move on to refunded.
"""

import logging
import math

from .clients import PaymentGatewayClient, to_minor_units
from .errors import (
    GatewayError,
    InvalidTransitionError,
    OrderNotFoundError,
    PaymentAlreadyCompletedError,
    PaymentNotFoundError,
    SignatureMismatchError,
    ValidationError,
)
from .identity import Actor
from .models import (
    Order,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    utcnow,
)
from .policy import Action, require
from .state_machine import check_payment_transition, payment_sources, transition_order
from .store import DocumentStore
from .workflow import generate_transaction_id

log = logging.getLogger(__name__)

CAPTURED_STATES = {"captured", "authorized"}


class PaymentReconciler:
    def __init__(self, store: DocumentStore, gateway: PaymentGatewayClient):
        self.store = store
        self.gateway = gateway

    # --- lookups ---

    def _load_payment(self, payment_id: str) -> Payment:
        doc = self.store.find_payment(payment_id)
        if doc is None:
            raise PaymentNotFoundError(payment_id)
        return Payment.model_validate(doc)

    def _load_order(self, order_id: str) -> Order:
        doc = self.store.find_order(order_id)
        if doc is None:
            raise OrderNotFoundError(order_id)
        return Order.model_validate(doc)

    def _mark_failed(self, payment: Payment, reason: str, **fields) -> Payment:
        log.warning(f"[Payment: {payment.id}] Marked failed: {reason}")
        doc = self.store.update_payment(
            payment.id,
            {"status": PaymentStatus.FAILED.value, "failureReason": reason, "updatedAt": utcnow(), **fields},
            from_statuses=payment_sources(PaymentStatus.FAILED),
        )
        return Payment.model_validate(doc) if doc else payment

    def get_payment(self, payment_id: str, actor: Actor) -> Payment:
        payment = self._load_payment(payment_id)
        require(actor, Action.VIEW_PAYMENT, payment)
        return payment

    def list_customer_payments(self, actor: Actor, status: str = None, page: int = 1, limit: int = 10) -> dict:
        docs, count = self.store.find_payments(actor.id, status=status, skip=(page - 1) * limit, limit=limit)
        return {
            "payments": [Payment.model_validate(d) for d in docs],
            "totalPages": math.ceil(count / limit),
            "currentPage": page,
            "totalPayments": count,
        }

    def get_invoice(self, payment_id: str, actor: Actor) -> dict:
        payment = self.get_payment(payment_id, actor)
        if payment.status != PaymentStatus.COMPLETED:
            raise ValidationError("Payment not completed yet")
        return {
            "invoiceNumber": f"INV-{payment.transactionId}",
            "invoiceDate": payment.paidAt,
            "payment": payment,
            "order": self._load_order(payment.orderId),
        }

    # --- intent ---

    def _get_or_create_payment(self, order: Order, payment_method) -> Payment:
        doc = self.store.find_payment_by_order(order.id)
        if doc is not None:
            return Payment.model_validate(doc)

        now = utcnow()
        payment = Payment(
            transactionId=generate_transaction_id(now),
            orderId=order.id,
            customerId=order.customerId,
            amount=order.finalAmount,
            paymentMethod=PaymentMethod(payment_method or PaymentMethod.CARD),
            createdAt=now,
            updatedAt=now,
        )
        self.store.insert_payment(payment.to_document())
        self.store.update_order(order.id, {"paymentId": payment.id})
        log.info(f"[Order: {order.id}] Payment record {payment.id} created on first intent request.")
        return payment

    def create_payment_intent(self, order_id: str, actor: Actor, payment_method=None) -> dict:
        """
        Prepares an order for payment.

        Reuses the order's existing payment record unless it is completed. Offline
        methods need no gateway call. For online methods a pending payment that
        already has a gateway intent returns that intent again; otherwise a new
        remote intent is created and stored on the record.

        Args:
            order_id (str): The order to pay.
            actor (Actor): Caller, must own the order.
            payment_method (PaymentMethod | None): Only used if no payment record exists yet.

        Returns:
            dict: `requiresPayment` plus the data the client needs to open the gateway checkout.

        Raises:
            PaymentAlreadyCompletedError: The order is already paid.
            InvalidTransitionError: The order is cancelled or its payment refunded.
            GatewayError: The gateway could not create the intent.
        """
        order = self._load_order(order_id)
        require(actor, Action.CREATE_PAYMENT_INTENT, order, "You can only pay for your own orders")

        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransitionError(order.status, "paid", "Cannot pay for a cancelled order")

        payment = self._get_or_create_payment(order, payment_method)
        if payment.status == PaymentStatus.COMPLETED:
            raise PaymentAlreadyCompletedError(payment.id)
        if payment.status == PaymentStatus.REFUNDED:
            raise InvalidTransitionError(payment.status, PaymentStatus.PENDING.value, "Payment has been refunded")

        result = {
            "paymentId": payment.id,
            "orderId": order.id,
            "transactionId": payment.transactionId,
            "paymentMethod": payment.paymentMethod,
        }

        if PaymentMethod(payment.paymentMethod).is_offline:
            log.info(f"[Payment: {payment.id}] Offline method, no gateway intent needed.")
            return {**result, "requiresPayment": False}

        if payment.status == PaymentStatus.PENDING and payment.gatewayOrderRef:
            log.info(f"[Payment: {payment.id}] Reusing gateway intent {payment.gatewayOrderRef}.")
            intent_id = payment.gatewayOrderRef
        else:
            try:
                intent = self.gateway.create_remote_intent(payment.amount, payment.currency, payment.transactionId)
            except GatewayError as e:
                self._mark_failed(payment, f"Intent creation failed: {e}")
                raise
            intent_id = intent["id"]
            doc = self.store.update_payment(
                payment.id,
                {
                    "status": PaymentStatus.PENDING.value,
                    "gatewayOrderRef": intent_id,
                    "gatewayPaymentRef": None,
                    "failureReason": None,
                    "updatedAt": utcnow(),
                },
                from_statuses=[PaymentStatus.PENDING.value, PaymentStatus.FAILED.value],
            )
            if doc is None:
                raise PaymentAlreadyCompletedError(payment.id)

        return {
            **result,
            "requiresPayment": True,
            "gatewayOrderId": intent_id,
            "amount": to_minor_units(payment.amount),
            "currency": payment.currency,
            "keyId": self.gateway.key_id,
        }

    # --- verification ---

    def verify_payment(
            self,
            payment_id: str,
            gateway_order_ref: str,
            gateway_payment_ref: str,
            gateway_signature: str,
            actor: Actor
    ):
        """
        Verifies a gateway callback and completes the payment.

        Args:
            payment_id (str): Our payment record.
            gateway_order_ref (str): Gateway intent id from the callback.
            gateway_payment_ref (str): Gateway payment id from the callback.
            gateway_signature (str): HMAC from the callback.
            actor (Actor): Caller, must own the payment.

        Returns:
            tuple[Payment, Order]: The completed payment and the (normally confirmed) order.

        Raises:
            SignatureMismatchError: Signature invalid or not for this payment's intent.
                The payment is marked failed.
            GatewayError: The canonical fetch failed or the gateway does not report a
                captured payment of the right amount. The payment is marked failed,
                the order stays pending.
            PaymentAlreadyCompletedError: The payment was already completed.
        """
        payment = self._load_payment(payment_id)
        require(actor, Action.VERIFY_PAYMENT, payment)
        log_prefix = f"[Payment: {payment.id}]"

        if payment.status == PaymentStatus.COMPLETED:
            raise PaymentAlreadyCompletedError(payment.id)
        check_payment_transition(payment.status, PaymentStatus.COMPLETED)

        if payment.gatewayOrderRef and payment.gatewayOrderRef != gateway_order_ref:
            self._mark_failed(payment, "Gateway order reference does not match this payment",
                              gatewayPaymentRef=gateway_payment_ref)
            raise SignatureMismatchError()

        if not self.gateway.verify_signature(gateway_order_ref, gateway_payment_ref, gateway_signature):
            self._mark_failed(payment, "Invalid payment signature", gatewayPaymentRef=gateway_payment_ref)
            raise SignatureMismatchError()

        log.info(f"{log_prefix} Signature valid, fetching canonical record {gateway_payment_ref}.")
        try:
            remote = self.gateway.fetch_remote_payment(gateway_payment_ref)
        except GatewayError as e:
            self._mark_failed(payment, str(e), gatewayPaymentRef=gateway_payment_ref)
            raise

        if remote.get("status") not in CAPTURED_STATES or remote.get("amount") != to_minor_units(payment.amount):
            reason = f"Gateway reports status '{remote.get('status')}' for amount {remote.get('amount')}"
            self._mark_failed(payment, reason, gatewayPaymentRef=gateway_payment_ref, gatewayResponse=remote)
            raise GatewayError(f"Payment not captured: {reason}", data=remote)

        now = utcnow()
        doc = self.store.update_payment(
            payment.id,
            {
                "status": PaymentStatus.COMPLETED.value,
                "paidAt": now,
                "gatewayOrderRef": gateway_order_ref,
                "gatewayPaymentRef": gateway_payment_ref,
                "gatewayResponse": remote,
                "failureReason": None,
                "updatedAt": now,
            },
            from_statuses=payment_sources(PaymentStatus.COMPLETED),
        )
        if doc is None:
            current = self._load_payment(payment.id)
            if current.status == PaymentStatus.COMPLETED:
                raise PaymentAlreadyCompletedError(payment.id)
            log.critical(
                f"{log_prefix} Gateway captured {gateway_payment_ref} but payment is '{current.status}'. "
                f"MANUAL REFUND REQUIRED!"
            )
            raise InvalidTransitionError(current.status, PaymentStatus.COMPLETED.value)
        payment = Payment.model_validate(doc)
        log.info(f"{log_prefix} Payment completed.")

        order = self._load_order(payment.orderId)
        if order.status == OrderStatus.PENDING:
            try:
                order = transition_order(self.store, order, OrderStatus.CONFIRMED, "Payment completed successfully")
            except InvalidTransitionError:
                order = self._load_order(payment.orderId)
                log.warning(f"[Order: {order.id}] Not confirmed, status changed concurrently to '{order.status}'.")
        else:
            log.warning(f"[Order: {order.id}] Payment completed while order is '{order.status}', status left as is.")

        return payment, order

    def record_failure(self, payment_id: str, error_info: dict, actor: Actor) -> Payment:
        """Marks the payment failed with the gateway's raw error payload. The order is not touched."""
        payment = self._load_payment(payment_id)
        require(actor, Action.RECORD_PAYMENT_FAILURE, payment)

        if payment.status == PaymentStatus.COMPLETED:
            raise PaymentAlreadyCompletedError(payment.id)
        check_payment_transition(payment.status, PaymentStatus.FAILED)

        reason = (error_info or {}).get("description") or "Payment failed"
        doc = self.store.update_payment(
            payment.id,
            {
                "status": PaymentStatus.FAILED.value,
                "failureReason": reason,
                "gatewayResponse": error_info,
                "updatedAt": utcnow(),
            },
            from_statuses=payment_sources(PaymentStatus.FAILED),
        )
        if doc is None:
            raise InvalidTransitionError(self._load_payment(payment.id).status, PaymentStatus.FAILED.value)
        log.info(f"[Payment: {payment.id}] Failure recorded: {reason}")
        return Payment.model_validate(doc)

    # --- refund ---

    def refund_for_cancelled_order(self, order: Order):
        """
        Marks the order's payment refunded, whatever its prior state.

        A completed online payment is refunded on the gateway first. If that call
        fails, the payment is still marked refunded locally with refundStatus=failed
        so the cancellation stands and the refund can be retried manually.

        Returns:
            Payment | None: The updated payment, or None if the order has none.
        """
        doc = self.store.find_payment_by_order(order.id)
        if doc is None:
            return None
        payment = Payment.model_validate(doc)
        if payment.status == PaymentStatus.REFUNDED:
            return payment

        now = utcnow()
        fields = {"status": PaymentStatus.REFUNDED.value, "updatedAt": now}
        if payment.status == PaymentStatus.COMPLETED and payment.gatewayPaymentRef:
            try:
                refund = self.gateway.refund(payment.gatewayPaymentRef, payment.amount)
                fields.update(refundRef=refund.get("id"), refundStatus=RefundStatus.PROCESSED.value,
                              refundedAt=now)
            except GatewayError as e:
                log.critical(
                    f"[Payment: {payment.id}] Gateway refund for cancelled order {order.id} failed: {e}. "
                    f"MANUAL REFUND REQUIRED!"
                )
                fields.update(refundStatus=RefundStatus.FAILED.value, refundError=str(e))
        else:
            fields.update(refundStatus=RefundStatus.NOT_REQUIRED.value)

        doc = self.store.update_payment(payment.id, fields, from_statuses=payment_sources(PaymentStatus.REFUNDED))
        if doc is None:
            return self._load_payment(payment.id)
        log.info(f"[Payment: {payment.id}] Marked refunded ({fields['refundStatus']}).")
        return Payment.model_validate(doc)
