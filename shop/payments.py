# shop/payments.py: SePay notifications: checkout IPN, bank-transfer webhook and a DEBUG test hook
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

from django.conf import settings
from django.db import IntegrityError, transaction
from django.http import Http404, HttpRequest, JsonResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny

from . import sepay
from .ip_validation import get_client_ip, is_ip_allowed
from .models import Order, Transaction
from .sepay import SepayConfigurationError

logger = logging.getLogger(__name__)

IPN_REQUIRED_FIELDS = (
    "order_invoice_number",
    "sepay_order_id",
    "status",
    "amount",
    "payment_method",
    "transaction_time",
)

# SePay IPN status -> (order status, transaction status)
IPN_STATUS_MAP = {
    "ORDER_PAID": (Order.STATUS_PAID, Transaction.STATUS_SUCCESS),
    "ORDER_FAILED": (Order.STATUS_CANCELLED, Transaction.STATUS_FAILED),
    "ORDER_PENDING": (Order.STATUS_PENDING, Transaction.STATUS_PENDING),
    "ORDER_PROCESSING": (Order.STATUS_PROCESSING, Transaction.STATUS_PENDING),
    "ORDER_CANCELLED": (Order.STATUS_CANCELLED, Transaction.STATUS_FAILED),
}

IPN_AMOUNT_TOLERANCE = 1
WEBHOOK_AMOUNT_TOLERANCE = 100

Result = Tuple[Dict[str, Any], int]


# ======================================================================
# Utils
# ======================================================================
def _error(message: str) -> Dict[str, Any]:
    return {"success": False, "error": message}


def _parse_json(raw: bytes) -> Optional[Any]:
    try:
        return json.loads(raw.decode("utf-8") or "null")
    except (ValueError, UnicodeDecodeError):
        return None


def _already_processed(reference: str) -> Optional[Result]:
    existing = Transaction.objects.filter(reference=reference).first()
    if not existing:
        return None
    logger.info("Transaction %s already processed", reference)
    return {"success": True, "message": "Transaction already processed", "transaction_id": existing.id}, 200


def _next_ipn_status(current: str, mapped: Optional[str]) -> str:
    """
    Order status after an IPN. Delivered/cancelled orders are final and a
    paid order never moves again through the gateway; only fulfilment or an
    admin advances it from there.
    """
    if not mapped or current in Order.FINAL_STATUSES or current == Order.STATUS_PAID:
        return current
    return mapped


def _to_amount(value) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ======================================================================
# IPN (checkout notifications)
# ======================================================================
def process_ipn(raw_body: bytes, client_ip: str, header_signature: Optional[str]) -> Result:
    allowed = list(getattr(settings, "SEPAY_ALLOWED_IPS", []) or [])
    if allowed and not is_ip_allowed(client_ip, allowed):
        logger.warning("IPN rejected from IP %s", client_ip)
        return _error("Forbidden - IP not allowed"), 403

    payload = _parse_json(raw_body)
    if not isinstance(payload, dict):
        logger.error("Invalid IPN JSON payload")
        return _error("Invalid JSON"), 400

    logger.info(
        "Processing IPN: invoice=%s sepay_order_id=%s status=%s amount=%s",
        payload.get("order_invoice_number"), payload.get("sepay_order_id"),
        payload.get("status"), payload.get("amount"),
    )

    for field in IPN_REQUIRED_FIELDS:
        if payload.get(field) in (None, ""):
            logger.error("IPN missing required field: %s", field)
            return _error(f"Missing required field: {field}"), 400
    signature = header_signature or payload.get("signature")
    if not signature:
        logger.error("IPN missing required field: signature")
        return _error("Missing required field: signature"), 400

    try:
        if not sepay.validate_ipn_signature(payload, signature):
            return _error("Invalid signature"), 401
    except SepayConfigurationError:
        logger.exception("IPN signature secret missing in production")
        return _error("Internal server error"), 500

    amount = _to_amount(payload["amount"])
    if amount is None:
        return _error("Invalid amount"), 400

    order = Order.objects.filter(invoice_number=payload["order_invoice_number"]).first()
    if not order:
        logger.error("IPN order %s not found", payload["order_invoice_number"])
        return _error("Order not found"), 404

    if abs(order.total - amount) > IPN_AMOUNT_TOLERANCE:
        logger.error("Amount mismatch for %s: expected %s, got %s", order.invoice_number, order.total, amount)
        return _error("Amount mismatch"), 400

    reference = sepay.generate_ipn_reference(payload)
    done = _already_processed(reference)
    if done:
        return done

    mapped_status, txn_status = IPN_STATUS_MAP.get(payload["status"], (None, Transaction.STATUS_PENDING))

    try:
        with transaction.atomic():
            order = Order.objects.select_for_update().get(pk=order.pk)
            order_status = _next_ipn_status(order.status, mapped_status)
            if order_status != order.status:
                order.status = order_status
                order.payment_method = payload["payment_method"]
                order.save(update_fields=["status", "payment_method", "updated_at"])
            elif mapped_status and mapped_status != order.status:
                logger.warning("IPN %s ignored for order %s in status %s",
                               payload["status"], order.id, order.status)
            txn = Transaction.objects.create(
                order=order,
                amount=int(round(amount)),
                status=txn_status,
                provider=Transaction.PROVIDER_SEPAY,
                sepay_order_id=str(payload["sepay_order_id"]),
                payment_method=payload["payment_method"],
                gateway_data=payload,
                reference=reference,
            )
    except IntegrityError:
        # concurrent delivery of the same notification
        done = _already_processed(reference)
        if done:
            return done
        raise

    logger.info("IPN processed: order %s -> %s (transaction %s)", order.id, order_status, txn.id)
    return {
        "success": True,
        "order_id": order.id,
        "invoice_number": order.invoice_number,
        "transaction_id": txn.id,
        "sepay_order_id": txn.sepay_order_id,
        "status": order_status,
    }, 200


@csrf_exempt
@api_view(["GET", "POST"])
@permission_classes([AllowAny])
def sepay_ipn(request: HttpRequest):
    """
    POST /api/payment/ipn
    GET  -> liveness probe for the gateway dashboard.
    """
    if request.method == "GET":
        return JsonResponse({
            "message": "SePay IPN endpoint is active",
            "supported_statuses": list(IPN_STATUS_MAP),
        })

    try:
        body, code = process_ipn(
            request.body,
            get_client_ip(request),
            request.headers.get("x-sepay-signature") or request.headers.get("signature"),
        )
    except Exception:
        logger.exception("IPN processing error")
        body, code = _error("Internal server error"), 500
    return JsonResponse(body, status=code)


# ======================================================================
# Bank-transfer webhook
# ======================================================================
def process_bank_webhook(raw_body: bytes, client_ip: str, signature: Optional[str],
                         test_webhook: bool = False) -> Result:
    if not (test_webhook and settings.DEBUG) and not sepay.is_allowed_ip(client_ip):
        logger.warning("Unauthorized webhook IP: %s", client_ip)
        return _error("Unauthorized"), 401

    if signature and not sepay.validate_webhook_signature(raw_body, signature):
        logger.error("Invalid webhook signature")
        return _error("Invalid signature"), 401

    payload = _parse_json(raw_body)
    if payload is None:
        return _error("Invalid JSON"), 400
    if not sepay.validate_webhook_payload(payload):
        logger.error("Invalid webhook payload structure")
        return _error("Invalid payload structure"), 400

    logger.info("Processing webhook %s amount=%s description=%s",
                payload["id"], payload["amount"], payload["description"])

    order_id = sepay.extract_order_id_from_description(payload["description"])
    if not order_id or not order_id.isdigit():
        logger.error("Could not extract order id from %r", payload["description"])
        return _error("Invalid order description"), 400

    reference = sepay.generate_transaction_reference(payload)
    done = _already_processed(reference)
    if done:
        return done

    order = Order.objects.filter(pk=int(order_id)).first()
    if not order:
        logger.error("Webhook order %s not found", order_id)
        return _error("Order not found"), 404
    if not order.can_be_paid:
        logger.warning("Order %s is not pending (current status: %s)", order.id, order.status)
        return _error("Order cannot be paid"), 400

    amount = payload["amount"]
    if abs(order.total - amount) > WEBHOOK_AMOUNT_TOLERANCE:
        logger.error("Amount mismatch for order %s: expected %s, got %s", order.id, order.total, amount)
        return _error("Amount mismatch"), 400

    try:
        with transaction.atomic():
            updated = Order.objects.filter(pk=order.pk, status=Order.STATUS_PENDING).update(
                status=Order.STATUS_PAID, updated_at=timezone.now()
            )
            if not updated:
                return _error("Order cannot be paid"), 400
            txn = Transaction.objects.create(
                order=order,
                amount=int(round(amount)),
                status=Transaction.STATUS_SUCCESS,
                provider=Transaction.PROVIDER_SEPAY,
                sepay_order_id=str(payload["id"]),
                payment_method="BANK_TRANSFER",
                gateway_data=payload,
                reference=reference,
            )
    except IntegrityError:
        done = _already_processed(reference)
        if done:
            return done
        raise

    logger.info("Payment processed for order %s (transaction %s, %s)", order.id, txn.id, sepay.format_amount(amount))
    return {
        "success": True,
        "message": "Payment processed successfully",
        "order_id": order.id,
        "transaction_id": txn.id,
    }, 200


@csrf_exempt
@api_view(["GET", "POST"])
@permission_classes([AllowAny])
def sepay_webhook(request: HttpRequest):
    """
    POST /api/webhooks/sepay
    GET  -> liveness probe.
    """
    if request.method == "GET":
        return JsonResponse({"message": "SePay webhook endpoint is active", "timestamp": timezone.now().isoformat()})

    try:
        body, code = process_bank_webhook(
            request.body,
            get_client_ip(request),
            request.headers.get("x-sepay-signature") or request.headers.get("signature"),
            test_webhook=request.headers.get("x-test-webhook") == "true",
        )
    except Exception:
        logger.exception("Webhook processing error")
        body, code = _error("Internal server error"), 500
    return JsonResponse(body, status=code)


# ======================================================================
# Test hook (DEBUG only)
# ======================================================================
@csrf_exempt
@api_view(["GET", "POST"])
@permission_classes([AllowAny])
def test_sepay_webhook(request: HttpRequest):
    """
    POST /api/test/sepay-webhook
    Body: { "order_id": 1, "amount": 150000 }
    Runs a fake bank payload through the real webhook handler.
    """
    if not settings.DEBUG:
        raise Http404

    if request.method == "GET":
        return JsonResponse({
            "message": "SePay test webhook helper",
            "usage": {"method": "POST", "body": {"order_id": "<order id>", "amount": "<amount in VND>"}},
        })

    data = request.data or {}
    order_id = data.get("order_id")
    amount = _to_amount(data.get("amount"))
    if not order_id or not amount:
        return JsonResponse(_error("order_id and amount are required"), status=400)
    if isinstance(order_id, bool) or not str(order_id).isdigit():
        return JsonResponse(_error("order_id must be an integer"), status=400)
    order_id = int(order_id)
    if not Order.objects.filter(pk=order_id).exists():
        return JsonResponse(_error("Order not found"), status=404)

    stamp = int(time.time() * 1000)
    payload = {
        "id": f"test_txn_{stamp}",
        "gateway": "SEPAY",
        "transactionDate": timezone.now().isoformat(),
        "accountNumber": settings.SEPAY_ACCOUNT_NUMBER or "1234567890",
        "amount": amount,
        "content": f"{sepay.ORDER_DESCRIPTION_PREFIX} {order_id}",
        "referenceCode": f"TEST_REF_{stamp}",
        "description": f"{sepay.ORDER_DESCRIPTION_PREFIX} {order_id}",
        "test": True,
    }
    body, code = process_bank_webhook(
        json.dumps(payload).encode("utf-8"), get_client_ip(request), None, test_webhook=True
    )
    return JsonResponse({
        "success": True,
        "message": "Test webhook sent",
        "payload": payload,
        "webhook_status": code,
        "webhook_response": body,
    })
