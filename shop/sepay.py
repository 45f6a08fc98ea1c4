# shop/sepay.py: SePay payment gateway helpers: checkout signing, QR, webhook/IPN validation
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import random
import re
import string
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode, urlparse

from django.conf import settings

from .formatting import format_vnd

logger = logging.getLogger(__name__)

CHECKOUT_URLS = {
    "sandbox": "https://pay-sandbox.sepay.vn/v1/checkout/init",
    "production": "https://pay.sepay.vn/v1/checkout/init",
}
QR_URLS = {
    "compact": "https://qr.sepay.vn/img",
    "default": "https://qr.sepay.vn",
}

PAYMENT_METHODS = ("BANK_TRANSFER", "CARD", "NAPAS_BANK_TRANSFER")
REQUIRED_ENV_VARS = ("SEPAY_ENV", "SEPAY_MERCHANT_ID", "SEPAY_SECRET_KEY")

# order matters: the gateway signs "field=value" pairs joined by commas in this order
SIGNED_FIELDS = (
    "merchant",
    "operation",
    "payment_method",
    "order_amount",
    "currency",
    "order_invoice_number",
    "order_description",
    "customer_id",
    "success_url",
    "error_url",
    "cancel_url",
)

ORDER_DESCRIPTION_PREFIX = "AI4CHILL"
_ORDER_ID_RE = re.compile(r"AI4CHILL\s+(.+)", re.IGNORECASE)
_BASE36 = string.digits + string.ascii_uppercase


class SepayConfigurationError(RuntimeError):
    pass


class CheckoutError(ValueError):
    pass


# ======================================================================
# Configuration
# ======================================================================
def validate_environment() -> None:
    missing = [name for name in REQUIRED_ENV_VARS if not getattr(settings, name, "")]
    if missing:
        raise SepayConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}. "
            "Please check your .env configuration."
        )
    if settings.SEPAY_ENV not in CHECKOUT_URLS:
        raise SepayConfigurationError("SEPAY_ENV must be 'sandbox' or 'production'")


def is_configured() -> bool:
    try:
        validate_environment()
    except SepayConfigurationError:
        return False
    return True


def checkout_url() -> str:
    validate_environment()
    return CHECKOUT_URLS[settings.SEPAY_ENV]


# ======================================================================
# Checkout
# ======================================================================
def generate_invoice_number(prefix: str = "INV", separator: str = "-") -> str:
    """INV-<epoch ms>-<6 upper-case base36 chars>"""
    stamp = int(time.time() * 1000)
    suffix = "".join(random.choices(_BASE36, k=6))
    return f"{prefix}{separator}{stamp}{separator}{suffix}"


def sign_fields(fields: Dict[str, Any], secret_key: str) -> str:
    signed = ",".join(
        f"{name}={fields[name]}" for name in SIGNED_FIELDS if fields.get(name) not in (None, "")
    )
    digest = hmac.new(secret_key.encode("utf-8"), signed.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def _is_absolute_url(value: str) -> bool:
    parsed = urlparse(value or "")
    return bool(parsed.scheme in ("http", "https") and parsed.netloc)


def create_checkout_fields(params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Builds the signed form posted to the SePay checkout page.

    params: payment_method, order_invoice_number, order_amount, currency,
            order_description, success_url, error_url, cancel_url,
            buyer_name?, buyer_email?, buyer_phone?
    """
    try:
        validate_environment()

        amount = params.get("order_amount") or 0
        if amount <= 0:
            raise CheckoutError("Order amount must be greater than 0")

        for name in ("payment_method", "order_invoice_number", "order_amount", "currency",
                     "order_description", "success_url", "error_url", "cancel_url"):
            if not params.get(name):
                raise CheckoutError(f"Missing required parameter: {name}")

        for name in ("success_url", "error_url", "cancel_url"):
            if not _is_absolute_url(params[name]):
                raise CheckoutError(f"{name} must be a valid absolute URL")

        if params["currency"] != "VND":
            raise CheckoutError("Only VND currency is supported")
        if params["payment_method"] not in PAYMENT_METHODS:
            raise CheckoutError(f"Unsupported payment method: {params['payment_method']}")
    except (CheckoutError, SepayConfigurationError) as e:
        raise CheckoutError(f"Failed to create checkout fields: {e}") from e

    fields: Dict[str, Any] = {
        "merchant": settings.SEPAY_MERCHANT_ID,
        "operation": "PURCHASE",
        "order_invoice_number": params["order_invoice_number"],
        "order_amount": int(round(amount)),
        "currency": params["currency"],
        "order_description": params["order_description"],
        "success_url": params["success_url"],
        "error_url": params["error_url"],
        "cancel_url": params["cancel_url"],
        "custom_data": json.dumps({
            "buyer_name": params.get("buyer_name"),
            "buyer_email": params.get("buyer_email"),
            "buyer_phone": params.get("buyer_phone"),
        }),
    }
    # CARD is the gateway default: no payment_method field at all
    if params["payment_method"] != "CARD":
        fields["payment_method"] = params["payment_method"]
    if params.get("buyer_email"):
        fields["customer_id"] = params["buyer_email"]

    fields["signature"] = sign_fields(fields, settings.SEPAY_SECRET_KEY)
    return fields


def generate_qr_url(order_id, amount, *, account_number: Optional[str] = None,
                    account_name: Optional[str] = None, bank_code: Optional[str] = None,
                    description: Optional[str] = None, template: str = "compact") -> str:
    account_number = account_number or settings.SEPAY_ACCOUNT_NUMBER
    account_name = account_name or settings.SEPAY_ACCOUNT_NAME
    bank_code = bank_code or settings.SEPAY_BANK_CODE or "MB"
    description = description or f"{ORDER_DESCRIPTION_PREFIX} {order_id}"

    if not account_number:
        raise SepayConfigurationError("SEPAY_ACCOUNT_NUMBER environment variable is required")
    if amount <= 0:
        raise ValueError("Amount must be greater than 0")

    query = {"acc": account_number, "amount": str(int(round(amount))), "des": description}
    if account_name:
        query["name"] = account_name
    if bank_code:
        query["bank"] = bank_code

    base = QR_URLS["compact"] if template == "compact" else QR_URLS["default"]
    return f"{base}?{urlencode(query)}"


# ======================================================================
# Notifications
# ======================================================================
def canonical_json(payload: Dict[str, Any]) -> str:
    """Compact JSON in the payload's own key order, as the gateway serializes it."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def _hex_hmac(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def validate_ipn_signature(payload: Dict[str, Any], signature: Optional[str]) -> bool:
    """
    HMAC-SHA256 (hex) of the compact JSON payload (minus its own `signature` key),
    compared in constant time.
    Without a configured secret: error in production, accepted (with a warning) elsewhere.
    """
    if not signature:
        logger.error("IPN signature is required but not provided")
        return False

    secret = getattr(settings, "SEPAY_WEBHOOK_SECRET", "")
    if not secret:
        if getattr(settings, "SEPAY_PRODUCTION", False):
            raise SepayConfigurationError(
                "SEPAY_WEBHOOK_SECRET must be configured in production. "
                "This is a critical security requirement to prevent payment fraud."
            )
        logger.warning(
            "SEPAY_WEBHOOK_SECRET not configured - skipping signature validation "
            "in development mode only"
        )
        return True

    signed = {k: v for k, v in payload.items() if k != "signature"}
    expected = _hex_hmac(secret, canonical_json(signed).encode("utf-8"))
    valid = hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))
    if not valid:
        logger.error("IPN signature validation failed")
    return valid


def validate_webhook_signature(raw_body: bytes, signature: Optional[str]) -> bool:
    if not signature:
        logger.warning("No webhook signature provided - relying on IP whitelist")
        return True
    secret = getattr(settings, "SEPAY_WEBHOOK_SECRET", "")
    if not secret:
        logger.warning("SEPAY_WEBHOOK_SECRET not configured - skipping signature validation")
        return True
    expected = _hex_hmac(secret, raw_body)
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_webhook_payload(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    text_fields = ("id", "gateway", "transactionDate", "accountNumber", "content",
                   "referenceCode", "description")
    return all(isinstance(payload.get(f), str) for f in text_fields) and _is_number(payload.get("amount"))


def extract_order_id_from_description(description: str) -> Optional[str]:
    """'AI4CHILL 42' -> '42'"""
    match = _ORDER_ID_RE.search(description or "")
    if not match:
        return None
    return match.group(1).strip() or None


def generate_transaction_reference(payload: Dict[str, Any]) -> str:
    return f"{payload['gateway']}-{payload['id']}-{payload['transactionDate']}"


def generate_ipn_reference(payload: Dict[str, Any]) -> str:
    return f"IPN-{payload['sepay_order_id']}-{payload['transaction_time']}"


def is_allowed_ip(ip: str) -> bool:
    """Exact-match whitelist for the bank webhook; an empty list allows every IP."""
    allowed = list(getattr(settings, "SEPAY_ALLOWED_IPS", []) or [])
    if not allowed:
        logger.warning("No SEPAY_ALLOWED_IPS configured - allowing all IPs")
        return True
    return ip in allowed


def format_amount(amount) -> str:
    return format_vnd(amount)
