import base64
import hashlib
import hmac
import json
import re
from urllib.parse import parse_qs, urlparse

import pytest
from django.test import RequestFactory

from shop import sepay
from shop.ip_validation import get_client_ip, is_ip_allowed, is_ip_in_cidr
from shop.sepay import CheckoutError, SepayConfigurationError


def _params(**overrides):
    params = {
        "payment_method": "BANK_TRANSFER",
        "order_invoice_number": "INV-1-ABC",
        "order_amount": 150000,
        "currency": "VND",
        "order_description": "Payment for order INV-1-ABC",
        "success_url": "https://shop.example.com/payment/success?orderId=1",
        "error_url": "https://shop.example.com/payment/error?orderId=1",
        "cancel_url": "https://shop.example.com/payment/cancel?orderId=1",
        "buyer_name": "Buyer",
        "buyer_email": "buyer@example.com",
    }
    params.update(overrides)
    return params


# --------- checkout ---------
def test_invoice_number_shape():
    assert re.fullmatch(r"INV-\d{13}-[0-9A-Z]{6}", sepay.generate_invoice_number())
    assert sepay.generate_invoice_number("ORD", "_").startswith("ORD_")


def test_checkout_url_follows_environment(settings):
    assert sepay.checkout_url() == "https://pay-sandbox.sepay.vn/v1/checkout/init"
    settings.SEPAY_ENV = "production"
    assert sepay.checkout_url() == "https://pay.sepay.vn/v1/checkout/init"


def test_missing_environment_is_reported(settings):
    settings.SEPAY_MERCHANT_ID = ""
    settings.SEPAY_SECRET_KEY = ""
    with pytest.raises(SepayConfigurationError, match="SEPAY_MERCHANT_ID, SEPAY_SECRET_KEY"):
        sepay.validate_environment()
    assert sepay.is_configured() is False


def test_checkout_fields_are_signed_in_field_order():
    fields = sepay.create_checkout_fields(_params())

    assert fields["merchant"] == "MERCHANT-1"
    assert fields["operation"] == "PURCHASE"
    assert fields["payment_method"] == "BANK_TRANSFER"
    assert fields["customer_id"] == "buyer@example.com"
    assert json.loads(fields["custom_data"])["buyer_name"] == "Buyer"

    signed = ",".join(
        f"{k}={fields[k]}" for k in sepay.SIGNED_FIELDS if fields.get(k) not in (None, "")
    )
    expected = base64.b64encode(
        hmac.new(b"checkout-secret", signed.encode(), hashlib.sha256).digest()
    ).decode()
    assert fields["signature"] == expected
    assert signed.startswith("merchant=MERCHANT-1,operation=PURCHASE,payment_method=BANK_TRANSFER,order_amount=150000")


def test_card_payment_sends_no_payment_method():
    fields = sepay.create_checkout_fields(_params(payment_method="CARD"))
    assert "payment_method" not in fields


def test_amount_is_rounded():
    assert sepay.create_checkout_fields(_params(order_amount=149999.6))["order_amount"] == 150000


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"order_amount": 0}, "Order amount must be greater than 0"),
        ({"order_description": ""}, "Missing required parameter: order_description"),
        ({"success_url": "/payment/success"}, "success_url must be a valid absolute URL"),
        ({"currency": "USD"}, "Only VND currency is supported"),
        ({"payment_method": "CASH"}, "Unsupported payment method: CASH"),
    ],
)
def test_checkout_fields_validation(overrides, message):
    with pytest.raises(CheckoutError) as exc:
        sepay.create_checkout_fields(_params(**overrides))
    assert str(exc.value) == f"Failed to create checkout fields: {message}"


def test_qr_url():
    url = sepay.generate_qr_url(42, 150000.4)
    parsed = urlparse(url)
    query = parse_qs(parsed.query)

    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://qr.sepay.vn/img"
    assert query["acc"] == ["0123456789"]
    assert query["amount"] == ["150000"]
    assert query["des"] == ["AI4CHILL 42"]
    assert query["bank"] == ["MB"]
    assert query["name"] == ["AI4CHILL"]


def test_qr_url_requires_account_and_amount(settings):
    with pytest.raises(ValueError):
        sepay.generate_qr_url(1, 0)
    settings.SEPAY_ACCOUNT_NUMBER = ""
    with pytest.raises(SepayConfigurationError):
        sepay.generate_qr_url(1, 1000)


# --------- notifications ---------
def _ipn_signature(payload, secret):
    body = {k: v for k, v in payload.items() if k != "signature"}
    return hmac.new(secret.encode(), sepay.canonical_json(body).encode(), hashlib.sha256).hexdigest()


def test_ipn_signature(settings):
    settings.SEPAY_WEBHOOK_SECRET = "whsec"
    payload = {"order_invoice_number": "INV-1", "amount": 150000, "status": "ORDER_PAID"}
    good = _ipn_signature(payload, "whsec")

    assert sepay.validate_ipn_signature(payload, good) is True
    assert sepay.validate_ipn_signature({**payload, "signature": good}, good) is True
    assert sepay.validate_ipn_signature(payload, "0" * 64) is False
    assert sepay.validate_ipn_signature(payload, None) is False


def test_canonical_json_keeps_gateway_key_order():
    assert sepay.canonical_json({"status": "ORDER_PAID", "amount": 1, "note": "Đơn"}) == \
        '{"status":"ORDER_PAID","amount":1,"note":"Đơn"}'


def test_ipn_signature_depends_on_key_order(settings):
    settings.SEPAY_WEBHOOK_SECRET = "whsec"
    payload = {"status": "ORDER_PAID", "amount": 150000}
    reordered = {"amount": 150000, "status": "ORDER_PAID"}
    assert sepay.validate_ipn_signature(reordered, _ipn_signature(payload, "whsec")) is False


def test_ipn_signature_without_secret(settings):
    assert sepay.validate_ipn_signature({"a": 1}, "anything") is True
    settings.SEPAY_PRODUCTION = True
    with pytest.raises(SepayConfigurationError):
        sepay.validate_ipn_signature({"a": 1}, "anything")


def test_webhook_signature(settings):
    body = b'{"id":"1"}'
    assert sepay.validate_webhook_signature(body, None) is True
    assert sepay.validate_webhook_signature(body, "whatever") is True  # no secret configured

    settings.SEPAY_WEBHOOK_SECRET = "whsec"
    good = hmac.new(b"whsec", body, hashlib.sha256).hexdigest()
    assert sepay.validate_webhook_signature(body, good) is True
    assert sepay.validate_webhook_signature(body, "bad") is False


def test_webhook_payload_shape():
    payload = {
        "id": "1", "gateway": "MB", "transactionDate": "2024-01-01 10:00:00", "accountNumber": "01",
        "content": "AI4CHILL 5", "referenceCode": "FT1", "description": "AI4CHILL 5", "amount": 1000,
    }
    assert sepay.validate_webhook_payload(payload)
    assert not sepay.validate_webhook_payload({**payload, "amount": "1000"})
    assert not sepay.validate_webhook_payload({**payload, "id": 1})
    assert not sepay.validate_webhook_payload([payload])
    assert sepay.generate_transaction_reference(payload) == "MB-1-2024-01-01 10:00:00"


@pytest.mark.parametrize(
    "description, expected",
    [("AI4CHILL 42", "42"), ("ck ai4chill 7 thanks", "7 thanks"), ("random text", None), ("", None)],
)
def test_extract_order_id(description, expected):
    assert sepay.extract_order_id_from_description(description) == expected


def test_bank_webhook_ip_list(settings):
    assert sepay.is_allowed_ip("9.9.9.9") is True
    settings.SEPAY_ALLOWED_IPS = ["1.2.3.4"]
    assert sepay.is_allowed_ip("1.2.3.4") is True
    assert sepay.is_allowed_ip("1.2.3.5") is False


# --------- IP helpers ---------
def test_cidr_and_single_ip_matching():
    allowed = ["103.255.238.0/24", "10.0.0.7"]
    assert is_ip_in_cidr("103.255.238.9", "103.255.238.0/24")
    assert is_ip_allowed("103.255.238.200", allowed)
    assert is_ip_allowed("10.0.0.7", allowed)
    assert not is_ip_allowed("10.0.0.8", allowed)
    assert not is_ip_allowed("not-an-ip", allowed)
    assert not is_ip_allowed("10.0.0.7", [])


def test_client_ip_header_priority():
    rf = RequestFactory()
    assert get_client_ip(rf.get("/", HTTP_CF_CONNECTING_IP="1.1.1.1", HTTP_X_FORWARDED_FOR="2.2.2.2")) == "1.1.1.1"
    assert get_client_ip(rf.get("/", HTTP_X_FORWARDED_FOR="2.2.2.2, 3.3.3.3")) == "2.2.2.2"
    assert get_client_ip(rf.get("/", HTTP_X_REAL_IP="4.4.4.4")) == "4.4.4.4"
    assert get_client_ip(rf.get("/", REMOTE_ADDR="5.5.5.5")) == "5.5.5.5"
