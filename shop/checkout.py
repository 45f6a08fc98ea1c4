# shop/checkout.py: order creation (stock reserved atomically) and SePay payment initiation
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.http import HttpRequest

from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ParseError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework import status

from . import sepay
from .cart import cart_items, clear_cart
from .models import Order, OrderItem, Variant
from .sepay import CheckoutError, SepayConfigurationError
from .serializers import CreateOrderSerializer, InitiatePaymentSerializer, flatten_errors

logger = logging.getLogger(__name__)


# ======================================================================
# Services
# ======================================================================
@transaction.atomic
def create_order(user, items: List[Dict[str, Any]], payment_method: str = "BANK_TRANSFER") -> Order:
    """
    Creates a pending order and decrements variant stock in one transaction.
    Repeated variants are merged. Raises CheckoutError with a user-facing message.
    """
    wanted: "OrderedDict[int, int]" = OrderedDict()
    for it in items:
        vid = int(it["variant_id"])
        wanted[vid] = wanted.get(vid, 0) + int(it["quantity"])

    variants = {
        v.id: v
        for v in Variant.objects.select_for_update().filter(pk__in=list(wanted), stock__gt=0)
    }
    if len(variants) != len(wanted):
        raise CheckoutError("One or more variants not found or out of stock")

    for vid, qty in wanted.items():
        v = variants[vid]
        if qty > v.stock:
            raise CheckoutError(f"Insufficient stock for {v.name}. Available: {v.stock}, Requested: {qty}")

    total = sum(variants[vid].price * qty for vid, qty in wanted.items())
    order = Order.objects.create(
        user=user,
        invoice_number=sepay.generate_invoice_number(),
        total=total,
        status=Order.STATUS_PENDING,
        payment_method=payment_method,
    )
    OrderItem.objects.bulk_create([
        OrderItem(order=order, product_id=variants[vid].product_id, variant=variants[vid],
                  quantity=qty, price=variants[vid].price)
        for vid, qty in wanted.items()
    ])
    for vid, qty in wanted.items():
        Variant.objects.filter(pk=vid).update(stock=F("stock") - qty)

    logger.info("Order %s created (%s) total=%s", order.id, order.invoice_number, total)
    return order


def _return_url(kind: str, order: Order) -> str:
    return f"{settings.SITE_BASE_URL}/payment/{kind}?orderId={order.id}"


def initiate_payment(order_id, payment_method: str, buyer_info: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    buyer_info = buyer_info or {}
    order = Order.objects.select_related("user").filter(pk=order_id).first()
    if not order:
        raise CheckoutError("Order not found")
    if order.status != Order.STATUS_PENDING:
        raise CheckoutError("Order is not awaiting payment")
    if not order.invoice_number:
        raise CheckoutError("Order has no invoice number")

    params = {
        "payment_method": payment_method,
        "order_invoice_number": order.invoice_number,
        "order_amount": order.total,
        "currency": "VND",
        "order_description": f"Payment for order {order.invoice_number}",
        "success_url": _return_url("success", order),
        "error_url": _return_url("error", order),
        "cancel_url": _return_url("cancel", order),
        "buyer_name": buyer_info.get("name") or order.user.name or None,
        "buyer_email": buyer_info.get("email") or order.user.email,
        "buyer_phone": buyer_info.get("phone") or None,
    }
    form_fields = sepay.create_checkout_fields(params)

    result = {
        "success": True,
        "order_id": order.id,
        "checkout_url": sepay.checkout_url(),
        "form_fields": form_fields,
    }
    if settings.SEPAY_ACCOUNT_NUMBER:
        result["qr_url"] = sepay.generate_qr_url(order.id, order.total)
    return result


# ======================================================================
# Endpoints
# ======================================================================
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def create_order_view(request: HttpRequest):
    """
    POST /api/orders/create
    Body: { "items": [{variant_id, quantity}], "payment_method": "BANK_TRANSFER" }
       or { "from_cart": true, "payment_method": ... }
    """
    try:
        data = request.data
    except ParseError:
        return Response({"success": False, "error": "Invalid JSON"}, status=400)

    ser = CreateOrderSerializer(data=data)
    if not ser.is_valid():
        return Response({"success": False, "error": f"Validation error: {flatten_errors(ser.errors)}"}, status=400)

    items = ser.validated_data.get("items") or []
    from_cart = ser.validated_data["from_cart"]
    if from_cart:
        items = cart_items(request)
        if not items:
            return Response({"success": False, "error": "Cart is empty"}, status=400)

    try:
        order = create_order(request.user, items, ser.validated_data["payment_method"])
    except CheckoutError as e:
        return Response({"success": False, "error": str(e)}, status=400)
    except Exception:
        logger.exception("Error creating order")
        return Response({"success": False, "error": "Internal server error"}, status=500)

    if from_cart:
        clear_cart(request)

    return Response({
        "success": True,
        "order_id": order.id,
        "invoice_number": order.invoice_number,
        "total_amount": order.total,
    })


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def initiate_payment_view(request: HttpRequest):
    """
    POST /api/payment/initiate
    Body: { "order_id": 1, "payment_method": "BANK_TRANSFER", "buyer_info": {name, email, phone}? }
    """
    try:
        data = request.data
    except ParseError:
        return Response({"success": False, "error": "Invalid JSON"}, status=400)

    ser = InitiatePaymentSerializer(data=data)
    if not ser.is_valid():
        return Response({"success": False, "error": f"Validation error: {flatten_errors(ser.errors)}"}, status=400)

    v = ser.validated_data
    # buyers may only pay their own orders
    if not request.user.is_admin and not Order.objects.filter(pk=v["order_id"], user=request.user).exists():
        return Response({"success": False, "error": "Order not found"}, status=400)

    try:
        result = initiate_payment(v["order_id"], v["payment_method"], v.get("buyer_info"))
    except (CheckoutError, SepayConfigurationError) as e:
        logger.warning("Payment initiation refused for order %s: %s", v["order_id"], e)
        return Response({"success": False, "error": str(e)}, status=400)
    except Exception:
        logger.exception("Error initiating payment for order %s", v["order_id"])
        return Response({"success": False, "error": "Internal server error"}, status=500)

    return Response(result)
