# shop/inventory.py: credential stock per variant and order fulfilment
from __future__ import annotations

import logging
from typing import Any, Dict, List

from django.core.exceptions import ImproperlyConfigured
from django.db import transaction
from django.db.models import Count, F, Q
from django.utils import timezone

from .emails import send_order_delivered_email
from .encryption import (
    CredentialsFormatError,
    EncryptionError,
    credentials_key,
    decrypt_credentials,
    encrypt_credentials,
    validate_credentials_format,
)
from .models import Account, Order, Variant

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 5


class InventoryError(Exception):
    pass


class FulfilmentError(InventoryError):
    pass


# ======================================================================
# Stock
# ======================================================================
def add_accounts(variant_id, accounts_text: str) -> Dict[str, Any]:
    """
    Bulk-load `email:password` lines for a variant. Credentials already stored
    for the variant, and repeats inside the batch, are counted as duplicates.
    """
    variant = Variant.objects.filter(pk=variant_id).first()
    if not variant:
        return {"success": False, "error": "Variant not found"}

    try:
        credentials = validate_credentials_format(accounts_text)
    except CredentialsFormatError as e:
        return {"success": False, "error": str(e)}

    if not credentials:
        return {"success": False, "error": "No valid credentials provided"}

    try:
        seen = set()
        for encrypted in Account.objects.filter(variant=variant).values_list("credentials", flat=True):
            try:
                seen.add(credentials_key(decrypt_credentials(encrypted)))
            except EncryptionError:
                logger.warning("Skipping unreadable account for variant %s", variant.id)
                continue

        fresh = []
        for cred in credentials:
            key = credentials_key(cred)
            if key in seen:
                continue
            seen.add(key)
            fresh.append(cred)

        if not fresh:
            return {"success": False, "error": "All credentials already exist"}

        rows = [Account(variant=variant, credentials=encrypt_credentials(c), is_sold=False) for c in fresh]
    except (EncryptionError, ImproperlyConfigured) as e:
        logger.error("Error adding accounts: %s", e)
        return {"success": False, "error": str(e)}

    with transaction.atomic():
        Account.objects.bulk_create(rows)
        Variant.objects.filter(pk=variant.pk).update(stock=F("stock") + len(rows))

    logger.info("Added %s accounts to variant %s", len(rows), variant.id)
    return {
        "success": True,
        "message": f"Successfully added {len(rows)} accounts",
        "added": len(rows),
        "duplicates": len(credentials) - len(rows),
    }


def _stock_annotations():
    return {
        "accounts_total": Count("accounts"),
        "accounts_sold": Count("accounts", filter=Q(accounts__is_sold=True)),
    }


def variant_stock(variant_id) -> Dict[str, int]:
    agg = Account.objects.filter(variant_id=variant_id).aggregate(
        total=Count("id"), sold=Count("id", filter=Q(is_sold=True))
    )
    total, sold = agg["total"] or 0, agg["sold"] or 0
    return {"total": total, "sold": sold, "available": total - sold}


def all_inventory() -> List[Dict[str, Any]]:
    variants = (
        Variant.objects.select_related("product")
        .annotate(**_stock_annotations())
        .order_by("product__name", "created_at", "id")
    )
    out = []
    for v in variants:
        out.append({
            "id": v.id,
            "name": v.name,
            "price": v.price,
            "duration": v.duration,
            "product": {"id": v.product_id, "name": v.product.name},
            "stock": {
                "total": v.accounts_total,
                "sold": v.accounts_sold,
                "available": v.accounts_total - v.accounts_sold,
            },
        })
    return out


def inventory_summary() -> Dict[str, Any]:
    inventory = all_inventory()
    total_items = sum(v["stock"]["total"] for v in inventory)
    total_sold = sum(v["stock"]["sold"] for v in inventory)

    low = [v for v in inventory if 0 < v["stock"]["available"] <= LOW_STOCK_THRESHOLD]
    out = [v for v in inventory if v["stock"]["available"] == 0 and v["stock"]["total"] > 0]

    return {
        "total_items": total_items,
        "total_sold": total_sold,
        "total_available": total_items - total_sold,
        "low_stock_count": len(low),
        "out_of_stock_count": len(out),
        "low_stock_items": low,
        "out_of_stock_items": out,
    }


def check_stock(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Per requested line: unsold accounts vs. required quantity."""
    info = []
    for item in items:
        variant = (
            Variant.objects.select_related("product")
            .annotate(available=Count("accounts", filter=Q(accounts__is_sold=False)))
            .filter(pk=item["variant_id"])
            .first()
        )
        if variant is None:
            raise InventoryError(f"Variant not found: {item['variant_id']}")
        required = int(item["quantity"])
        info.append({
            "variant_id": variant.id,
            "variant_name": variant.name,
            "product_name": variant.product.name,
            "required": required,
            "available": variant.available,
            "is_sufficient": variant.available >= required,
        })
    return info


# ======================================================================
# Fulfilment
# ======================================================================
def fulfil_order(order_id) -> Dict[str, Any]:
    """
    Hands out unsold accounts for every line of a paid order, marks them sold,
    moves the order to delivered and mails the credentials to the buyer.
    All-or-nothing: a short line aborts without touching any account.
    """
    delivered: List[Dict[str, str]] = []

    with transaction.atomic():
        order = Order.objects.select_for_update().select_related("user").filter(pk=order_id).first()
        if not order:
            raise FulfilmentError("Order not found")
        if order.status != Order.STATUS_PAID:
            raise FulfilmentError(f"Only paid orders can be fulfilled (current status: {order.status})")

        now = timezone.now()
        for item in order.items.select_related("product", "variant").order_by("id"):
            accounts = list(
                Account.objects.select_for_update()
                .filter(variant=item.variant, is_sold=False)
                .order_by("created_at", "id")[: item.quantity]
            )
            if len(accounts) < item.quantity:
                raise FulfilmentError(
                    f"Insufficient stock for {item.product.name} - {item.variant.name}. "
                    f"Available: {len(accounts)}, Required: {item.quantity}"
                )
            for account in accounts:
                try:
                    cred = decrypt_credentials(account.credentials)
                except EncryptionError as e:
                    raise FulfilmentError(f"Account #{account.pk} could not be decrypted") from e
                delivered.append({
                    "product_name": item.product.name,
                    "variant_name": item.variant.name,
                    "duration": item.variant.duration,
                    "email": cred["email"],
                    "password": cred["password"],
                })
            Account.objects.filter(pk__in=[a.pk for a in accounts]).update(
                is_sold=True, order_item=item, sold_at=now
            )

        order.status = Order.STATUS_DELIVERED
        order.save(update_fields=["status", "updated_at"])

    email_sent = send_order_delivered_email(order, delivered)
    logger.info("Order %s fulfilled with %s account(s)", order.id, len(delivered))

    message = f"Order #{order.id} fulfilled with {len(delivered)} account(s)"
    if not email_sent:
        message += ", but the delivery email could not be sent"
    return {"success": True, "message": message, "delivered": len(delivered), "email_sent": email_sent}
