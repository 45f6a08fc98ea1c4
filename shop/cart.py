# shop/cart.py: session cart keyed by (product_id, variant_id) with a price snapshot per line
from __future__ import annotations

from typing import Any, Dict, List, Tuple

from django.http import HttpRequest, JsonResponse

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny

from .formatting import format_vnd
from .models import Variant

SESSION_KEY = "cart"


# ======================================================================
# Session helpers
# ======================================================================
def _ensure_cart(request: HttpRequest) -> Dict[str, Any]:
    if SESSION_KEY not in request.session or not isinstance(request.session.get(SESSION_KEY), dict):
        request.session[SESSION_KEY] = {"items": []}
    return request.session[SESSION_KEY]


def _save(request: HttpRequest, items: List[Dict[str, Any]]) -> None:
    request.session[SESSION_KEY] = {"items": items}
    request.session.modified = True


def _line_key(it: Dict[str, Any]) -> Tuple[int, int]:
    return int(it["product_id"]), int(it["variant_id"])


def _normalize_items(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drops malformed lines and lines whose variant no longer exists; refreshes title/stock."""
    wanted = []
    for it in items or []:
        try:
            vid = int(it.get("variant_id"))
            qty = int(it.get("quantity") or 0)
        except (TypeError, ValueError):
            continue
        if qty > 0:
            wanted.append((vid, qty, it))

    variants = {
        v.id: v
        for v in Variant.objects.select_related("product").filter(id__in=[vid for vid, _, _ in wanted])
    }
    out: List[Dict[str, Any]] = []
    for vid, qty, it in wanted:
        v = variants.get(vid)
        if not v:
            continue
        out.append({
            "product_id": v.product_id,
            "variant_id": v.id,
            "quantity": qty,
            # price stays as it was when the line was added
            "price": int(it.get("price") or v.price),
            "title": v.product.name,
            "variant_name": v.name,
            "duration": v.duration,
            "image": v.product.image,
            "stock": v.stock,
        })
    return out


def _totals(items: List[Dict[str, Any]]) -> Tuple[int, int]:
    item_count = sum(int(it["quantity"]) for it in items)
    total = sum(int(it["price"]) * int(it["quantity"]) for it in items)
    return item_count, total


def cart_payload(items: List[Dict[str, Any]]) -> Dict[str, Any]:
    item_count, total = _totals(items)
    lines = [{**it, "line_total": int(it["price"]) * int(it["quantity"])} for it in items]
    return {"items": lines, "item_count": item_count, "total": total, "total_formatted": format_vnd(total)}


def cart_items(request: HttpRequest) -> List[Dict[str, Any]]:
    """Current lines as [{variant_id, quantity}, ...] for order creation."""
    items = _normalize_items(_ensure_cart(request).get("items", []))
    return [{"variant_id": it["variant_id"], "quantity": it["quantity"]} for it in items]


def clear_cart(request: HttpRequest) -> None:
    _save(request, [])


def _parse_line(data) -> Tuple[int, int]:
    return int(data.get("variant_id")), int(data.get("quantity", 1))


# ======================================================================
# Endpoints
# ======================================================================
@api_view(["GET"])
@permission_classes([AllowAny])
def cart_detail(request: HttpRequest):
    items = _normalize_items(_ensure_cart(request).get("items", []))
    _save(request, items)
    return JsonResponse(cart_payload(items))


@api_view(["POST"])
@permission_classes([AllowAny])
def cart_add(request: HttpRequest):
    data = request.data or {}
    try:
        vid, qty = _parse_line(data)
    except (TypeError, ValueError):
        return JsonResponse({"success": False, "error": "Invalid parameters"}, status=400)
    if qty < 1:
        return JsonResponse({"success": False, "error": "Quantity must be at least 1"}, status=400)

    v = Variant.objects.select_related("product").filter(pk=vid).first()
    if not v:
        return JsonResponse({"success": False, "error": "Variant not found"}, status=404)

    items = _normalize_items(_ensure_cart(request).get("items", []))
    key = (v.product_id, v.id)
    for it in items:
        if _line_key(it) == key:
            it["quantity"] = int(it["quantity"]) + qty
            break
    else:
        items.append({"product_id": v.product_id, "variant_id": v.id, "quantity": qty, "price": v.price})

    items = _normalize_items(items)
    _save(request, items)
    return JsonResponse(cart_payload(items))


@api_view(["POST"])
@permission_classes([AllowAny])
def cart_update(request: HttpRequest):
    data = request.data or {}
    try:
        vid = int(data.get("variant_id"))
        qty = int(data.get("quantity") or 0)
    except (TypeError, ValueError):
        return JsonResponse({"success": False, "error": "Invalid parameters"}, status=400)

    items = _normalize_items(_ensure_cart(request).get("items", []))
    updated: List[Dict[str, Any]] = []
    for it in items:
        if int(it["variant_id"]) == vid:
            if qty > 0:
                it["quantity"] = qty
                updated.append(it)
            # qty <= 0 => remove
        else:
            updated.append(it)

    _save(request, updated)
    return JsonResponse(cart_payload(updated))


@api_view(["POST"])
@permission_classes([AllowAny])
def cart_remove(request: HttpRequest):
    data = request.data or {}
    try:
        vid = int(data.get("variant_id"))
    except (TypeError, ValueError):
        return JsonResponse({"success": False, "error": "Invalid parameters"}, status=400)

    items = [it for it in _normalize_items(_ensure_cart(request).get("items", [])) if int(it["variant_id"]) != vid]
    _save(request, items)
    return JsonResponse(cart_payload(items))


@api_view(["POST"])
@permission_classes([AllowAny])
def cart_clear(request: HttpRequest):
    clear_cart(request)
    return JsonResponse(cart_payload([]))
