from unittest import mock

import pytest
from django.core import mail

from shop import inventory
from shop.encryption import decrypt_credentials
from shop.inventory import FulfilmentError, InventoryError
from shop.models import Account, Order, Variant

pytestmark = pytest.mark.django_db


# --------- add_accounts ---------
def test_add_accounts_encrypts_and_counts(variant):
    result = inventory.add_accounts(variant.id, "a@ai.example:pw1\nb@ai.example:pw2\na@ai.example:pw1\n")

    assert result == {"success": True, "message": "Successfully added 2 accounts", "added": 2, "duplicates": 1}
    stored = [decrypt_credentials(a.credentials) for a in Account.objects.filter(variant=variant)]
    assert {c["email"] for c in stored} == {"a@ai.example", "b@ai.example"}
    assert all(a.credentials.count(":") == 0 for a in Account.objects.all())

    variant.refresh_from_db()
    assert variant.stock == 12


def test_add_accounts_skips_existing_credentials(variant):
    inventory.add_accounts(variant.id, "a@ai.example:pw1")

    result = inventory.add_accounts(variant.id, "a@ai.example:pw1\nc@ai.example:pw3")
    assert (result["added"], result["duplicates"]) == (1, 1)

    result = inventory.add_accounts(variant.id, "a@ai.example:pw1")
    assert result == {"success": False, "error": "All credentials already exist"}


def test_add_accounts_errors(variant):
    assert inventory.add_accounts(999999, "a@ai.example:pw")["error"] == "Variant not found"
    assert inventory.add_accounts(variant.id, "\n\n")["error"] == "No valid credentials provided"

    result = inventory.add_accounts(variant.id, "bad line\nx@ai.example:")
    assert result["success"] is False
    assert result["error"].startswith("Validation errors:\nLine 1:")
    assert Account.objects.count() == 0


# --------- stock views ---------
def test_stock_and_summary(product, variant, stock_accounts):
    accounts = stock_accounts(3)
    Account.objects.filter(pk=accounts[0].pk).update(is_sold=True)
    empty = Variant.objects.create(product=product, name="Sold out", price=1000, duration="1 Day")
    Account.objects.create(variant=empty, credentials="x", is_sold=True)

    assert inventory.variant_stock(variant.id) == {"total": 3, "sold": 1, "available": 2}

    summary = inventory.inventory_summary()
    assert summary["total_items"] == 4
    assert summary["total_sold"] == 2
    assert summary["total_available"] == 2
    assert [v["id"] for v in summary["low_stock_items"]] == [variant.id]
    assert [v["id"] for v in summary["out_of_stock_items"]] == [empty.id]


def test_check_stock(variant, stock_accounts):
    stock_accounts(2)
    [info] = inventory.check_stock([{"variant_id": variant.id, "quantity": 3}])
    assert info["available"] == 2
    assert info["is_sufficient"] is False
    assert info["product_name"] == "ChatGPT Plus"

    with pytest.raises(InventoryError, match="Variant not found: 999999"):
        inventory.check_stock([{"variant_id": 999999, "quantity": 1}])


# --------- fulfilment ---------
def test_fulfil_paid_order(make_order, stock_accounts):
    stock_accounts(3)
    order = make_order(status=Order.STATUS_PAID, quantity=2)

    result = inventory.fulfil_order(order.id)

    assert result["success"] is True
    assert result["delivered"] == 2
    assert result["email_sent"] is True

    order.refresh_from_db()
    assert order.status == Order.STATUS_DELIVERED
    sold = Account.objects.filter(is_sold=True).order_by("id")
    assert sold.count() == 2
    assert all(a.order_item_id == order.items.get().id and a.sold_at for a in sold)

    assert len(mail.outbox) == 1
    msg = mail.outbox[0]
    assert msg.to == ["buyer@example.com"]
    assert msg.subject == f"[AI4Chill] Order delivered - #{order.id}"
    assert "acc0@ai.example" in msg.body and "acc1@ai.example" in msg.body
    assert "acc2@ai.example" not in msg.body


def test_fulfil_is_all_or_nothing(make_order, stock_accounts):
    stock_accounts(1)
    order = make_order(status=Order.STATUS_PAID, quantity=2)

    with pytest.raises(FulfilmentError, match="Insufficient stock for ChatGPT Plus - 1 Month. Available: 1, Required: 2"):
        inventory.fulfil_order(order.id)

    order.refresh_from_db()
    assert order.status == Order.STATUS_PAID
    assert not Account.objects.filter(is_sold=True).exists()
    assert mail.outbox == []


def test_fulfil_requires_paid_order(make_order):
    order = make_order()
    with pytest.raises(FulfilmentError, match=r"current status: pending"):
        inventory.fulfil_order(order.id)
    with pytest.raises(FulfilmentError, match="Order not found"):
        inventory.fulfil_order(424242)


def test_mail_failure_keeps_fulfilment(make_order, stock_accounts):
    stock_accounts(1)
    order = make_order(status=Order.STATUS_PAID)

    with mock.patch("shop.emails.EmailMultiAlternatives.send", side_effect=OSError("smtp down")):
        result = inventory.fulfil_order(order.id)

    assert result["email_sent"] is False
    assert "could not be sent" in result["message"]
    order.refresh_from_db()
    assert order.status == Order.STATUS_DELIVERED


# --------- admin endpoints ---------
def test_admin_inventory_endpoints(admin_client, variant):
    url = f"/api/admin/inventory/{variant.id}/accounts"
    resp = admin_client.post(url, {"accounts": "a@ai.example:pw1\nb@ai.example:pw2"}, format="json")
    assert resp.status_code == 201
    assert resp.json()["added"] == 2

    assert admin_client.get(url).json()["stock"] == {"total": 2, "sold": 0, "available": 2}
    assert admin_client.post("/api/admin/inventory/999999/accounts", {"accounts": "a@ai.example:x"},
                             format="json").status_code == 404

    inv = admin_client.get("/api/admin/inventory/").json()["inventory"]
    assert inv[0]["stock"]["available"] == 2
    assert admin_client.get("/api/admin/inventory/summary/").json()["summary"]["total_items"] == 2


def test_admin_stock_check_and_fulfil(admin_client, make_order, variant, stock_accounts):
    stock_accounts(1)
    resp = admin_client.post("/api/admin/stock/check", {"items": [{"variant_id": variant.id, "quantity": 1}]},
                             format="json")
    assert resp.json()["stock_info"][0]["is_sufficient"] is True

    resp = admin_client.post("/api/admin/stock/check", {"items": [{"variant_id": 999999, "quantity": 1}]},
                             format="json")
    assert resp.status_code == 404

    order = make_order(status=Order.STATUS_PAID)
    resp = admin_client.post(f"/api/admin/orders/{order.id}/fulfil/")
    assert resp.status_code == 200
    assert resp.json()["delivered"] == 1

    resp = admin_client.post(f"/api/admin/orders/{order.id}/fulfil/")
    assert resp.status_code == 400
