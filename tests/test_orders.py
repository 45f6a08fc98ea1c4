import re

import pytest

from shop.models import Order, Transaction, User, Variant

pytestmark = pytest.mark.django_db

CREATE = "/api/orders/create"


# --------- create_order ---------
def test_create_order_reserves_stock(user_client, user, variant):
    resp = user_client.post(CREATE, {"items": [{"variant_id": variant.id, "quantity": 2}]}, format="json")

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["total_amount"] == 300000
    assert re.fullmatch(r"INV-\d{13}-[0-9A-Z]{6}", body["invoice_number"])

    order = Order.objects.get(pk=body["order_id"])
    assert order.user == user
    assert order.status == Order.STATUS_PENDING
    assert order.payment_method == "BANK_TRANSFER"
    assert [(i.variant_id, i.quantity, i.price) for i in order.items.all()] == [(variant.id, 2, 150000)]

    variant.refresh_from_db()
    assert variant.stock == 8


def test_repeated_variant_lines_are_merged(user_client, variant):
    items = [{"variant_id": variant.id, "quantity": 1}, {"variant_id": variant.id, "quantity": 2}]
    body = user_client.post(CREATE, {"items": items}, format="json").json()
    order = Order.objects.get(pk=body["order_id"])
    assert order.items.get().quantity == 3


def test_insufficient_stock(user_client, variant):
    resp = user_client.post(CREATE, {"items": [{"variant_id": variant.id, "quantity": 11}]}, format="json")
    assert resp.status_code == 400
    assert resp.json()["error"] == "Insufficient stock for 1 Month. Available: 10, Requested: 11"
    assert Order.objects.count() == 0
    variant.refresh_from_db()
    assert variant.stock == 10


def test_unknown_or_sold_out_variant(user_client, variant):
    Variant.objects.filter(pk=variant.pk).update(stock=0)
    for vid in (variant.id, 999999):
        resp = user_client.post(CREATE, {"items": [{"variant_id": vid, "quantity": 1}]}, format="json")
        assert resp.status_code == 400
        assert resp.json()["error"] == "One or more variants not found or out of stock"


@pytest.mark.parametrize(
    "payload",
    [
        {"items": []},
        {"items": [{"variant_id": 1, "quantity": 0}]},
        {"items": [{"variant_id": 1, "quantity": 1}], "payment_method": "CASH"},
    ],
)
def test_create_order_validation(user_client, payload):
    resp = user_client.post(CREATE, payload, format="json")
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Validation error: ")


def test_create_order_requires_login(api_client, variant):
    resp = api_client.post(CREATE, {"items": [{"variant_id": variant.id, "quantity": 1}]}, format="json")
    assert resp.status_code == 403


def test_create_order_from_cart(user_client, variant):
    user_client.post("/api/cart/add/", {"variant_id": variant.id, "quantity": 2}, format="json")

    body = user_client.post(CREATE, {"from_cart": True, "payment_method": "CARD"}, format="json").json()

    assert body["total_amount"] == 300000
    assert Order.objects.get(pk=body["order_id"]).payment_method == "CARD"
    assert user_client.get("/api/cart/").json()["items"] == []


def test_create_order_from_empty_cart(user_client):
    resp = user_client.post(CREATE, {"from_cart": True}, format="json")
    assert resp.status_code == 400
    assert resp.json()["error"] == "Cart is empty"


# --------- reads ---------
def test_order_detail_for_owner_and_admin_only(user_client, admin_client, api_client, make_order):
    order = make_order()
    Transaction.objects.create(order=order, amount=order.total, status="pending", reference="REF-1")

    body = user_client.get(f"/api/orders/{order.id}").json()
    assert body["id"] == order.id
    assert body["items"][0]["variant"]["name"] == "1 Month"
    assert body["transaction"]["reference"] == "REF-1"
    assert body["user"]["email"] == "buyer@example.com"

    assert admin_client.get(f"/api/orders/{order.id}").status_code == 200
    assert api_client.get(f"/api/orders/{order.id}").status_code == 404

    stranger = User.objects.create_user("other@example.com", "password123")
    api_client.force_login(stranger)
    assert api_client.get(f"/api/orders/{order.id}").status_code == 404


def test_order_status_polling(user_client, make_order):
    order = make_order()
    body = user_client.get(f"/api/orders/{order.id}/status").json()
    assert body["status"] == "pending"
    assert body["has_transaction"] is False
    assert body["last_transaction"] is None

    Transaction.objects.create(order=order, amount=order.total, status="success", reference="REF-2")
    body = user_client.get(f"/api/orders/{order.id}/status").json()
    assert body["has_transaction"] is True
    assert body["last_transaction"]["status"] == "success"


def test_dashboard_lists_own_orders(user_client, make_order, admin_user):
    mine = make_order()
    make_order(invoice_number="INV-OTHER", owner=admin_user)

    body = user_client.get("/api/dashboard/orders/").json()
    assert [o["id"] for o in body["orders"]] == [mine.id]


# --------- payment initiation ---------
def test_initiate_payment(user_client, make_order):
    order = make_order()
    resp = user_client.post(
        "/api/payment/initiate",
        {"order_id": order.id, "payment_method": "BANK_TRANSFER", "buyer_info": {"phone": "0900000000"}},
        format="json",
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["checkout_url"] == "https://pay-sandbox.sepay.vn/v1/checkout/init"
    fields = body["form_fields"]
    assert fields["order_invoice_number"] == order.invoice_number
    assert fields["order_amount"] == order.total
    assert fields["order_description"] == f"Payment for order {order.invoice_number}"
    assert fields["success_url"] == f"https://shop.example.com/payment/success?orderId={order.id}"
    assert fields["customer_id"] == "buyer@example.com"
    assert fields["signature"]
    assert "AI4CHILL" in body["qr_url"]


@pytest.mark.parametrize(
    "status, invoice, message",
    [
        (Order.STATUS_PAID, "INV-X", "Order is not awaiting payment"),
        (Order.STATUS_PENDING, None, "Order has no invoice number"),
    ],
)
def test_initiate_payment_refused(user_client, make_order, status, invoice, message):
    order = make_order(status=status, invoice_number=invoice)
    resp = user_client.post("/api/payment/initiate", {"order_id": order.id, "payment_method": "CARD"}, format="json")
    assert resp.status_code == 400
    assert resp.json()["error"] == message


def test_initiate_payment_unknown_order(user_client):
    resp = user_client.post("/api/payment/initiate", {"order_id": 424242, "payment_method": "CARD"}, format="json")
    assert resp.json() == {"success": False, "error": "Order not found"}


def test_initiate_payment_only_for_owner_or_admin(api_client, admin_client, make_order):
    order = make_order()
    payload = {"order_id": order.id, "payment_method": "CARD"}

    assert api_client.post("/api/payment/initiate", payload, format="json").status_code == 403

    stranger = User.objects.create_user("other@example.com", "password123")
    api_client.force_login(stranger)
    resp = api_client.post("/api/payment/initiate", payload, format="json")
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Order not found"}

    resp = admin_client.post("/api/payment/initiate", payload, format="json")
    assert resp.status_code == 200
    assert resp.json()["form_fields"]["customer_id"] == "buyer@example.com"


# --------- admin ---------
def test_admin_order_list_filters_and_pages(admin_client, make_order):
    for i in range(3):
        make_order(invoice_number=f"INV-{i}")
    make_order(status=Order.STATUS_PAID, invoice_number="INV-PAID")

    body = admin_client.get("/api/admin/orders/", {"limit": 2, "page": 2}).json()
    assert body["total_count"] == 4
    assert body["total_pages"] == 2
    assert body["current_page"] == 2
    assert body["has_next_page"] is False
    assert body["has_previous_page"] is True
    assert len(body["orders"]) == 2

    body = admin_client.get("/api/admin/orders/", {"status": "paid"}).json()
    assert [o["invoice_number"] for o in body["orders"]] == ["INV-PAID"]

    body = admin_client.get("/api/admin/orders/", {"search": "BUYER@"}).json()
    assert body["total_count"] == 4

    assert admin_client.get("/api/admin/orders/", {"limit": 500}).status_code == 400


def test_admin_status_update(admin_client, make_order):
    order = make_order()
    url = f"/api/admin/orders/{order.id}/status/"

    resp = admin_client.patch(url, {"status": "processing"}, format="json")
    assert resp.status_code == 200
    assert resp.json()["order"]["status"] == "processing"

    assert admin_client.patch(url, {"status": "bogus"}, format="json").status_code == 400

    Order.objects.filter(pk=order.pk).update(status=Order.STATUS_DELIVERED)
    resp = admin_client.patch(url, {"status": "pending"}, format="json")
    assert resp.status_code == 400
    assert resp.json()["error"] == "Cannot update status of delivered or cancelled orders"


def test_admin_stats(admin_client, make_order):
    make_order(invoice_number="A")
    make_order(status=Order.STATUS_PROCESSING, invoice_number="B")
    make_order(status=Order.STATUS_DELIVERED, quantity=2, invoice_number="C")
    make_order(status=Order.STATUS_CANCELLED, invoice_number="D")

    body = admin_client.get("/api/admin/orders/stats/").json()
    assert body["total_orders"] == 4
    assert body["pending_orders"] == 1
    assert body["cancelled_orders"] == 1
    assert body["total_revenue"] == 150000 + 300000
