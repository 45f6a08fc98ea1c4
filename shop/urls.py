# shop/urls.py: mounted under /api/
from django.urls import include, path, re_path
from rest_framework.routers import DefaultRouter

from . import auth_views, cart, checkout, payments, views

router = DefaultRouter()
router.register(r"products", views.ProductViewSet, basename="product")

admin_router = DefaultRouter()
admin_router.register(r"products", views.AdminProductViewSet, basename="admin-product")
admin_router.register(r"variants", views.AdminVariantViewSet, basename="admin-variant")
admin_router.register(r"orders", views.AdminOrderViewSet, basename="admin-order")

# gateway and storefront clients call these with or without the trailing slash
urlpatterns = [
    # Auth
    re_path(r"^auth/register/?$", auth_views.register, name="auth-register"),
    re_path(r"^auth/login/?$", auth_views.login_view, name="auth-login"),
    re_path(r"^auth/logout/?$", auth_views.logout_view, name="auth-logout"),
    re_path(r"^auth/session/?$", auth_views.session_view, name="auth-session"),

    # Cart (session)
    path("cart/", cart.cart_detail, name="cart-detail"),
    path("cart/add/", cart.cart_add, name="cart-add"),
    path("cart/update/", cart.cart_update, name="cart-update"),
    path("cart/remove/", cart.cart_remove, name="cart-remove"),
    path("cart/clear/", cart.cart_clear, name="cart-clear"),

    # Orders / checkout
    re_path(r"^orders/create/?$", checkout.create_order_view, name="order-create"),
    re_path(r"^orders/(?P<order_id>\d+)/?$", views.order_detail, name="order-detail"),
    re_path(r"^orders/(?P<order_id>\d+)/status/?$", views.order_status, name="order-status"),
    path("dashboard/orders/", views.dashboard_orders, name="dashboard-orders"),
    re_path(r"^payment/initiate/?$", checkout.initiate_payment_view, name="payment-initiate"),

    # SePay
    re_path(r"^payment/ipn/?$", payments.sepay_ipn, name="sepay-ipn"),
    re_path(r"^webhooks/sepay/?$", payments.sepay_webhook, name="sepay-webhook"),
    re_path(r"^test/sepay-webhook/?$", payments.test_sepay_webhook, name="sepay-test-webhook"),

    # Admin
    re_path(r"^admin/stock/check/?$", views.stock_check, name="admin-stock-check"),
    path("admin/inventory/", views.inventory_list, name="admin-inventory"),
    path("admin/inventory/summary/", views.inventory_summary, name="admin-inventory-summary"),
    re_path(r"^admin/inventory/(?P<variant_id>\d+)/accounts/?$", views.variant_accounts,
            name="admin-variant-accounts"),
    path("admin/", include(admin_router.urls)),

    # Public catalog
    path("", include(router.urls)),
]
