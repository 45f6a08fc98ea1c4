"""Shared fixtures: settings for the gateway/encryption, users, catalog rows and API clients."""

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from shop.encryption import encrypt_credentials
from shop.models import Account, Order, OrderItem, Product, User, Variant

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
TEST_PASSWORD = "s3cret-pass"


@pytest.fixture(autouse=True)
def _test_settings(settings):
    settings.SECURE_SSL_REDIRECT = False
    settings.ENCRYPTION_KEY = TEST_ENCRYPTION_KEY
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    settings.SITE_BASE_URL = "https://shop.example.com"
    settings.SEPAY_ENV = "sandbox"
    settings.SEPAY_MERCHANT_ID = "MERCHANT-1"
    settings.SEPAY_SECRET_KEY = "checkout-secret"
    settings.SEPAY_WEBHOOK_SECRET = ""
    settings.SEPAY_ALLOWED_IPS = []
    settings.SEPAY_ACCOUNT_NUMBER = "0123456789"
    settings.SEPAY_ACCOUNT_NAME = "AI4CHILL"
    settings.SEPAY_BANK_CODE = "MB"
    settings.SEPAY_PRODUCTION = False
    # md5 keeps the suite fast; bcrypt itself is covered in test_passwords
    settings.PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]
    cache.clear()
    yield settings
    cache.clear()


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def user(db):
    return User.objects.create_user("buyer@example.com", TEST_PASSWORD, name="Buyer")


@pytest.fixture
def admin_user(db):
    return User.objects.create_superuser("admin@example.com", TEST_PASSWORD, name="Admin")


@pytest.fixture
def user_client(user):
    client = APIClient()
    client.force_login(user)
    return client


@pytest.fixture
def admin_client(admin_user):
    client = APIClient()
    client.force_login(admin_user)
    return client


@pytest.fixture
def product(db):
    return Product.objects.create(
        name="ChatGPT Plus",
        description="GPT-4 access",
        price=150000,
        image="/images/products/chatgpt.jpg",
        category="AI Chat",
    )


@pytest.fixture
def variant(product):
    return Variant.objects.create(product=product, name="1 Month", price=150000, duration="1 Month", stock=10)


@pytest.fixture
def make_order(user, variant):
    def _make(status=Order.STATUS_PENDING, quantity=1, invoice_number="INV-1700000000000-ABC123", owner=None):
        order = Order.objects.create(
            user=owner or user,
            invoice_number=invoice_number,
            total=variant.price * quantity,
            status=status,
            payment_method="BANK_TRANSFER",
        )
        OrderItem.objects.create(
            order=order, product=variant.product, variant=variant, quantity=quantity, price=variant.price
        )
        return order

    return _make


@pytest.fixture
def stock_accounts(variant):
    def _stock(n):
        return [
            Account.objects.create(
                variant=variant,
                credentials=encrypt_credentials({"email": f"acc{i}@ai.example", "password": f"pw{i}"}),
            )
            for i in range(n)
        ]

    return _stock
