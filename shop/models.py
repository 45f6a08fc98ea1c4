# shop/models.py: User, Product, Variant, Order, OrderItem, Account and Transaction
from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.db import models
from django.utils.text import slugify


# --------- Users ---------
class UserManager(BaseUserManager):
    use_in_migrations = True

    def _create_user(self, email, password, **extra):
        if not email:
            raise ValueError("Email is required")
        email = self.normalize_email(email).lower()
        user = self.model(email=email, **extra)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_user(self, email, password=None, **extra):
        extra.setdefault("role", User.ROLE_USER)
        return self._create_user(email, password, **extra)

    def create_superuser(self, email, password=None, **extra):
        extra["role"] = User.ROLE_ADMIN
        extra.setdefault("is_superuser", True)
        return self._create_user(email, password, **extra)


class User(AbstractUser):
    """
    Storefront account. E-mail is the login identifier (always lower-case);
    `role` drives access to the admin API, `is_staff` mirrors it for the back-office.
    """
    ROLE_USER = "USER"
    ROLE_ADMIN = "ADMIN"
    ROLE_CHOICES = [
        (ROLE_USER, "User"),
        (ROLE_ADMIN, "Admin"),
    ]

    username = None
    first_name = None
    last_name = None

    email = models.EmailField(max_length=255, unique=True)
    name = models.CharField(max_length=255, blank=True, null=True)
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_USER)

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS: list[str] = []

    objects = UserManager()

    class Meta:
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.lower()
        self.is_staff = self.role == self.ROLE_ADMIN
        super().save(*args, **kwargs)

    @property
    def is_admin(self) -> bool:
        return self.role == self.ROLE_ADMIN


# --------- Catalog ---------
class Product(models.Model):
    name = models.CharField(max_length=100)
    slug = models.SlugField(max_length=140, unique=True, blank=True)
    description = models.TextField(blank=True, default="")
    # base/display price in VND
    price = models.PositiveIntegerField(default=0)
    image = models.CharField(max_length=500, blank=True, default="")
    category = models.CharField(max_length=100, blank=True, default="")
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = self._unique_slug()
        super().save(*args, **kwargs)

    def _unique_slug(self) -> str:
        base = slugify(self.name)[:120] or "product"
        slug, n = base, 2
        while Product.objects.filter(slug=slug).exclude(pk=self.pk).exists():
            slug = f"{base}-{n}"
            n += 1
        return slug

    def price_range(self) -> dict:
        """Min/max over variant prices; the product price when there are no variants."""
        prices = [v.price for v in self.variants.all()]
        if not prices:
            return {"min": self.price, "max": self.price}
        return {"min": min(prices), "max": max(prices)}


class Variant(models.Model):
    product = models.ForeignKey(Product, related_name="variants", on_delete=models.CASCADE)
    name = models.CharField(max_length=100)
    price = models.PositiveIntegerField(help_text="Price in VND")
    duration = models.CharField(max_length=50)
    stock = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"{self.product.name} - {self.name}"


# --------- Orders ---------
class Order(models.Model):
    STATUS_PENDING = "pending"
    STATUS_PAID = "paid"
    STATUS_CONFIRMED = "confirmed"
    STATUS_PROCESSING = "processing"
    STATUS_SHIPPED = "shipped"
    STATUS_DELIVERED = "delivered"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PAID, "Paid"),
        (STATUS_CONFIRMED, "Confirmed"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_SHIPPED, "Shipped"),
        (STATUS_DELIVERED, "Delivered"),
        (STATUS_CANCELLED, "Cancelled"),
    ]
    FINAL_STATUSES = (STATUS_DELIVERED, STATUS_CANCELLED)
    REVENUE_STATUSES = (STATUS_PROCESSING, STATUS_SHIPPED, STATUS_DELIVERED)

    user = models.ForeignKey("shop.User", related_name="orders", on_delete=models.PROTECT)
    invoice_number = models.CharField(max_length=64, unique=True, null=True, blank=True)
    total = models.PositiveIntegerField(default=0, help_text="Total in VND")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    payment_method = models.CharField(max_length=40, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"Order #{self.id} ({self.invoice_number or 'no invoice'})"

    @property
    def can_be_paid(self) -> bool:
        return self.status == self.STATUS_PENDING


class OrderItem(models.Model):
    order = models.ForeignKey(Order, related_name="items", on_delete=models.CASCADE)
    product = models.ForeignKey(Product, related_name="order_items", on_delete=models.PROTECT)
    variant = models.ForeignKey(Variant, related_name="order_items", on_delete=models.PROTECT)
    quantity = models.PositiveIntegerField(default=1)
    # unit price at the time of the order
    price = models.PositiveIntegerField(help_text="Unit price in VND at order time")

    def __str__(self):
        return f"{self.quantity}x {self.variant} in order #{self.order_id}"

    @property
    def line_total(self) -> int:
        return self.price * self.quantity


# --------- Credential inventory ---------
class Account(models.Model):
    """Encrypted credential pair for a variant; handed to a buyer on fulfilment."""
    variant = models.ForeignKey(Variant, related_name="accounts", on_delete=models.CASCADE)
    credentials = models.TextField(help_text="AES-256-GCM ciphertext (base64)")
    is_sold = models.BooleanField(default=False, db_index=True)
    order_item = models.ForeignKey(
        OrderItem, related_name="accounts", on_delete=models.SET_NULL, null=True, blank=True
    )
    sold_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        state = "sold" if self.is_sold else "available"
        return f"Account #{self.pk} for {self.variant} ({state})"


# --------- Payments ---------
class Transaction(models.Model):
    STATUS_SUCCESS = "success"
    STATUS_FAILED = "failed"
    STATUS_PENDING = "pending"
    STATUS_CHOICES = [
        (STATUS_SUCCESS, "Success"),
        (STATUS_FAILED, "Failed"),
        (STATUS_PENDING, "Pending"),
    ]

    PROVIDER_SEPAY = "SEPAY"
    PROVIDER_CHOICES = [
        (PROVIDER_SEPAY, "SePay"),
    ]

    order = models.ForeignKey(Order, related_name="transactions", on_delete=models.CASCADE)
    amount = models.BigIntegerField()
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING)
    provider = models.CharField(max_length=20, choices=PROVIDER_CHOICES, default=PROVIDER_SEPAY)
    sepay_order_id = models.CharField(max_length=120, blank=True, default="")
    payment_method = models.CharField(max_length=40, blank=True, default="")
    gateway_data = models.JSONField(default=dict, blank=True)
    # idempotency key: one row per gateway notification
    reference = models.CharField(max_length=255, unique=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.provider} {self.reference} ({self.status})"
