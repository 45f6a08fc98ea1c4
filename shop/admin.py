# shop/admin.py: back-office (mounted at /backoffice/)
from django.contrib import admin, messages
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.html import format_html

from .forms import ProductAdminForm, VariantAdminForm
from .formatting import format_vnd
from .inventory import FulfilmentError, fulfil_order
from .models import Account, Order, OrderItem, Product, Transaction, User, Variant


# ===============================
# User
# ===============================
@admin.register(User)
class UserAdmin(BaseUserAdmin):
    ordering = ("-date_joined",)
    list_display = ("id", "email", "name", "role", "is_active", "date_joined")
    list_filter = ("role", "is_active")
    search_fields = ("email", "name")
    readonly_fields = ("last_login", "date_joined")
    fieldsets = (
        (None, {"fields": ("email", "password")}),
        ("Profile", {"fields": ("name", "role")}),
        ("Permissions", {"fields": ("is_active", "is_superuser", "groups", "user_permissions")}),
        ("Dates", {"fields": ("last_login", "date_joined")}),
    )
    add_fieldsets = (
        (None, {"classes": ("wide",), "fields": ("email", "name", "role", "password1", "password2")}),
    )


# ===============================
# Product / Variant
# ===============================
class VariantInline(admin.TabularInline):
    model = Variant
    form = VariantAdminForm
    extra = 0
    fields = ("name", "price", "duration", "stock")


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    form = ProductAdminForm
    list_display = ("id", "name", "slug", "price_fmt", "category", "is_active", "thumb")
    list_filter = ("category", "is_active")
    search_fields = ("name", "slug", "description")
    inlines = [VariantInline]
    fieldsets = (
        (None, {"fields": ("name", "slug", "description", "category", "is_active")}),
        ("Price", {"fields": ("price_vnd", "price")}),
        ("Image", {"fields": ("image",)}),
    )

    def price_fmt(self, obj):
        return format_vnd(obj.price)
    price_fmt.short_description = "Price"

    def thumb(self, obj):
        if not obj.image:
            return "—"
        return format_html(
            '<img src="{}" style="height:40px;width:40px;object-fit:cover;border-radius:6px;" />', obj.image
        )
    thumb.short_description = "Thumb"


@admin.register(Variant)
class VariantAdmin(admin.ModelAdmin):
    form = VariantAdminForm
    list_display = ("id", "product", "name", "price_fmt", "duration", "stock", "available_accounts")
    list_filter = ("product",)
    search_fields = ("name", "product__name")

    def price_fmt(self, obj):
        return format_vnd(obj.price)
    price_fmt.short_description = "Price"

    def available_accounts(self, obj):
        return obj.accounts.filter(is_sold=False).count()
    available_accounts.short_description = "Unsold accounts"


# ===============================
# Credential inventory (ciphertext never shown)
# ===============================
@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    list_display = ("id", "variant", "is_sold", "order_item", "sold_at", "created_at")
    list_filter = ("is_sold", "variant__product")
    exclude = ("credentials",)
    readonly_fields = ("variant", "is_sold", "order_item", "sold_at", "created_at")

    def has_add_permission(self, request):
        # accounts are loaded through POST /api/admin/inventory/<variant_id>/accounts
        return False


# ===============================
# Order / OrderItem / Transaction
# ===============================
class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ("product", "variant", "quantity", "price")
    can_delete = False


class TransactionInline(admin.TabularInline):
    model = Transaction
    extra = 0
    readonly_fields = ("reference", "status", "amount", "provider", "sepay_order_id", "payment_method", "created_at")
    exclude = ("gateway_data",)
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "invoice_number", "user", "status", "total_fmt", "payment_method", "created_at")
    list_filter = ("status", "payment_method")
    search_fields = ("invoice_number", "user__email", "user__name")
    readonly_fields = ("invoice_number", "total", "created_at", "updated_at")
    inlines = [OrderItemInline, TransactionInline]
    actions = ["fulfil_selected"]

    def total_fmt(self, obj):
        return format_vnd(obj.total)
    total_fmt.short_description = "Total"

    @admin.action(description="Fulfil selected paid orders")
    def fulfil_selected(self, request, queryset):
        for order in queryset:
            try:
                result = fulfil_order(order.pk)
            except FulfilmentError as e:
                self.message_user(request, f"Order #{order.pk}: {e}", level=messages.ERROR)
                continue
            self.message_user(request, result["message"], level=messages.SUCCESS)


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "status", "amount", "provider", "reference", "created_at")
    list_filter = ("status", "provider")
    search_fields = ("reference", "sepay_order_id", "order__invoice_number")
    readonly_fields = ("order", "amount", "status", "provider", "sepay_order_id", "payment_method",
                       "gateway_data", "reference", "created_at", "updated_at")
