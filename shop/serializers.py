# shop/serializers.py: catalog, orders and request payloads (separate read/write serializers)
from rest_framework import serializers

from .formatting import format_vnd
from .models import Order, OrderItem, Product, Transaction, User, Variant
from .sepay import PAYMENT_METHODS


# --------- Catalog ---------
class VariantSerializer(serializers.ModelSerializer):
    price = serializers.IntegerField(min_value=1, error_messages={"min_value": "Price must be greater than 0"})
    stock = serializers.IntegerField(min_value=0, required=False, default=0,
                                     error_messages={"min_value": "Stock must be a non-negative integer"})
    price_formatted = serializers.SerializerMethodField()

    class Meta:
        model = Variant
        fields = ["id", "product", "name", "price", "price_formatted", "duration", "stock", "created_at"]
        read_only_fields = ["id", "product", "created_at"]
        extra_kwargs = {
            "name": {"error_messages": {"max_length": "Name too long", "blank": "Variant name is required"}},
            "duration": {"error_messages": {"max_length": "Duration too long", "blank": "Duration is required"}},
        }

    def get_price_formatted(self, obj):
        return format_vnd(obj.price)


class ProductSerializer(serializers.ModelSerializer):
    price = serializers.IntegerField(min_value=0, error_messages={"min_value": "Price must be a positive number"})
    variants = VariantSerializer(many=True, read_only=True)
    price_range = serializers.SerializerMethodField()
    price_formatted = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "slug",
            "description",
            "price",
            "price_formatted",
            "price_range",
            "image",
            "category",
            "is_active",
            "variants",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "slug", "created_at", "updated_at"]
        extra_kwargs = {
            "name": {"error_messages": {"max_length": "Name too long", "blank": "Product name is required"}},
        }

    def get_price_range(self, obj):
        return obj.price_range()

    def get_price_formatted(self, obj):
        return format_vnd(obj.price)


class AdminProductSerializer(ProductSerializer):
    variant_count = serializers.SerializerMethodField()

    class Meta(ProductSerializer.Meta):
        fields = ProductSerializer.Meta.fields + ["variant_count"]

    def get_variant_count(self, obj):
        return len(obj.variants.all())


# --------- Orders (READ) ---------
class UserBriefSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ("id", "name", "email")


class TransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Transaction
        fields = ("id", "status", "amount", "provider", "sepay_order_id", "payment_method", "reference", "created_at")


class OrderItemReadSerializer(serializers.ModelSerializer):
    product = serializers.SerializerMethodField()
    variant = serializers.SerializerMethodField()

    class Meta:
        model = OrderItem
        fields = ("id", "quantity", "price", "product", "variant")

    def get_product(self, obj):
        return {"id": obj.product_id, "name": obj.product.name}

    def get_variant(self, obj):
        v = obj.variant
        return {"id": v.id, "name": v.name, "duration": v.duration, "price": v.price}


class OrderReadSerializer(serializers.ModelSerializer):
    user = UserBriefSerializer(read_only=True)
    items = OrderItemReadSerializer(many=True, read_only=True)
    transaction = serializers.SerializerMethodField()
    total_formatted = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = (
            "id",
            "invoice_number",
            "status",
            "total",
            "total_formatted",
            "payment_method",
            "user",
            "items",
            "transaction",
            "created_at",
            "updated_at",
        )

    def get_transaction(self, obj):
        last = obj.transactions.order_by("-created_at", "-id").first()
        return TransactionSerializer(last).data if last else None

    def get_total_formatted(self, obj):
        return format_vnd(obj.total)


# --------- Request payloads ---------
class OrderLineSerializer(serializers.Serializer):
    variant_id = serializers.IntegerField(error_messages={"required": "Variant ID is required",
                                                          "invalid": "Variant ID is required"})
    quantity = serializers.IntegerField(min_value=1, error_messages={"min_value": "Quantity must be at least 1"})


class CreateOrderSerializer(serializers.Serializer):
    items = OrderLineSerializer(many=True, required=False)
    from_cart = serializers.BooleanField(required=False, default=False)
    payment_method = serializers.ChoiceField(choices=PAYMENT_METHODS, default="BANK_TRANSFER")

    def validate(self, attrs):
        if not attrs.get("from_cart") and not attrs.get("items"):
            raise serializers.ValidationError({"items": "At least one item is required"})
        return attrs


class BuyerInfoSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, allow_blank=True)
    email = serializers.EmailField(required=False)
    phone = serializers.CharField(required=False, allow_blank=True)


class InitiatePaymentSerializer(serializers.Serializer):
    order_id = serializers.IntegerField(error_messages={"required": "Order ID is required"})
    payment_method = serializers.ChoiceField(choices=PAYMENT_METHODS)
    buyer_info = BuyerInfoSerializer(required=False)


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c for c, _ in Order.STATUS_CHOICES])


class OrderFiltersSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c for c, _ in Order.STATUS_CHOICES], required=False)
    search = serializers.CharField(required=False, allow_blank=True)
    page = serializers.IntegerField(min_value=1, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=100, default=20)


class StockCheckSerializer(serializers.Serializer):
    items = OrderLineSerializer(many=True, allow_empty=False)


def flatten_errors(errors) -> str:
    """DRF error tree -> 'msg, msg' (for the {success, error} envelope)."""
    out = []

    def walk(node):
        if isinstance(node, dict):
            for value in node.values():
                walk(value)
        elif isinstance(node, (list, tuple)):
            for value in node:
                walk(value)
        elif node:
            out.append(str(node))

    walk(errors)
    return ", ".join(out)
