# shop/views.py: catalog (public + admin), orders, inventory

import logging
import math

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Prefetch, Q, Sum
from django.shortcuts import get_object_or_404
from rest_framework import filters, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import AllowAny, BasePermission, IsAuthenticated
from rest_framework.response import Response

from . import inventory
from .forms import AddAccountsForm
from .inventory import FulfilmentError, InventoryError
from .models import Order, Product, Variant
from .serializers import (
    AdminProductSerializer,
    OrderFiltersSerializer,
    OrderReadSerializer,
    OrderStatusUpdateSerializer,
    ProductSerializer,
    StockCheckSerializer,
    VariantSerializer,
    flatten_errors,
)

logger = logging.getLogger(__name__)


class IsAdminRole(BasePermission):
    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and getattr(user, "is_admin", False))


def _invalid(errors):
    return Response(
        {"success": False, "error": f"Validation error: {flatten_errors(errors)}", "details": errors},
        status=status.HTTP_400_BAD_REQUEST,
    )


# -------------------------------------------------
# Catalog (public)
# -------------------------------------------------
class ProductViewSet(viewsets.ReadOnlyModelViewSet):
    permission_classes = [AllowAny]
    serializer_class = ProductSerializer
    lookup_field = "slug"
    queryset = (
        Product.objects.filter(is_active=True)
        .prefetch_related(Prefetch("variants", queryset=Variant.objects.order_by("created_at", "id")))
        .order_by("-created_at", "-id")
    )

    filter_backends = [filters.SearchFilter, filters.OrderingFilter]
    search_fields = ["name", "description"]
    ordering_fields = ["name", "price", "created_at"]

    def get_queryset(self):
        qs = super().get_queryset()
        category = self.request.query_params.get("category")
        if category:
            qs = qs.filter(category__iexact=category)
        return qs


# Demo catalog for /api/admin/products/seed/ (VND)
SEED_PRODUCTS = [
    {
        "name": "ChatGPT Plus",
        "description": "Access to GPT-4, faster response times, and priority access to new features",
        "price": 150000, "image": "/images/products/chatgpt.jpg", "category": "AI Chat",
        "variants": [("1 Month", 150000, 50), ("3 Months", 400000, 30), ("6 Months", 750000, 20)],
    },
    {
        "name": "ChatGPT Team",
        "description": "Collaborative workspace for teams with unlimited GPT-4 access",
        "price": 300000, "image": "/images/products/chatgpt-team.jpg", "category": "AI Chat",
        "variants": [("1 Month", 300000, 30), ("3 Months", 850000, 15)],
    },
    {
        "name": "Claude Pro",
        "description": "Anthropic Claude with extended context and priority access",
        "price": 180000, "image": "/images/products/claude.jpg", "category": "AI Chat",
        "variants": [("1 Month", 180000, 45), ("6 Months", 900000, 10)],
    },
    {
        "name": "Claude API",
        "description": "API access to Claude for developers and businesses",
        "price": 250000, "image": "/images/products/claude-api.jpg", "category": "AI Chat",
        "variants": [("1 Month", 150000, 50), ("3 Months", 400000, 30), ("6 Months", 750000, 20)],
    },
    {
        "name": "DALL-E",
        "description": "AI image generation with OpenAI DALL-E",
        "price": 120000, "image": "/images/products/dalle.jpg", "category": "AI Art",
        "variants": [("100 Credits", 120000, 60), ("500 Credits", 550000, 30)],
    },
    {
        "name": "Midjourney",
        "description": "Premium AI art generation subscription",
        "price": 350000, "image": "/images/products/midjourney.jpg", "category": "AI Art",
        "variants": [("Basic Plan", 350000, 25), ("Standard Plan", 700000, 15), ("Pro Plan", 1400000, 10)],
    },
    {
        "name": "GitHub Copilot",
        "description": "AI-powered code completion for developers",
        "price": 280000, "image": "/images/products/github-copilot.jpg", "category": "AI Coding",
        "variants": [("1 Month", 280000, 50), ("1 Year", 2800000, 20)],
    },
    {
        "name": "Gemini Advanced",
        "description": "Google Gemini with advanced AI capabilities",
        "price": 220000, "image": "/images/products/gemini.jpg", "category": "AI Chat",
        "variants": [("1 Month", 220000, 35), ("6 Months", 1200000, 15)],
    },
]


# -------------------------------------------------
# Catalog (admin)
# -------------------------------------------------
class AdminProductViewSet(viewsets.ModelViewSet):
    permission_classes = [IsAdminRole]
    serializer_class = AdminProductSerializer
    queryset = Product.objects.all().prefetch_related("variants").order_by("-created_at", "-id")

    filter_backends = [filters.SearchFilter, filters.OrderingFilter]
    search_fields = ["name", "description", "category"]
    ordering_fields = ["id", "name", "price", "created_at"]

    def create(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        if not ser.is_valid():
            return _invalid(ser.errors)
        product = ser.save()
        logger.info("Product %s created", product.id)
        return Response({"success": True, "product": self.get_serializer(product).data},
                        status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        product = self.get_object()
        ser = self.get_serializer(product, data=request.data, partial=kwargs.pop("partial", False))
        if not ser.is_valid():
            return _invalid(ser.errors)
        product = ser.save()
        return Response({"success": True, "product": self.get_serializer(product).data})

    def destroy(self, request, *args, **kwargs):
        product = Product.objects.filter(pk=kwargs.get("pk")).first()
        if not product:
            return Response({"success": False, "error": "Product not found"}, status=404)
        if product.variants.exists():
            return Response(
                {"success": False,
                 "error": "Cannot delete product with existing variants. Please delete variants first."},
                status=400,
            )
        if product.order_items.exists():
            return Response({"success": False, "error": "Cannot delete product with existing orders."}, status=400)
        product.delete()
        logger.info("Product %s deleted", kwargs.get("pk"))
        return Response({"success": True})

    @action(detail=True, methods=["get", "post"])
    def variants(self, request, pk=None):
        product = Product.objects.filter(pk=pk).first()
        if not product:
            return Response({"success": False, "error": "Product not found"}, status=404)

        if request.method == "GET":
            return Response(VariantSerializer(product.variants.all(), many=True).data)

        ser = VariantSerializer(data=request.data)
        if not ser.is_valid():
            return _invalid(ser.errors)
        variant = ser.save(product=product)
        logger.info("Variant %s created for product %s", variant.id, product.id)
        return Response({"success": True, "variant": VariantSerializer(variant).data},
                        status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"])
    def seed(self, request):
        if not (getattr(settings, "ENABLE_SEED", False) or settings.DEBUG):
            return Response({"success": False, "error": "Seed disabled."}, status=403)

        created = 0
        with transaction.atomic():
            for data in SEED_PRODUCTS:
                if Product.objects.filter(name=data["name"]).exists():
                    continue
                product = Product.objects.create(
                    name=data["name"],
                    description=data["description"],
                    price=data["price"],
                    image=data["image"],
                    category=data["category"],
                )
                Variant.objects.bulk_create([
                    Variant(product=product, name=name, price=price, stock=stock, duration=name)
                    for name, price, stock in data["variants"]
                ])
                created += 1
        logger.info("Seeded %s products", created)
        return Response({"success": True, "created": created})


class AdminVariantViewSet(viewsets.ModelViewSet):
    permission_classes = [IsAdminRole]
    serializer_class = VariantSerializer
    queryset = Variant.objects.select_related("product").order_by("product__name", "created_at", "id")
    http_method_names = ["get", "put", "patch", "delete", "head", "options"]

    def update(self, request, *args, **kwargs):
        variant = Variant.objects.filter(pk=kwargs.get("pk")).first()
        if not variant:
            return Response({"success": False, "error": "Variant not found"}, status=404)
        ser = self.get_serializer(variant, data=request.data, partial=kwargs.pop("partial", False))
        if not ser.is_valid():
            return _invalid(ser.errors)
        variant = ser.save()
        return Response({"success": True, "variant": self.get_serializer(variant).data})

    def destroy(self, request, *args, **kwargs):
        variant = Variant.objects.filter(pk=kwargs.get("pk")).first()
        if not variant:
            return Response({"success": False, "error": "Variant not found"}, status=404)
        if variant.order_items.exists():
            return Response({"success": False, "error": "Cannot delete variant with existing orders."}, status=400)
        variant.delete()
        return Response({"success": True})


# -------------------------------------------------
# Orders (admin)
# -------------------------------------------------
class AdminOrderViewSet(viewsets.ReadOnlyModelViewSet):
    permission_classes = [IsAdminRole]
    serializer_class = OrderReadSerializer
    queryset = (
        Order.objects.select_related("user")
        .prefetch_related("items__product", "items__variant", "transactions")
        .order_by("-created_at", "-id")
    )

    def list(self, request, *args, **kwargs):
        f = OrderFiltersSerializer(data=request.query_params)
        if not f.is_valid():
            return _invalid(f.errors)
        params = f.validated_data

        qs = self.get_queryset()
        if params.get("status"):
            qs = qs.filter(status=params["status"])
        search = (params.get("search") or "").strip()
        if search:
            cond = Q(user__email__icontains=search) | Q(user__name__icontains=search) \
                | Q(invoice_number__icontains=search)
            if search.isdigit():
                cond |= Q(pk=int(search))
            qs = qs.filter(cond)

        page, limit = params["page"], params["limit"]
        total_count = qs.count()
        total_pages = math.ceil(total_count / limit) if total_count else 0
        orders = qs[(page - 1) * limit: page * limit]

        return Response({
            "orders": self.get_serializer(orders, many=True).data,
            "total_count": total_count,
            "total_pages": total_pages,
            "current_page": page,
            "has_next_page": page < total_pages,
            "has_previous_page": page > 1,
        })

    @action(detail=True, methods=["patch"], url_path="status")
    def set_status(self, request, pk=None):
        ser = OrderStatusUpdateSerializer(data=request.data)
        if not ser.is_valid():
            return _invalid(ser.errors)
        with transaction.atomic():
            order = Order.objects.select_for_update().filter(pk=pk).first()
            if not order:
                return Response({"success": False, "error": "Order not found"}, status=404)
            if order.status in Order.FINAL_STATUSES:
                return Response(
                    {"success": False, "error": "Cannot update status of delivered or cancelled orders"},
                    status=400,
                )
            order.status = ser.validated_data["status"]
            order.save(update_fields=["status", "updated_at"])
        logger.info("Order %s status set to %s", order.id, order.status)
        return Response({"success": True, "order": self.get_serializer(order).data})

    @action(detail=False, methods=["get"])
    def stats(self, request):
        counts = dict(Order.objects.order_by().values_list("status").annotate(n=Count("id")))
        revenue = Order.objects.filter(status__in=Order.REVENUE_STATUSES).aggregate(s=Sum("total"))["s"] or 0
        data = {"total_orders": sum(counts.values()), "total_revenue": revenue}
        for code, _label in Order.STATUS_CHOICES:
            data[f"{code}_orders"] = counts.get(code, 0)
        return Response(data)

    @action(detail=True, methods=["post"])
    def fulfil(self, request, pk=None):
        try:
            result = inventory.fulfil_order(pk)
        except FulfilmentError as e:
            code = 404 if str(e) == "Order not found" else 400
            return Response({"success": False, "error": str(e)}, status=code)
        return Response(result)


@api_view(["POST"])
@permission_classes([IsAdminRole])
def stock_check(request):
    """
    POST /api/admin/stock/check
    Body: { "items": [{variant_id, quantity}, ...] }
    """
    ser = StockCheckSerializer(data=request.data)
    if not ser.is_valid():
        return Response({"success": False, "error": "Invalid request body"}, status=400)
    try:
        info = inventory.check_stock(ser.validated_data["items"])
    except InventoryError as e:
        return Response({"success": False, "error": str(e)}, status=404)
    return Response({"success": True, "stock_info": info})


# -------------------------------------------------
# Inventory (admin)
# -------------------------------------------------
@api_view(["GET"])
@permission_classes([IsAdminRole])
def inventory_list(request):
    return Response({"success": True, "inventory": inventory.all_inventory()})


@api_view(["GET"])
@permission_classes([IsAdminRole])
def inventory_summary(request):
    return Response({"success": True, "summary": inventory.inventory_summary()})


@api_view(["GET", "POST"])
@permission_classes([IsAdminRole])
def variant_accounts(request, variant_id):
    """
    GET  -> stock of one variant
    POST { "accounts": "email:password\\n..." } -> bulk load
    """
    if request.method == "GET":
        get_object_or_404(Variant, pk=variant_id)
        return Response({"success": True, "stock": inventory.variant_stock(variant_id)})

    form = AddAccountsForm(data=request.data)
    if not form.is_valid():
        return Response({"success": False, "error": "No valid credentials provided"}, status=400)

    result = inventory.add_accounts(variant_id, form.cleaned_data["accounts"])
    if not result["success"]:
        code = 404 if result["error"] == "Variant not found" else 400
        return Response(result, status=code)
    return Response(result, status=201)


# -------------------------------------------------
# Orders (buyer)
# -------------------------------------------------
def _visible_order(request, order_id):
    user = request.user
    if not user.is_authenticated:
        return None
    qs = Order.objects.select_related("user").prefetch_related("items__product", "items__variant")
    if not user.is_admin:
        qs = qs.filter(user=user)
    return qs.filter(pk=order_id).first()


@api_view(["GET"])
@permission_classes([AllowAny])
def order_detail(request, order_id):
    order = _visible_order(request, order_id)
    if not order:
        return Response({"success": False, "error": "Order not found"}, status=404)
    return Response(OrderReadSerializer(order).data)


@api_view(["GET"])
@permission_classes([AllowAny])
def order_status(request, order_id):
    """Polled by the payment page until the order leaves `pending`."""
    order = _visible_order(request, order_id)
    if not order:
        return Response({"success": False, "error": "Order not found"}, status=404)
    last = order.transactions.order_by("-created_at", "-id").first()
    return Response({
        "id": order.id,
        "status": order.status,
        "total": order.total,
        "created_at": order.created_at,
        "has_transaction": last is not None,
        "last_transaction": {
            "id": last.id,
            "status": last.status,
            "amount": last.amount,
            "provider": last.provider,
            "created_at": last.created_at,
        } if last else None,
    })


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def dashboard_orders(request):
    qs = (
        Order.objects.filter(user=request.user)
        .select_related("user")
        .prefetch_related("items__product", "items__variant", "transactions")
        .order_by("-created_at", "-id")
    )
    return Response({"success": True, "orders": OrderReadSerializer(qs, many=True).data})
