# storefront/urls.py
from django.contrib import admin
from django.http import JsonResponse
from django.urls import include, path


def health(_request):
    return JsonResponse({"service": "AI4Chill Backend", "status": "healthy"})


urlpatterns = [
    # Django admin as back-office (the /api/admin/ prefix belongs to the JSON API)
    path("backoffice/", admin.site.urls),

    path("api/health", health),
    path("api/health/", health),

    path("api/", include("shop.urls")),
]
