# shop/middleware.py
from urllib.parse import quote

from django.http import JsonResponse

DASHBOARD_PREFIX = "/api/dashboard/"
ADMIN_PREFIX = "/api/admin/"
REGISTER_PATH = "/api/auth/register"


class RouteProtectionMiddleware:
    """
    Gatekeeper for the API prefixes:
      /api/dashboard/*   signed-in users
      /api/admin/*       role ADMIN
      /api/auth/register signed-out visitors only
    Runs after AuthenticationMiddleware (needs request.user).
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        path = request.path
        user = getattr(request, "user", None)
        authenticated = bool(user and user.is_authenticated)

        if path.startswith(DASHBOARD_PREFIX) and not authenticated:
            return JsonResponse(
                {
                    "success": False,
                    "error": "Authentication required",
                    "login_url": f"/auth/login?callbackUrl={quote(path)}",
                    "callbackUrl": path,
                },
                status=401,
            )

        if path.startswith(ADMIN_PREFIX):
            if not authenticated:
                return JsonResponse(
                    {"success": False, "error": "Authentication required", "callbackUrl": path},
                    status=401,
                )
            if getattr(user, "role", None) != "ADMIN":
                return JsonResponse({"success": False, "error": "Forbidden - Admin access required"}, status=403)

        if path.rstrip("/") == REGISTER_PATH and authenticated and request.method == "POST":
            return JsonResponse(
                {"success": False, "message": "Already authenticated", "redirect": "/dashboard"},
                status=400,
            )

        return self.get_response(request)
