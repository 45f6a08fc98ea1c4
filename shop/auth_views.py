# shop/auth_views.py: registration (rate limited) and session login/logout
from __future__ import annotations

import logging

from django.contrib.auth import authenticate, login, logout
from django.db import IntegrityError
from django.views.decorators.csrf import csrf_exempt

from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ParseError
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework import status

from .auth_serializers import LoginSerializer, UserSerializer
from .encryption import EMAIL_RE
from .ip_validation import get_client_ip
from .models import User
from .passwords import PasswordError, validate_password_rules
from .rate_limit import registration_rate_limiter

logger = logging.getLogger(__name__)


# ---------------------------
# Helpers
# ---------------------------
def _fail(message: str, code: int, **extra) -> Response:
    return Response({"success": False, "message": message, **extra}, status=code)


def _json_body(request):
    """request.data, or None when the body is not valid JSON."""
    try:
        data = request.data
    except ParseError:
        return None
    return data if isinstance(data, dict) else None


# ---------------------------
# Views
# ---------------------------
@csrf_exempt
@api_view(["POST"])
@permission_classes([AllowAny])
def register(request):
    """
    POST /api/auth/register
    Body: { "email": "...", "password": "...", "name": "..."? }
    """
    ip = get_client_ip(request)
    limit = registration_rate_limiter().is_allowed(ip)
    if not limit.allowed:
        logger.warning("Registration rate limit hit for %s", ip)
        resp = _fail("Too many registration attempts. Please try again later.", status.HTTP_429_TOO_MANY_REQUESTS)
        resp["Retry-After"] = str(limit.retry_after)
        return resp

    data = _json_body(request)
    if data is None:
        return _fail("Invalid JSON in request body", status.HTTP_400_BAD_REQUEST)

    email = data.get("email")
    password = data.get("password")
    name = data.get("name")

    if not email or not password:
        return _fail("Email and password are required", status.HTTP_400_BAD_REQUEST)
    if not isinstance(email, str) or not EMAIL_RE.match(email.strip()):
        return _fail("Invalid email format", status.HTTP_400_BAD_REQUEST)
    try:
        validate_password_rules(password)
    except PasswordError as e:
        return _fail(str(e), status.HTTP_400_BAD_REQUEST)

    email = email.strip().lower()
    name = name.strip() if isinstance(name, str) and name.strip() else None

    if User.objects.filter(email__iexact=email).exists():
        return _fail("User with this email already exists", status.HTTP_409_CONFLICT)

    try:
        user = User.objects.create_user(email, password, name=name)
    except IntegrityError:
        # lost a race against a concurrent registration
        return _fail("User with this email already exists", status.HTTP_409_CONFLICT)
    except Exception:
        logger.exception("Registration error for %s", email)
        return _fail("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info("User registered: %s", user.email)
    return Response(
        {"success": True, "message": "User registered successfully", "user": UserSerializer(user).data},
        status=status.HTTP_201_CREATED,
    )


@csrf_exempt
@api_view(["POST"])
@permission_classes([AllowAny])
def login_view(request):
    """
    POST /api/auth/login
    Body: { "email": "...", "password": "..." }
    """
    ser = LoginSerializer(data=request.data)
    if not ser.is_valid():
        return _fail("Invalid email or password", status.HTTP_401_UNAUTHORIZED)

    user = authenticate(
        request,
        email=ser.validated_data["email"].strip().lower(),
        password=ser.validated_data["password"],
    )
    if user is None:
        return _fail("Invalid email or password", status.HTTP_401_UNAUTHORIZED)

    login(request, user)
    return Response({"success": True, "user": UserSerializer(user).data})


@api_view(["POST"])
@permission_classes([AllowAny])
def logout_view(request):
    logout(request)
    return Response({"success": True})


@api_view(["GET"])
@permission_classes([AllowAny])
def session_view(request):
    user = request.user
    if not user.is_authenticated:
        return Response({"authenticated": False, "user": None})
    return Response({"authenticated": True, "user": UserSerializer(user).data})
