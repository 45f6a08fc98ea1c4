# shop/emails.py: delivery e-mail with the purchased credentials
from __future__ import annotations

import logging
from typing import Any, Dict, List

from django.conf import settings
from django.core.mail import EmailMultiAlternatives, get_connection
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string
from django.utils import timezone

from .formatting import format_vnd
from .models import Order

logger = logging.getLogger(__name__)


def _fallback_text(ctx: Dict[str, Any]) -> str:
    lines = [
        f"Dear {ctx['customer_name']},",
        "",
        f"Your order #{ctx['order'].id} has been delivered. Your account credentials:",
        "",
    ]
    for cred in ctx["credentials"]:
        lines.append(f"- {cred['product_name']} ({cred['variant_name']} - {cred['duration']})")
        lines.append(f"  Email: {cred['email']}")
        lines.append(f"  Password: {cred['password']}")
    lines += [
        "",
        "Please change the passwords after your first login and never share them.",
        f"Support: {ctx['support_email']}",
    ]
    return "\n".join(lines) + "\n"


def send_order_delivered_email(order: Order, credentials: List[Dict[str, str]]) -> bool:
    """
    Sends the credentials to the buyer. Never raises: a mail failure leaves the
    fulfilment in place and returns False so the caller can report it.
    """
    to = order.user.email
    ctx = {
        "order": order,
        "customer_name": order.user.name or "Valued Customer",
        "order_date": timezone.localtime(order.created_at).strftime("%d/%m/%Y"),
        "total": format_vnd(order.total),
        "credentials": credentials,
        "support_email": getattr(settings, "SUPPORT_EMAIL", ""),
        "year": timezone.now().year,
    }
    subject = f"[AI4Chill] Order delivered - #{order.id}"
    from_email = getattr(settings, "DEFAULT_FROM_EMAIL", "no-reply@ai4chill.vn")

    try:
        txt = render_to_string("emails/order_delivered.txt", ctx)
    except TemplateDoesNotExist:
        txt = _fallback_text(ctx)
    try:
        html = render_to_string("emails/order_delivered.html", ctx)
    except TemplateDoesNotExist:
        html = None

    try:
        with get_connection() as conn:
            msg = EmailMultiAlternatives(subject, txt, from_email, [to], connection=conn)
            if html:
                msg.attach_alternative(html, "text/html")
            msg.send(fail_silently=False)
    except Exception:
        logger.exception("Error sending delivery email for order %s", order.id)
        return False

    logger.info("Delivery email sent for order %s to %s", order.id, to)
    return True
