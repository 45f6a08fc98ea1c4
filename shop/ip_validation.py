# shop/ip_validation.py: gateway IP whitelist (single IPs or CIDR) and client IP extraction
import ipaddress
import logging
from typing import Iterable

from django.http import HttpRequest

logger = logging.getLogger(__name__)


def is_ip_in_cidr(ip: str, cidr: str) -> bool:
    network = ipaddress.ip_network(cidr.strip(), strict=False)
    return ipaddress.ip_address(ip.strip()) in network


def is_ip_allowed(ip: str, allowed_ips: Iterable[str]) -> bool:
    """
    True when `ip` equals one entry or falls inside one CIDR entry.
    An empty list allows nothing; callers decide whether the whitelist is enabled.
    """
    allowed = [a.strip() for a in (allowed_ips or []) if a and a.strip()]
    if not allowed:
        return False
    for entry in allowed:
        try:
            if "/" in entry:
                if is_ip_in_cidr(ip, entry):
                    return True
            elif ipaddress.ip_address(ip.strip()) == ipaddress.ip_address(entry):
                return True
        except ValueError as e:
            logger.error("Error validating IP %s against %s: %s", ip, entry, e)
            continue
    return False


def get_client_ip(request: HttpRequest) -> str:
    """Cloudflare header, then first X-Forwarded-For hop, then X-Real-IP, then the socket address."""
    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return request.META.get("REMOTE_ADDR") or "unknown"
