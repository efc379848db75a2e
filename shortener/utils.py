import ipaddress
import re
import secrets
import string
from typing import Optional

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError
from starlette.requests import Request

ALPHABET = string.ascii_letters + string.digits
SHORTCODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,20}$")

LOCAL_PRIVATE = "Local/Private"
UNKNOWN_LOCATION = "Unknown Location"

_http_url = TypeAdapter(AnyHttpUrl)

def generate_random_code(length: int = 8) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))

def is_valid_shortcode(code: str) -> bool:
    return bool(SHORTCODE_PATTERN.fullmatch(code))

def is_http_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        _http_url.validate_python(url)
    except ValidationError:
        return False
    return True

def client_ip(request: Request, trusted_hops: int = 0) -> Optional[str]:
    """
    Address of the caller.

    X-Forwarded-For is read only when trusted_hops proxies sit in front of
    the app. Each of them appends the address it saw, so the caller is the
    entry trusted_hops from the right; anything further left is client
    supplied.
    """
    peer = request.client.host if request.client else None
    if trusted_hops <= 0:
        return peer
    hops = [h.strip() for h in request.headers.get("x-forwarded-for", "").split(",") if h.strip()]
    if not hops:
        return peer
    return hops[-min(trusted_hops, len(hops))]

def coarse_location(ip: Optional[str]) -> Optional[str]:
    # Heuristic only: no geo lookup is performed.
    if not ip:
        return None
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return UNKNOWN_LOCATION
    if addr.is_private or addr.is_loopback or addr.is_link_local:
        return LOCAL_PRIVATE
    return UNKNOWN_LOCATION
