"""
Client IP extraction with a fixed header precedence.

Order (closest to the true origin first): the CDN/tunnel connecting-IP header,
the first hop of X-Forwarded-For, X-Real-IP, then the transport peer. Proxies
in between may rewrite the generic headers, so the connecting-IP header wins.
"""
from starlette.requests import Request

from app.core.config import settings
from app.network.classifier import parse_ip


def _header_candidate(header: str, value: str) -> str | None:
    if header == "x-forwarded-for":
        value = value.split(",")[0]
    value = value.strip()
    addr = parse_ip(value)
    if addr is None and value.count(":") == 1:
        # "1.2.3.4:5678"
        addr = parse_ip(value.split(":")[0])
    return str(addr) if addr is not None else None


def extract_client_ip(request: Request) -> str | None:
    peer = request.client.host if request.client else None
    trusted = settings.trusted_proxy_ips_set
    if not trusted or (peer is not None and peer in trusted):
        for header in settings.client_ip_header_list:
            value = request.headers.get(header)
            if not value:
                continue
            candidate = _header_candidate(header, value)
            if candidate:
                return candidate
    return peer


def describe_ip_headers(request: Request) -> dict[str, str | None]:
    """Raw values of the headers consulted, for the debug endpoint."""
    headers = {h: request.headers.get(h) for h in settings.client_ip_header_list}
    headers["peer"] = request.client.host if request.client else None
    return headers
