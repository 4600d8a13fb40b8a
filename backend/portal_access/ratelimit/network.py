import ipaddress
from typing import Iterable

from fastapi import Request

UNKNOWN_IP = "unknown-ip"


def _parse_ip(value: str | None) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    if not value:
        return None
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError:
        return None


def client_ip(request: Request, trusted_proxies: Iterable[str]) -> str:
    """Best-effort client address for rate limiting.

    Forwarding headers are only honoured when the direct peer is a trusted
    proxy; otherwise a client could pick its own key by sending them.
    ``X-Forwarded-For`` is walked from the right, skipping our own proxies:
    the first other address is the one the outermost trusted hop saw, and
    everything left of it was supplied by the client.
    """
    peer = request.client.host if request.client else None
    peer_ip = _parse_ip(peer)
    trusted = {ip for ip in map(_parse_ip, trusted_proxies) if ip is not None}

    if peer_ip is None:
        return peer or UNKNOWN_IP
    if peer_ip not in trusted:
        return str(peer_ip)

    forwarded = request.headers.get("x-forwarded-for", "")
    for candidate in reversed(forwarded.split(",")):
        address = _parse_ip(candidate)
        if address is not None and address not in trusted:
            return str(address)

    real_ip = _parse_ip(request.headers.get("x-real-ip"))
    if real_ip is not None and real_ip not in trusted:
        return str(real_ip)
    return str(peer_ip)
