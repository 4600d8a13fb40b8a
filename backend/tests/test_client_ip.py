from starlette.requests import Request

from portal_access.ratelimit import client_ip

TRUSTED = ["127.0.0.1", "::1", "10.0.0.254"]


def make_request(peer: str | None, headers: dict[str, str] | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/auth/login",
        "headers": [
            (name.lower().encode(), value.encode()) for name, value in (headers or {}).items()
        ],
        "client": (peer, 5000) if peer else None,
    }
    return Request(scope)


def test_untrusted_peer_ignores_forwarding_headers() -> None:
    request = make_request("203.0.113.9", {"X-Forwarded-For": "198.51.100.1"})

    assert client_ip(request, TRUSTED) == "203.0.113.9"


def test_trusted_proxy_uses_rightmost_untrusted_forwarded_address() -> None:
    request = make_request(
        "127.0.0.1",
        {"X-Forwarded-For": "198.51.100.7, 203.0.113.20, 10.0.0.254"},
    )

    assert client_ip(request, TRUSTED) == "203.0.113.20"


def test_private_clients_behind_proxy_get_distinct_addresses() -> None:
    first = make_request("127.0.0.1", {"X-Forwarded-For": "10.1.2.3"})
    second = make_request("127.0.0.1", {"X-Forwarded-For": "10.9.9.9"})

    assert client_ip(first, TRUSTED) == "10.1.2.3"
    assert client_ip(second, TRUSTED) == "10.9.9.9"


def test_client_supplied_prefix_is_ignored() -> None:
    request = make_request("127.0.0.1", {"X-Forwarded-For": "1.1.1.1, 192.168.5.5"})

    assert client_ip(request, TRUSTED) == "192.168.5.5"


def test_trusted_proxy_falls_back_to_real_ip_header() -> None:
    request = make_request(
        "::1", {"X-Forwarded-For": "garbage, 127.0.0.1", "X-Real-IP": "198.51.100.4"}
    )

    assert client_ip(request, TRUSTED) == "198.51.100.4"


def test_trusted_proxy_without_headers_uses_peer() -> None:
    assert client_ip(make_request("127.0.0.1"), TRUSTED) == "127.0.0.1"


def test_missing_peer_is_unknown() -> None:
    assert client_ip(make_request(None), TRUSTED) == "unknown-ip"
