"""Tests for client IP extraction: header precedence and trusted proxies."""
from unittest.mock import patch

from starlette.requests import Request

from app.network.client_ip import describe_ip_headers, extract_client_ip


def _request(headers=None, peer="10.0.0.1"):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (peer, 12345) if peer else None,
    }
    return Request(scope)


class TestHeaderPrecedence:
    def test_connecting_ip_header_wins(self):
        request = _request({
            "cf-connecting-ip": "80.187.1.1",
            "x-forwarded-for": "1.1.1.1, 2.2.2.2",
            "x-real-ip": "3.3.3.3",
        })
        assert extract_client_ip(request) == "80.187.1.1"

    def test_forwarded_for_first_hop(self):
        request = _request({"x-forwarded-for": "80.187.1.1, 10.0.0.2", "x-real-ip": "3.3.3.3"})
        assert extract_client_ip(request) == "80.187.1.1"

    def test_real_ip_header(self):
        assert extract_client_ip(_request({"x-real-ip": "3.3.3.3"})) == "3.3.3.3"

    def test_peer_fallback(self):
        assert extract_client_ip(_request(peer="9.9.9.9")) == "9.9.9.9"

    def test_no_peer_and_no_headers(self):
        assert extract_client_ip(_request(peer=None)) is None

    def test_garbage_header_falls_through(self):
        request = _request({"cf-connecting-ip": "garbage", "x-real-ip": "3.3.3.3"})
        assert extract_client_ip(request) == "3.3.3.3"

    def test_ip_with_port(self):
        assert extract_client_ip(_request({"x-real-ip": "3.3.3.3:4444"})) == "3.3.3.3"


class TestTrustedProxies:
    def test_headers_ignored_from_untrusted_peer(self):
        with patch("app.network.client_ip.settings") as mock_settings:
            mock_settings.trusted_proxy_ips_set = {"10.0.0.254"}
            mock_settings.client_ip_header_list = ["x-forwarded-for"]
            request = _request({"x-forwarded-for": "80.187.1.1"}, peer="10.0.0.1")
            assert extract_client_ip(request) == "10.0.0.1"

    def test_headers_honoured_from_trusted_peer(self):
        with patch("app.network.client_ip.settings") as mock_settings:
            mock_settings.trusted_proxy_ips_set = {"10.0.0.254"}
            mock_settings.client_ip_header_list = ["x-forwarded-for"]
            request = _request({"x-forwarded-for": "80.187.1.1"}, peer="10.0.0.254")
            assert extract_client_ip(request) == "80.187.1.1"


def test_describe_ip_headers():
    described = describe_ip_headers(_request({"x-real-ip": "3.3.3.3"}, peer="10.0.0.1"))
    assert described["x-real-ip"] == "3.3.3.3"
    assert described["cf-connecting-ip"] is None
    assert described["peer"] == "10.0.0.1"
