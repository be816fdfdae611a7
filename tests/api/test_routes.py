"""End-to-end route tests through TestClient (mock provider, SQLite, fakeredis)."""
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlsplit

import pytest
import redis

from app.core.config import settings
from app.models.unlock import UnlockRecord
from app.services.billing_provider.client import sign_params
from app.services.identity.cookie import codec

MOBILE_HEADERS = {"x-forwarded-for": "80.187.10.20"}
WIFI_HEADERS = {"x-forwarded-for": "192.168.1.20"}
UNKNOWN_HEADERS = {"x-forwarded-for": "203.0.113.9"}
ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


def _path(url):
    parts = urlsplit(url)
    return f"{parts.path}?{parts.query}" if parts.query else parts.path


def _follow(client, response, headers=None):
    assert response.status_code == 302, response.text
    return client.get(_path(response.headers["location"]), headers=headers, follow_redirects=False)


def _unlock_via_mock(client, slug):
    """Full happy path: identify -> callback -> initiate -> mock charge -> return leg."""
    start = client.get(f"/identify/start?slug={slug}", headers=MOBILE_HEADERS, follow_redirects=False)
    mock_identify = _follow(client, start, MOBILE_HEADERS)
    callback = _follow(client, mock_identify, MOBILE_HEADERS)
    initiate = _follow(client, callback, MOBILE_HEADERS)
    charge = _follow(client, initiate, MOBILE_HEADERS)
    return start, mock_identify, callback, initiate, charge


class TestHealthAndNetwork:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_ready(self, client):
        body = client.get("/ready").json()
        assert body["status"] == "ready"
        assert body["checks"]["database"] == "ok"
        assert int(body["checks"]["carrier_ranges"]) > 0

    def test_not_ready_when_redis_down(self, client):
        from app.api.routes import deps
        from app.main import app

        broken = MagicMock()
        broken.client.ping.side_effect = redis.ConnectionError("down")
        app.dependency_overrides[deps.get_idempotency_store] = lambda: broken
        response = client.get("/ready")
        assert response.status_code == 503
        assert response.json()["checks"]["redis"] == "ConnectionError"

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "network_classifications_total" in response.text

    def test_detect_mobile(self, client):
        body = client.get("/network/detect", headers=MOBILE_HEADERS).json()
        assert body["network_type"] == "MOBILE"
        assert body["is_mobile"] is True
        assert body["carrier"]["code"] == "262-01"

    def test_detect_wifi(self, client):
        body = client.get("/network/detect", headers=WIFI_HEADERS).json()
        assert body["network_type"] == "WIFI"
        assert body["carrier"] is None

    def test_debug_ip(self, client):
        body = client.get("/debug/ip", headers={"cf-connecting-ip": "80.187.10.20"}).json()
        assert body["resolved_ip"] == "80.187.10.20"
        assert body["headers"]["cf-connecting-ip"] == "80.187.10.20"


class TestArticleAccess:
    def test_unknown_article(self, client):
        response = client.get("/articles/missing/access")
        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": {"code": "ARTICLE_NOT_FOUND", "message": "Article not found."},
        }

    def test_mobile_visitor_gets_identify_cta(self, client, make_article):
        make_article(slug="tram-line")
        body = client.get("/articles/tram-line/access", headers=MOBILE_HEADERS).json()
        assert body["allowed"] is False
        assert body["reason"] == "NEEDS_IDENTIFICATION"
        assert body["cta"] == "IDENTIFY"
        assert body["content"] is None
        assert body["price"] == {"amount": 99, "currency": "EUR"}
        assert body["article"]["slug"] == "tram-line"

    def test_wifi_visitor_gets_switch_to_mobile(self, client, make_article):
        make_article(slug="tram-line")
        body = client.get("/articles/tram-line/access", headers=WIFI_HEADERS).json()
        assert body["cta"] == "SWITCH_TO_MOBILE"
        assert body["price"] is None

    def test_draft_hides_article(self, client, make_article):
        make_article(slug="draft-story", status="draft")
        body = client.get("/articles/draft-story/access", headers=MOBILE_HEADERS).json()
        assert body["reason"] == "NOT_PUBLISHED"
        assert body["article"] is None

    def test_bypass(self, client, make_article, db_session):
        make_article(slug="tram-line")
        body = client.get("/articles/tram-line/access?bypass=qa-bypass-secret", headers=WIFI_HEADERS).json()
        assert body["allowed"] is True
        assert body["reason"] == "BYPASS"
        assert body["content"] == "Full story behind the paywall."
        assert db_session.query(UnlockRecord).count() == 0


class TestIdentificationFlow:
    def test_unknown_network_cannot_start(self, client, make_article):
        make_article(slug="tram-line")
        response = client.get("/identify/start?slug=tram-line", headers=UNKNOWN_HEADERS, follow_redirects=False)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "NETWORK_NOT_ELIGIBLE"

    def test_open_redirect_rejected(self, client, make_article):
        make_article(slug="tram-line")
        response = client.get(
            "/identify/start?slug=tram-line&returnUrl=https://evil.example/",
            headers=MOBILE_HEADERS,
            follow_redirects=False,
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REQUEST"

    def test_full_unlock_with_mock_provider(self, client, make_article):
        make_article(slug="tram-line")
        start, mock_identify, callback, initiate, charge = _unlock_via_mock(client, "tram-line")

        assert urlsplit(start.headers["location"]).path == "/payment/mock/identify"
        assert urlsplit(mock_identify.headers["location"]).path == "/identify/callback"
        assert settings.identity_cookie_name in callback.cookies or client.cookies.get(settings.identity_cookie_name)
        assert urlsplit(callback.headers["location"]).path == "/payment/initiate"
        assert urlsplit(initiate.headers["location"]).path == "/payment/mock/charge"
        return_leg = urlsplit(charge.headers["location"])
        assert return_leg.path == "/payment/callback"
        final = _follow(client, charge, MOBILE_HEADERS)
        assert final.headers["location"] == "/articles/tram-line"

        body = client.get("/articles/tram-line/access", headers=WIFI_HEADERS).json()
        assert body["allowed"] is True
        assert body["reason"] == "UNLOCKED"

        unlocks = client.get("/me/unlocks").json()
        assert len(unlocks) == 1
        assert unlocks[0]["amount"] == 99
        assert unlocks[0]["status"] == "completed"

    def test_replayed_identify_callback_rejected(self, client, make_article):
        make_article(slug="tram-line")
        start = client.get("/identify/start?slug=tram-line", headers=MOBILE_HEADERS, follow_redirects=False)
        mock_identify = _follow(client, start, MOBILE_HEADERS)
        callback_path = _path(mock_identify.headers["location"])
        assert client.get(callback_path, follow_redirects=False).status_code == 302
        replay = client.get(callback_path, follow_redirects=False)
        assert replay.status_code == 403
        assert replay.json()["error"]["code"] == "SESSION_INVALID"

    def test_forged_identify_callback_rejected(self, client, make_article):
        make_article(slug="tram-line")
        start = client.get("/identify/start?slug=tram-line", headers=MOBILE_HEADERS, follow_redirects=False)
        token = parse_qs(urlsplit(start.headers["location"]).query)["token"][0]
        response = client.get(
            f"/identify/callback?token={token}&msisdn=491701234567&status=ok&digest=abc",
            follow_redirects=False,
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"


class TestPaymentRoutes:
    def test_initiate_with_cookie(self, client, make_article):
        make_article(slug="tram-line")
        client.cookies.set(settings.identity_cookie_name, codec.encode("491701234567"))
        response = client.get("/payment/initiate?slug=tram-line", follow_redirects=False)
        assert response.status_code == 302
        assert urlsplit(response.headers["location"]).path == "/payment/mock/charge"

    def test_initiate_without_identity(self, client, make_article):
        make_article(slug="tram-line")
        response = client.get("/payment/initiate?slug=tram-line", follow_redirects=False)
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "NOT_IDENTIFIED"

    def test_initiate_needs_token_or_slug(self, client):
        assert client.get("/payment/initiate", follow_redirects=False).status_code == 400

    def test_server_callback_form_encoded_and_replay(self, client, make_article):
        make_article(slug="tram-line")
        client.cookies.set(settings.identity_cookie_name, codec.encode("491701234567"))
        initiate = client.get("/payment/initiate?slug=tram-line", follow_redirects=False)
        tid = parse_qs(urlsplit(initiate.headers["location"]).query)["tid"][0]

        payload = sign_params({"tid": tid, "status": "success", "reference": "R-1"})
        first = client.post("/payment/callback", data=payload)
        second = client.post("/payment/callback", data=payload)
        assert first.json() == {"success": True, "transaction_id": tid, "status": "completed"}
        assert second.json() == first.json()

    def test_server_callback_json(self, client, make_article):
        make_article(slug="tram-line")
        client.cookies.set(settings.identity_cookie_name, codec.encode("491701234567"))
        initiate = client.get("/payment/initiate?slug=tram-line", follow_redirects=False)
        tid = parse_qs(urlsplit(initiate.headers["location"]).query)["tid"][0]
        response = client.post("/payment/callback", json=sign_params({"tid": tid, "status": "failed"}))
        assert response.json()["status"] == "failed"

    def test_callback_for_unknown_transaction(self, client):
        response = client.post("/payment/callback", data=sign_params({"tid": "TXN-FORGED", "status": "success"}))
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "TRANSACTION_NOT_FOUND"

    def test_callback_bad_signature(self, client):
        response = client.post("/payment/callback", data={"tid": "TXN-1", "status": "success", "digest": "00"})
        assert response.status_code == 401

    @pytest.mark.parametrize("next_url", ["https://evil.example/", "//evil.example"])
    def test_return_leg_never_redirects_offsite(self, client, next_url):
        response = client.get("/payment/callback", params={"tid": "TXN-1", "next": next_url}, follow_redirects=False)
        assert response.headers["location"] == "/"


class TestMe:
    def test_me_anonymous(self, client):
        assert client.get("/me").json() == {"identified": False, "msisdn": None}

    def test_me_identified_is_masked(self, client):
        client.cookies.set(settings.identity_cookie_name, codec.encode("491701234567"))
        body = client.get("/me").json()
        assert body["identified"] is True
        assert body["msisdn"] != "491701234567"
        assert body["msisdn"].endswith("567")

    def test_unlocks_requires_identity(self, client):
        assert client.get("/me/unlocks").status_code == 401

    def test_logout_clears_cookie(self, client):
        response = client.post("/me/logout")
        assert response.json() == {"success": True}
        assert "max-age=0" in response.headers["set-cookie"].lower()


class TestAdmin:
    def test_requires_key(self, client):
        assert client.get("/admin/stats").status_code == 401
        assert client.get("/admin/stats", headers={"X-Admin-Key": "wrong"}).status_code == 401

    def test_stats_and_refund(self, client, make_article):
        make_article(slug="tram-line")
        _unlock_via_mock(client, "tram-line")
        stats = client.get("/admin/stats", headers=ADMIN_HEADERS).json()
        assert stats["completed_unlocks"] == 1
        assert stats["revenue_minor_units"] == 99

        tid = client.get("/me/unlocks").json()[0]["transaction_id"]
        refund = client.post(f"/admin/transactions/{tid}/refund", json={"reason": "complaint"}, headers=ADMIN_HEADERS)
        assert refund.status_code == 200
        assert refund.json()["status"] == "refunded"

        body = client.get("/articles/tram-line/access", headers=MOBILE_HEADERS).json()
        assert body["reason"] == "NOT_UNLOCKED"
        assert body["cta"] == "PAY"

        again = client.post(f"/admin/transactions/{tid}/refund", json={"reason": "again"}, headers=ADMIN_HEADERS)
        assert again.status_code == 400

    def test_refund_unknown(self, client):
        response = client.post("/admin/transactions/TXN-X/refund", json={"reason": "x"}, headers=ADMIN_HEADERS)
        assert response.status_code == 404

    def test_settings_round_trip_busts_cache(self, client, make_article):
        assert client.get("/admin/settings/article_price_cents", headers=ADMIN_HEADERS).json()["value"] == 99
        put = client.put("/admin/settings/article_price_cents", json={"value": 149}, headers=ADMIN_HEADERS)
        assert put.json() == {"key": "article_price_cents", "value": 149}
        assert client.get("/admin/settings/article_price_cents", headers=ADMIN_HEADERS).json()["value"] == 149

        make_article(slug="tram-line")
        body = client.get("/articles/tram-line/access", headers=MOBILE_HEADERS).json()
        assert body["price"]["amount"] == 149

    @pytest.mark.parametrize(
        "key, value",
        [("article_price_cents", -1), ("article_price_cents", "99"), ("article_currency", "EURO"), ("unknown", 1)],
    )
    def test_settings_validation(self, client, key, value):
        response = client.put(f"/admin/settings/{key}", json={"value": value}, headers=ADMIN_HEADERS)
        assert response.status_code == 400
