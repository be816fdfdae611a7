"""
Billing provider client (DIMOCO-style carrier billing) using httpx sync client.

Wire format: GET query parameters action/merchant/order plus action fields.
Every parameter set, outbound and inbound, carries `digest`: hex HMAC-SHA256
over the key-sorted `key=value` pairs joined by '&' (digest itself excluded).
Responses are `key=value&...` or JSON; keys are lower-cased on parse.

In mock mode no HTTP leaves the process: redirects point at the local
/payment/mock/* routes, which sign their callbacks with the same secret.
"""
import hashlib
import hmac
import json
import logging
import time
from decimal import Decimal
from typing import Mapping
from urllib.parse import parse_qsl, urlencode

import httpx
import pybreaker
from pydantic import BaseModel

from app.core.config import settings
from app.core.errors import InvalidSignature, ProviderError, ProviderTimeout
from app.services.circuit_breaker import get_circuit_breaker
from app.utils.metrics import provider_request_duration_seconds, provider_requests_total

logger = logging.getLogger(__name__)

BREAKER_NAME = "billing_provider"
OK_STATUSES = frozenset({"ok", "success"})


def compute_digest(params: Mapping[str, object], secret: str) -> str:
    message = "&".join(
        f"{key}={'' if params[key] is None else params[key]}"
        for key in sorted(params)
        if key != "digest"
    )
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def sign_params(params: Mapping[str, object], secret: str | None = None) -> dict[str, str]:
    """Drop empty values, stringify, add digest."""
    clean = {k: str(v) for k, v in params.items() if v is not None and k != "digest"}
    clean["digest"] = compute_digest(clean, secret or settings.provider_secret)
    return clean


def verify_params(params: Mapping[str, object], secret: str | None = None) -> bool:
    received = params.get("digest")
    if not received:
        return False
    expected = compute_digest(params, secret or settings.provider_secret)
    return hmac.compare_digest(expected, str(received))


def parse_response(text: str) -> dict[str, str]:
    """Provider answers in JSON or urlencoded pairs; keys are lower-cased."""
    text = (text or "").strip()
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if isinstance(data, dict):
            return {str(k).lower(): "" if v is None else str(v) for k, v in data.items()}
    return {k.lower(): v for k, v in parse_qsl(text, keep_blank_values=True)}


def format_amount(amount_minor: int) -> str:
    """99 -> '0.99'. The provider expects major units."""
    return f"{Decimal(amount_minor) / 100:.2f}"


class StartResult(BaseModel):
    transaction_id: str
    redirect_url: str
    msisdn: str | None = None

    model_config = {"frozen": True}


class RefundResult(BaseModel):
    transaction_id: str
    refund_id: str

    model_config = {"frozen": True}


class BillingProviderClient:
    """
    Sync client: works the same from request handlers and Celery workers.
    Network failures and 5xx answers count against the shared circuit breaker.
    """

    def __init__(
        self,
        http_client: httpx.Client | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self._client = http_client
        self._breaker = breaker
        self.mode = settings.provider_mode
        self.api_url = settings.provider_api_url
        self.name = settings.provider_name

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=settings.provider_timeout)
        return self._client

    @property
    def breaker(self) -> pybreaker.CircuitBreaker:
        if self._breaker is None:
            self._breaker = get_circuit_breaker(BREAKER_NAME)
        return self._breaker

    @property
    def is_mock(self) -> bool:
        return self.mode == "mock"

    def _base_params(self, action: str) -> dict[str, str]:
        return {
            "action": action,
            "merchant": settings.provider_merchant_id,
            "order": settings.provider_order_id,
        }

    def _mock_url(self, path: str, params: Mapping[str, object]) -> str:
        return f"{settings.public_base_url.rstrip('/')}{path}?{urlencode(sign_params(params))}"

    def _record_request(self, action: str, status: str, duration: float) -> None:
        provider_requests_total.labels(action=action, status=status).inc()
        provider_request_duration_seconds.labels(action=action).observe(duration)

    def _http_get(self, params: dict[str, str]) -> str:
        resp = self.client.get(self.api_url, params=params, headers={"Accept": "application/x-www-form-urlencoded"})
        resp.raise_for_status()
        return resp.text

    def _call(self, action: str, params: dict[str, str], transaction_id: str | None = None) -> dict[str, str]:
        """Signed GET through the breaker. Returns the parsed provider answer."""
        start = time.time()
        try:
            text = self.breaker.call(self._http_get, sign_params(params))
        except httpx.TimeoutException as e:
            self._record_request(action, "timeout", time.time() - start)
            logger.error(
                "provider_request_timeout",
                extra={"provider": self.name, "action": action, "transaction_id": transaction_id},
            )
            raise ProviderTimeout(f"{action} timed out", transaction_id=transaction_id) from e
        except pybreaker.CircuitBreakerError as e:
            self._record_request(action, "circuit_open", time.time() - start)
            logger.error(
                "provider_circuit_open",
                extra={"provider": self.name, "action": action, "transaction_id": transaction_id},
            )
            raise ProviderError(f"{action}: circuit open", transaction_id=transaction_id) from e
        except httpx.HTTPError as e:
            self._record_request(action, "error", time.time() - start)
            logger.error(
                "provider_request_failed",
                extra={
                    "provider": self.name,
                    "action": action,
                    "transaction_id": transaction_id,
                    "error": type(e).__name__,
                },
            )
            raise ProviderError(f"{action} failed: {type(e).__name__}", transaction_id=transaction_id) from e

        result = parse_response(text)
        status = result.get("status", "").lower()
        self._record_request(action, "success" if status in OK_STATUSES else "rejected", time.time() - start)
        return result

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def build_identify_url(self, token: str, callback_url: str) -> str:
        """Browser redirect that makes the carrier assert the MSISDN to the provider."""
        params = {**self._base_params("identify"), "returnurl": callback_url, "token": token}
        if self.is_mock:
            return self._mock_url("/payment/mock/identify", params)
        return f"{self.api_url}?{urlencode(sign_params(params))}"

    def start_payment(
        self,
        transaction_id: str,
        amount: int,
        currency: str,
        description: str,
        article_id: str,
        return_url: str,
        error_url: str,
        callback_url: str,
        msisdn: str | None = None,
    ) -> StartResult:
        """Open a charge; returns the provider page the visitor must be sent to."""
        params = {
            **self._base_params("start"),
            "tid": transaction_id,
            "amount": format_amount(amount),
            "currency": currency,
            "description": description[:50],
            "returnurl": return_url,
            "errorurl": error_url,
            "callbackurl": callback_url,
            "redirect": "1",
            "custom1": article_id,
            "msisdn": msisdn,
        }
        if self.is_mock:
            self._record_request("start", "success", 0.0)
            return StartResult(
                transaction_id=transaction_id,
                redirect_url=self._mock_url("/payment/mock/charge", params),
                msisdn=msisdn,
            )

        result = self._call("start", params, transaction_id=transaction_id)
        redirect_url = result.get("redirect_url") or result.get("redirecturl") or result.get("url")
        if result.get("status", "").lower() not in OK_STATUSES and not redirect_url:
            logger.warning(
                "provider_start_rejected",
                extra={
                    "provider": self.name,
                    "transaction_id": transaction_id,
                    "error_code": result.get("errorcode") or result.get("error"),
                },
            )
            raise ProviderError(
                f"start rejected: {result.get('errormessage') or result.get('error') or 'unknown'}",
                transaction_id=transaction_id,
            )
        if not redirect_url:
            raise ProviderError("start accepted without redirect url", transaction_id=transaction_id)
        return StartResult(transaction_id=transaction_id, redirect_url=redirect_url, msisdn=result.get("msisdn") or msisdn)

    def refund(self, transaction_id: str, amount: int, reason: str | None = None) -> RefundResult:
        params = {
            **self._base_params("refund"),
            "tid": transaction_id,
            "amount": format_amount(amount),
            "reason": reason or "Customer refund",
        }
        if self.is_mock:
            self._record_request("refund", "success", 0.0)
            return RefundResult(transaction_id=transaction_id, refund_id=transaction_id)

        result = self._call("refund", params, transaction_id=transaction_id)
        if result.get("status", "").lower() not in OK_STATUSES:
            raise ProviderError(
                f"refund rejected: {result.get('errormessage') or result.get('error') or 'unknown'}",
                transaction_id=transaction_id,
            )
        return RefundResult(
            transaction_id=transaction_id,
            refund_id=result.get("refund_id") or result.get("refundid") or transaction_id,
        )

    def verify_callback(self, params: Mapping[str, object], **context) -> None:
        """Inbound provider parameters must carry a valid digest."""
        if not verify_params(params):
            logger.warning(
                "provider_callback_bad_signature",
                extra={"provider": self.name, **{k: v for k, v in context.items() if k in ("token", "transaction_id")}},
            )
            raise InvalidSignature("callback digest mismatch", **context)
