"""
Razorpay client using httpx sync client.
Все вызовы идут через circuit breaker (состояние в Redis, общее для реплик) и с ограниченным таймаутом.
Таймаут -> UpstreamTimeout, 5xx/сеть/открытый breaker -> GatewayError, нет ключей -> GatewayNotConfigured.
"""
import logging
import time
from typing import Any

import httpx
import pybreaker

from content_access.core.config import settings
from content_access.core.errors import GatewayError, GatewayNotConfigured, UpstreamTimeout
from content_access.services.circuit_breaker import get_circuit_breaker
from content_access.services.payment_gateway.base import (
    GatewayOrder,
    GatewayPayment,
    PaymentGateway,
    compute_payment_signature,
    compute_webhook_signature,
    signatures_match,
)
from content_access.utils.metrics import gateway_request_duration_seconds, gateway_requests_total

logger = logging.getLogger(__name__)

BREAKER_NAME = "payment_gateway"


class _GatewayRejected(Exception):
    """4xx от шлюза: ошибка запроса, на breaker не влияет."""

    def __init__(self, status_code: int, description: str):
        super().__init__(description)
        self.status_code = status_code
        self.description = description


class RazorpayClient(PaymentGateway):
    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        webhook_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self._key_id = key_id if key_id is not None else settings.razorpay_key_id
        self._key_secret = key_secret if key_secret is not None else settings.razorpay_key_secret
        self._webhook_secret = webhook_secret if webhook_secret is not None else settings.razorpay_webhook_secret
        self._base_url = (base_url or settings.razorpay_api_base).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.payment_gateway_timeout
        self._client: httpx.Client | None = None
        self._transport = transport
        self._breaker = breaker

    @property
    def configured(self) -> bool:
        return bool(self._key_id and self._key_secret)

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self._base_url,
                auth=(self._key_id, self._key_secret),
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    @property
    def breaker(self) -> pybreaker.CircuitBreaker:
        if self._breaker is None:
            self._breaker = get_circuit_breaker(BREAKER_NAME, exclude=[_GatewayRejected])
        return self._breaker

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(self, http_method: str, path: str, payload: dict[str, Any] | None) -> dict[str, Any]:
        resp = self.client.request(http_method, path, json=payload)
        if resp.status_code >= 500:
            resp.raise_for_status()
        if resp.status_code >= 400:
            try:
                description = resp.json().get("error", {}).get("description") or resp.text
            except ValueError:
                description = resp.text
            raise _GatewayRejected(resp.status_code, description)
        return resp.json()

    def _request(self, method: str, http_method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self.configured:
            raise GatewayNotConfigured("payment service is not configured")
        start = time.monotonic()
        status = "ok"
        try:
            return self.breaker.call(self._send, http_method, path, payload)
        except httpx.TimeoutException:
            status = "timeout"
            logger.warning("gateway_timeout", extra={"method": method})
            raise UpstreamTimeout("payment gateway did not respond in time") from None
        except pybreaker.CircuitBreakerError:
            status = "circuit_open"
            raise GatewayError("payment gateway is temporarily unavailable") from None
        except _GatewayRejected as e:
            status = str(e.status_code)
            logger.warning("gateway_rejected", extra={"method": method, "status_code": e.status_code, "error": e.description})
            raise GatewayError("payment gateway rejected the request") from None
        except httpx.HTTPError as e:
            status = "error"
            logger.warning("gateway_transport_error", extra={"method": method, "error": type(e).__name__})
            raise GatewayError("payment gateway request failed") from None
        finally:
            gateway_requests_total.labels(method=method, status=status).inc()
            gateway_request_duration_seconds.labels(method=method).observe(time.monotonic() - start)

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------

    def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict[str, str] | None = None,
    ) -> GatewayOrder:
        data = self._request(
            "create_order",
            "POST",
            "/orders",
            {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}},
        )
        if not data.get("id"):
            raise GatewayError("invalid order response from payment gateway")
        return GatewayOrder(
            id=data["id"],
            amount=int(data.get("amount", amount)),
            currency=data.get("currency", currency),
            receipt=data.get("receipt"),
            status=data.get("status"),
        )

    def fetch_payment(self, provider_payment_reference: str) -> GatewayPayment:
        data = self._request("fetch_payment", "GET", f"/payments/{provider_payment_reference}")
        return GatewayPayment(
            id=data.get("id", provider_payment_reference),
            order_id=data.get("order_id"),
            status=data.get("status", "unknown"),
            method=data.get("method"),
            amount=data.get("amount"),
            raw=data,
        )

    def refund_payment(
        self,
        provider_payment_reference: str,
        amount: int | None = None,
        notes: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if amount:
            payload["amount"] = amount
        if notes:
            payload["notes"] = notes
        return self._request("refund_payment", "POST", f"/payments/{provider_payment_reference}/refund", payload)

    def verify_payment_signature(
        self,
        provider_order_reference: str,
        provider_payment_reference: str,
        signature: str | None,
    ) -> bool:
        if not self._key_secret:
            raise GatewayNotConfigured("payment service is not configured")
        expected = compute_payment_signature(self._key_secret, provider_order_reference, provider_payment_reference)
        return signatures_match(expected, signature)

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        # Без секрета webhook не принимаем (fail closed)
        if not self._webhook_secret:
            logger.warning("webhook_secret_not_configured")
            return False
        expected = compute_webhook_signature(self._webhook_secret, body)
        return signatures_match(expected, signature)


_default_client: RazorpayClient | None = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency: один клиент на процесс (httpx пул соединений)."""
    global _default_client
    if _default_client is None:
        _default_client = RazorpayClient()
    return _default_client


def close_payment_gateway() -> None:
    """Закрыть httpx-пул при остановке процесса."""
    global _default_client
    if _default_client is not None:
        _default_client.close()
        _default_client = None
