"""
Таксономия ошибок доступа/оплаты/скачивания.
Каждая ошибка несёт стабильный code, HTTP-статус и подсказку клиенту (remediation):
«оплатить», «повторить позже» или «запросить новую ссылку».
Сообщения не содержат чужих идентификаторов и деталей чужих заказов.
"""
from __future__ import annotations

from enum import Enum
from typing import Any


class Remediation(str, Enum):
    PAY = "pay"
    RETRY = "retry"
    REQUEST_NEW_LINK = "request_new_link"
    CONTACT_SUPPORT = "contact_support"
    NONE = "none"


class AccessError(Exception):
    """Базовая ошибка подсистемы. Наследники задают code/http_status/remediation."""

    code = "access_error"
    http_status = 400
    remediation = Remediation.NONE
    retryable = False

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        # Только безопасные для клиента поля (цена, валюта, expires_at и т.п.)
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "error": self.code,
            "detail": self.message,
            "remediation": self.remediation.value,
            "retryable": self.retryable,
        }
        if self.context:
            body.update(self.context)
        return body


class PolicyDenied(AccessError):
    code = "policy_denied"
    http_status = 403
    remediation = Remediation.PAY


class ValidationFailed(AccessError):
    code = "validation_failed"
    http_status = 400


class ContentNotFound(AccessError):
    code = "content_not_found"
    http_status = 404


class OrderNotFound(AccessError):
    code = "order_not_found"
    http_status = 404


class SignatureInvalid(AccessError):
    """Терминальная ошибка безопасности: заказ помечен failed, повторов нет."""

    code = "signature_invalid"
    http_status = 400
    remediation = Remediation.PAY


class InvalidTransition(AccessError):
    """Попытка перевести заказ из терминального/неподходящего статуса."""

    code = "invalid_transition"
    http_status = 409


class TokenNotFound(AccessError):
    code = "token_not_found"
    http_status = 404
    remediation = Remediation.REQUEST_NEW_LINK


class TokenExpired(AccessError):
    code = "token_expired"
    http_status = 410
    remediation = Remediation.REQUEST_NEW_LINK


class TokenAlreadyUsed(AccessError):
    code = "token_already_used"
    http_status = 409
    remediation = Remediation.REQUEST_NEW_LINK


class TokenIssueFailed(AccessError):
    code = "token_issue_failed"
    http_status = 500
    remediation = Remediation.RETRY
    retryable = True


class UpstreamTimeout(AccessError):
    """Шлюз не ответил вовремя. Заказ (если был): failed, можно начать новую покупку."""

    code = "upstream_timeout"
    http_status = 503
    remediation = Remediation.RETRY
    retryable = True


class GatewayError(AccessError):
    code = "gateway_error"
    http_status = 502
    remediation = Remediation.RETRY
    retryable = True


class GatewayNotConfigured(AccessError):
    code = "gateway_not_configured"
    http_status = 503
    remediation = Remediation.CONTACT_SUPPORT


class RateLimited(AccessError):
    code = "rate_limited"
    http_status = 429
    remediation = Remediation.RETRY
    retryable = True


class PaymentNotCaptured(AccessError):
    """Подпись верна, но шлюз не подтвердил списание (статус не captured/authorized)."""

    code = "payment_not_captured"
    http_status = 402
    remediation = Remediation.PAY
