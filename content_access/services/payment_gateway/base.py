"""
Base classes and types for payment gateway clients.
Подписи считаются детерминированно: HMAC-SHA256 от "order_id|payment_id" общим секретом со шлюзом.
"""
import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

# Статусы платежа у шлюза, при которых деньги считаются списанными
SETTLED_PAYMENT_STATUSES = frozenset({"captured", "authorized"})


@dataclass
class GatewayOrder:
    """Заказ, созданный на стороне шлюза."""
    id: str
    amount: int
    currency: str
    receipt: str | None = None
    status: str | None = None


@dataclass
class GatewayPayment:
    """Платёж по данным шлюза (fetch payment)."""
    id: str
    order_id: str | None
    status: str
    method: str | None = None
    amount: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def settled(self) -> bool:
        return self.status in SETTLED_PAYMENT_STATUSES


def compute_payment_signature(secret: str, provider_order_reference: str, provider_payment_reference: str) -> str:
    message = f"{provider_order_reference}|{provider_payment_reference}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def compute_webhook_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def signatures_match(expected: str, received: str | None) -> bool:
    """Сравнение за постоянное время; пустая подпись: всегда mismatch."""
    if not received or not expected:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.strip().encode("utf-8"))


class PaymentGateway(ABC):
    @abstractmethod
    def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict[str, str] | None = None,
    ) -> GatewayOrder:
        """amount: в минимальных единицах валюты."""
        raise NotImplementedError

    @abstractmethod
    def fetch_payment(self, provider_payment_reference: str) -> GatewayPayment:
        raise NotImplementedError

    @abstractmethod
    def refund_payment(
        self,
        provider_payment_reference: str,
        amount: int | None = None,
        notes: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def verify_payment_signature(
        self,
        provider_order_reference: str,
        provider_payment_reference: str,
        signature: str | None,
    ) -> bool:
        raise NotImplementedError

    @abstractmethod
    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        raise NotImplementedError
