"""
DTO paywall: классификация доступа, EntitlementContext (вход decide_entitlement),
EntitlementDecision, ContentItemView (валидированный материал каталога), DeliveryPointer.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from content_access.core.errors import ValidationFailed


# ----- Закрытые множества (tagged variants, не свободные строки) -----


class AccessClassification(str, Enum):
    FREE = "free"
    VAULT_RESTRICTED = "vault_restricted"
    PAID = "paid"

    @classmethod
    def parse(cls, raw: Any) -> "AccessClassification":
        """
        Строгий разбор значения из каталога/клиента.
        Неизвестное значение: ValidationFailed, никогда не «по умолчанию free».
        """
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str):
            raise ValidationFailed("access classification must be a string")
        normalized = raw.strip().lower()
        normalized = _LEGACY_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationFailed(f"unknown access classification: {raw!r}") from None


# Старый каталог называл vault-материалы drive_protected
_LEGACY_ALIASES = {
    "drive_protected": AccessClassification.VAULT_RESTRICTED.value,
}


class Entitlement(str, Enum):
    DENIED = "denied"
    ALLOW_DIRECT = "allow_direct"
    ALLOW_VIA_EXTERNAL_VAULT = "allow_via_external_vault"


# ----- Материал каталога (только чтение) -----


class ContentItemView(BaseModel):
    """Материал каталога после валидации инвариантов (цена только у paid, vault-ссылка только у vault)."""

    id: str
    title: str = ""
    classification: AccessClassification
    price: Decimal = Decimal("0")
    currency: str
    external_vault_reference: str | None = None
    storage_reference: str | None = None

    model_config = {"frozen": True}


# ----- Вход для decide_entitlement (единый контракт) -----


class EntitlementContext(BaseModel):
    """Всё, что нужно чистой функции: классификация материала и факт завершённой оплаты."""

    requester_id: str
    content_item_id: str
    classification: AccessClassification
    # True, если в ledger есть completed-заказ этого requester на этот материал (refunded не считается)
    has_completed_order: bool = False
    price: Decimal = Decimal("0")
    currency: str | None = None
    external_vault_reference: str | None = None

    model_config = {"frozen": True}


# ----- Решение (чистая логика, без I/O) -----


class EntitlementDecision(BaseModel):
    """Результат decide_entitlement."""

    entitlement: Entitlement
    content_item_id: str
    classification: AccessClassification
    vault_reference: str | None = Field(
        None,
        description="Только для allow_via_external_vault: ссылка во внешнее хранилище, токен не нужен",
    )
    price: Decimal | None = Field(None, description="Только для denied: сколько стоит покупка")
    currency: str | None = None

    model_config = {"frozen": True}

    @property
    def allowed(self) -> bool:
        return self.entitlement != Entitlement.DENIED


# ----- Результат погашения токена (для Delivery Adapter) -----


class DeliveryPointer(BaseModel):
    """Проверенный указатель, по которому Delivery Adapter отдаёт байты или редиректит во vault."""

    kind: Literal["storage", "vault"]
    reference: str
    content_item_id: str
    redeemed_at: datetime

    model_config = {"frozen": True}
