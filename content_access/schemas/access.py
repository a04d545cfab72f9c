from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class EntitlementOut(BaseModel):
    content_item_id: str
    classification: str
    entitlement: str
    vault_reference: str | None = None
    price: Decimal | None = None
    currency: str | None = None


class PurchaseIn(BaseModel):
    content_item_id: str = Field(..., min_length=1, max_length=128)


class OrderOut(BaseModel):
    order_id: str
    content_item_id: str
    provider_order_reference: str
    amount: int
    price: Decimal
    currency: str
    status: str
    created_at: datetime | None = None
    completed_at: datetime | None = None


class PurchaseOut(BaseModel):
    order: OrderOut
    already_purchased: bool = False
    # Публичный ключ для checkout-виджета шлюза
    key_id: str | None = None


class VerifyPaymentIn(BaseModel):
    provider_order_reference: str = Field(..., min_length=1, max_length=128)
    provider_payment_reference: str = Field(..., min_length=1, max_length=128)
    signature: str = Field(..., min_length=1, max_length=256)


class DownloadLinkOut(BaseModel):
    token_id: str
    token: str
    content_item_id: str
    expires_at: datetime
    download_url: str


class VerifyPaymentOut(BaseModel):
    order: OrderOut
    already_completed: bool = False
    download: DownloadLinkOut | None = None


class DownloadLinkIn(BaseModel):
    content_item_id: str = Field(..., min_length=1, max_length=128)


class OperatorLinkIn(BaseModel):
    requester_id: str = Field(..., min_length=1, max_length=160)
    content_item_id: str = Field(..., min_length=1, max_length=128)
    ttl_seconds: int | None = None


class RedemptionOut(BaseModel):
    kind: str
    reference: str
    content_item_id: str
    redeemed_at: datetime


class RefundIn(BaseModel):
    refund_at_gateway: bool = False


class WebhookOut(BaseModel):
    received: bool = True
    event: str | None = None
    handled: bool = False
    duplicate: bool = False
