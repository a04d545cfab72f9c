"""
Покупка платных материалов через шлюз (Razorpay checkout).
Flow: POST /orders -> checkout на клиенте -> POST /verify (подпись) и/или webhook от шлюза.
"""
import redis
from fastapi import APIRouter, Depends, Header, Query, Request
from starlette.concurrency import run_in_threadpool

from content_access.api.deps import get_client_ip, get_order_ledger, get_redis, get_requester_id, get_user_agent
from content_access.api.routes.downloads import to_link_out
from content_access.core.config import settings
from content_access.models.order import Order
from content_access.schemas.access import (
    OrderOut,
    PurchaseIn,
    PurchaseOut,
    VerifyPaymentIn,
    VerifyPaymentOut,
    WebhookOut,
)
from content_access.services.idempotency import IdempotencyStore
from content_access.services.orders.service import OrderLedger
from content_access.services.orders.webhooks import handle_webhook
from content_access.utils.clock import as_utc
from content_access.utils.currency import from_minor_units

router = APIRouter(prefix="/payments", tags=["payments"])


def to_order_out(order: Order) -> OrderOut:
    return OrderOut(
        order_id=order.id,
        content_item_id=order.content_item_id,
        provider_order_reference=order.provider_order_reference,
        amount=order.amount,
        price=from_minor_units(order.amount, order.currency),
        currency=order.currency,
        status=order.status,
        created_at=as_utc(order.created_at),
        completed_at=as_utc(order.completed_at),
    )


@router.post("/orders", response_model=PurchaseOut)
def create_order(
    payload: PurchaseIn,
    requester_id: str = Depends(get_requester_id),
    ledger: OrderLedger = Depends(get_order_ledger),
) -> PurchaseOut:
    """InitiatePurchase. Повторная покупка оплаченного: already_purchased=true, не ошибка."""
    result = ledger.create_order(requester_id, payload.content_item_id)
    ledger.db.commit()
    return PurchaseOut(
        order=to_order_out(result.order),
        already_purchased=result.already_purchased,
        key_id=settings.razorpay_key_id or None,
    )


@router.post("/verify", response_model=VerifyPaymentOut)
def verify_payment(
    payload: VerifyPaymentIn,
    requester_id: str = Depends(get_requester_id),
    client_ip: str = Depends(get_client_ip),
    user_agent: str | None = Depends(get_user_agent),
    ledger: OrderLedger = Depends(get_order_ledger),
) -> VerifyPaymentOut:
    """ConfirmPayment: подпись checkout-callback; при успехе сразу отдаём одноразовую ссылку."""
    result = ledger.verify_and_complete(
        payload.provider_order_reference,
        payload.provider_payment_reference,
        payload.signature,
        requester_id=requester_id,
        requester_ip=client_ip,
        user_agent=user_agent,
    )
    ledger.db.commit()
    return VerifyPaymentOut(
        order=to_order_out(result.order),
        already_completed=result.already_completed,
        download=to_link_out(result.token) if result.token is not None else None,
    )


@router.post("/webhook", response_model=WebhookOut)
async def gateway_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(default=None),
    x_razorpay_event_id: str | None = Header(default=None),
    ledger: OrderLedger = Depends(get_order_ledger),
    redis_client: redis.Redis = Depends(get_redis),
) -> WebhookOut:
    """Подпись считается по сырому телу, поэтому читаем body до разбора JSON."""
    body = await request.body()
    outcome, duplicate = await run_in_threadpool(
        handle_webhook,
        ledger,
        body,
        x_razorpay_signature,
        event_id=x_razorpay_event_id,
        store=IdempotencyStore(redis_client),
    )
    if duplicate:
        return WebhookOut(duplicate=True)
    return WebhookOut(event=outcome.event, handled=outcome.handled)


@router.get("/purchases", response_model=list[OrderOut])
def list_purchases(
    limit: int = Query(100, ge=1, le=100),
    requester_id: str = Depends(get_requester_id),
    ledger: OrderLedger = Depends(get_order_ledger),
) -> list[OrderOut]:
    return [to_order_out(order) for order in ledger.list_purchases(requester_id, limit=limit)]
