"""
Обработка webhook-событий шлюза: подпись сырого тела, дедупликация повторных доставок, переходы заказа.

payment.captured / order.paid -> complete_from_webhook
payment.failed                -> fail_from_webhook
Остальные события подтверждаем и игнорируем.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any

import redis

from content_access.core.errors import SignatureInvalid, ValidationFailed
from content_access.services.idempotency import IdempotencyStore
from content_access.services.orders.service import OrderLedger
from content_access.utils.metrics import signature_failures_total

logger = logging.getLogger(__name__)

CAPTURE_EVENTS = frozenset({"payment.captured", "order.paid"})
FAILURE_EVENTS = frozenset({"payment.failed"})


@dataclass
class WebhookOutcome:
    event: str
    handled: bool
    order_id: str | None = None
    status: str | None = None


def _entity(event: dict[str, Any], name: str) -> dict[str, Any]:
    payload = event.get("payload") or {}
    return (payload.get(name) or {}).get("entity") or {}


def extract_event_key(event: dict[str, Any], header_event_id: str | None = None) -> str:
    """Ключ дедупликации повторных доставок: id события шлюза, иначе событие + платёж."""
    if header_event_id:
        return f"webhook:{header_event_id}"
    payment = _entity(event, "payment")
    order = _entity(event, "order")
    return f"webhook:{event.get('event')}:{payment.get('id') or order.get('id')}"


def process_gateway_event(ledger: OrderLedger, event: dict[str, Any]) -> WebhookOutcome:
    name = event.get("event")
    if not isinstance(name, str) or not name:
        raise ValidationFailed("webhook event name is missing")

    payment = _entity(event, "payment")
    order_entity = _entity(event, "order")
    provider_order_reference = payment.get("order_id") or order_entity.get("id")
    provider_payment_reference = payment.get("id")

    if name in CAPTURE_EVENTS:
        if not provider_order_reference or not provider_payment_reference:
            raise ValidationFailed("webhook payload lacks order or payment reference")
        result = ledger.complete_from_webhook(
            provider_order_reference,
            provider_payment_reference,
            payment_method=payment.get("method"),
        )
        if result is None:
            return WebhookOutcome(event=name, handled=False)
        logger.info(
            "webhook_payment_captured",
            extra={"order_id": result.order.id, "event": name, "status": result.order.status},
        )
        return WebhookOutcome(event=name, handled=True, order_id=result.order.id, status=result.order.status)

    if name in FAILURE_EVENTS:
        if not provider_order_reference:
            raise ValidationFailed("webhook payload lacks order reference")
        order = ledger.fail_from_webhook(provider_order_reference, provider_payment_reference)
        if order is None:
            return WebhookOutcome(event=name, handled=False)
        return WebhookOutcome(event=name, handled=True, order_id=order.id, status=order.status)

    logger.info("webhook_event_ignored", extra={"event": name})
    return WebhookOutcome(event=name, handled=False)


def handle_webhook(
    ledger: OrderLedger,
    body: bytes,
    signature: str | None,
    *,
    event_id: str | None = None,
    store: IdempotencyStore | None = None,
) -> tuple[WebhookOutcome | None, bool]:
    """
    Проверка подписи тела -> разбор -> дедупликация -> обработка -> commit.
    Возвращает (outcome, duplicate). Неверная подпись: SignatureInvalid + audit.
    """
    if not ledger.gateway.verify_webhook_signature(body, signature):
        signature_failures_total.labels(source="webhook").inc()
        logger.warning("webhook_signature_invalid", extra={"event_id": event_id})
        ledger.audit.security_event("webhook_signature_invalid", source="webhook", entity_id=event_id)
        ledger.db.commit()
        raise SignatureInvalid("webhook signature verification failed")

    try:
        event = json.loads(body)
    except ValueError:
        raise ValidationFailed("webhook body is not valid JSON") from None
    if not isinstance(event, dict):
        raise ValidationFailed("webhook body must be a JSON object")

    key = extract_event_key(event, event_id)
    if store is not None:
        try:
            if not store.check_and_set(key):
                logger.info("webhook_duplicate", extra={"event": event.get("event"), "event_id": event_id})
                return None, True
        except redis.RedisError as e:
            # Без Redis дедупликацию делает статус заказа в БД
            logger.warning("webhook_idempotency_redis_error", extra={"error": str(e)})
            store = None

    try:
        outcome = process_gateway_event(ledger, event)
        ledger.db.commit()
    except Exception:
        ledger.db.rollback()
        if store is not None:
            store.release(key)
        raise
    return outcome, False
