"""Tests for gateway webhook handling: подпись тела, дедупликация, переходы заказа."""
import json
from unittest.mock import MagicMock

import pytest
import redis

from content_access.core.errors import SignatureInvalid, ValidationFailed
from content_access.models.audit_log import AuditLog
from content_access.models.order import Order, OrderStatus
from content_access.services.idempotency import IdempotencyStore
from content_access.services.orders.service import OrderLedger
from content_access.services.orders.webhooks import extract_event_key, handle_webhook, process_gateway_event
from content_access.services.payment_gateway.base import compute_webhook_signature


@pytest.fixture
def ledger(db, gateway, redis_client):
    return OrderLedger(db, gateway, redis_client=redis_client)


@pytest.fixture
def pending_order(ledger, make_item, db):
    item = make_item("paid")
    order = ledger.create_order("u1", item.id).order
    db.commit()
    return order


def _event(name, order_ref, payment_ref="pay_1", method="upi"):
    return {
        "event": name,
        "payload": {"payment": {"entity": {"id": payment_ref, "order_id": order_ref, "method": method}}},
    }


def _signed(event, secret="test_webhook_secret"):
    body = json.dumps(event).encode("utf-8")
    return body, compute_webhook_signature(secret, body)


class TestProcessGatewayEvent:
    def test_payment_captured_completes_order(self, ledger, pending_order):
        outcome = process_gateway_event(ledger, _event("payment.captured", pending_order.provider_order_reference))
        assert outcome.handled is True
        assert outcome.status == OrderStatus.COMPLETED
        assert pending_order.payment_method == "upi"

    def test_order_paid_completes_order(self, ledger, pending_order):
        event = {
            "event": "order.paid",
            "payload": {
                "order": {"entity": {"id": pending_order.provider_order_reference}},
                "payment": {"entity": {"id": "pay_9"}},
            },
        }
        assert process_gateway_event(ledger, event).status == OrderStatus.COMPLETED

    def test_payment_failed_fails_order(self, ledger, pending_order):
        outcome = process_gateway_event(ledger, _event("payment.failed", pending_order.provider_order_reference))
        assert outcome.status == OrderStatus.FAILED

    def test_unknown_event_ignored(self, ledger, pending_order):
        outcome = process_gateway_event(ledger, _event("refund.created", pending_order.provider_order_reference))
        assert outcome.handled is False
        assert pending_order.status == OrderStatus.PENDING

    def test_missing_references(self, ledger):
        with pytest.raises(ValidationFailed):
            process_gateway_event(ledger, {"event": "payment.captured", "payload": {}})

    def test_missing_event_name(self, ledger):
        with pytest.raises(ValidationFailed):
            process_gateway_event(ledger, {"payload": {}})


class TestHandleWebhook:
    def test_valid_signature_processed(self, ledger, pending_order, redis_client, db):
        body, signature = _signed(_event("payment.captured", pending_order.provider_order_reference))
        outcome, duplicate = handle_webhook(ledger, body, signature, event_id="evt_1", store=IdempotencyStore(redis_client))

        assert duplicate is False
        assert outcome.handled is True
        redis_client.set.assert_called_once_with("idempotency:webhook:evt_1", "1", nx=True, ex=86400)
        db.rollback()
        assert db.query(Order).filter(Order.id == pending_order.id).one().status == OrderStatus.COMPLETED

    def test_bad_signature_rejected_and_audited(self, ledger, pending_order, db):
        body, _ = _signed(_event("payment.captured", pending_order.provider_order_reference))
        with pytest.raises(SignatureInvalid):
            handle_webhook(ledger, body, "0" * 64)
        assert db.query(AuditLog).filter(AuditLog.action == "webhook_signature_invalid").count() == 1
        assert db.query(Order).filter(Order.id == pending_order.id).one().status == OrderStatus.PENDING

    def test_missing_signature_rejected(self, ledger, pending_order):
        body, _ = _signed(_event("payment.captured", pending_order.provider_order_reference))
        with pytest.raises(SignatureInvalid):
            handle_webhook(ledger, body, None)

    def test_duplicate_delivery_short_circuits(self, ledger, pending_order, redis_client):
        redis_client.set.return_value = None
        body, signature = _signed(_event("payment.captured", pending_order.provider_order_reference))
        outcome, duplicate = handle_webhook(ledger, body, signature, event_id="evt_1", store=IdempotencyStore(redis_client))
        assert duplicate is True
        assert outcome is None
        assert pending_order.status == OrderStatus.PENDING

    def test_redis_down_falls_back_to_order_status(self, ledger, pending_order, redis_client):
        redis_client.set.side_effect = redis.RedisError("down")
        body, signature = _signed(_event("payment.captured", pending_order.provider_order_reference))
        first, _ = handle_webhook(ledger, body, signature, store=IdempotencyStore(redis_client))
        second, _ = handle_webhook(ledger, body, signature, store=IdempotencyStore(redis_client))
        assert first.status == OrderStatus.COMPLETED
        assert second.status == OrderStatus.COMPLETED

    def test_processing_error_releases_key(self, ledger, pending_order, redis_client):
        ledger.complete_from_webhook = MagicMock(side_effect=RuntimeError("db down"))
        body, signature = _signed(_event("payment.captured", pending_order.provider_order_reference))
        with pytest.raises(RuntimeError):
            handle_webhook(ledger, body, signature, event_id="evt_2", store=IdempotencyStore(redis_client))
        redis_client.delete.assert_called_once_with("idempotency:webhook:evt_2")

    def test_invalid_json(self, ledger):
        body = b"not json"
        with pytest.raises(ValidationFailed):
            handle_webhook(ledger, body, compute_webhook_signature("test_webhook_secret", body))


def test_event_key_prefers_header_id():
    event = _event("payment.captured", "order_1", payment_ref="pay_7")
    assert extract_event_key(event, "evt_9") == "webhook:evt_9"
    assert extract_event_key(event) == "webhook:payment.captured:pay_7"
