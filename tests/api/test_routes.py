"""HTTP-тесты: TestClient с подменой БД, шлюза и Redis."""
import json

import pytest
from fastapi.testclient import TestClient

from content_access.api.deps import get_redis
from content_access.core.config import settings
from content_access.db.session import get_db
from content_access.main import app
from content_access.services.payment_gateway.base import compute_webhook_signature
from content_access.services.payment_gateway.razorpay import get_payment_gateway

USER = {"X-User-Id": "u1"}


@pytest.fixture
def client(session_factory, gateway, redis_client):
    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_redis] = lambda: redis_client
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _buy(client, gateway, item_id, headers=USER):
    created = client.post("/payments/orders", json={"content_item_id": item_id}, headers=headers)
    assert created.status_code == 200, created.text
    order_ref = created.json()["order"]["provider_order_reference"]
    return client.post(
        "/payments/verify",
        json={
            "provider_order_reference": order_ref,
            "provider_payment_reference": "pay_1",
            "signature": gateway.sign(order_ref, "pay_1"),
        },
        headers=headers,
    )


class TestIdentity:
    def test_missing_identity_401(self, client, make_item):
        item = make_item("free")
        assert client.get(f"/access/{item.id}").status_code == 401

    def test_guest_id_accepted(self, client, make_item):
        item = make_item("free")
        resp = client.get(f"/access/{item.id}", headers={"X-Guest-Id": "guest_1234abcd"})
        assert resp.status_code == 200

    def test_malformed_guest_id_rejected(self, client, make_item):
        item = make_item("free")
        resp = client.get(f"/access/{item.id}", headers={"X-Guest-Id": "../etc"})
        assert resp.status_code == 401


class TestAccess:
    def test_free_item(self, client, make_item):
        item = make_item("free")
        body = client.get(f"/access/{item.id}", headers=USER).json()
        assert body["entitlement"] == "allow_direct"
        assert body["classification"] == "free"

    def test_paid_item_denied_is_not_an_error(self, client, make_item):
        item = make_item("paid")
        resp = client.get(f"/access/{item.id}", headers=USER)
        assert resp.status_code == 200
        body = resp.json()
        assert body["entitlement"] == "denied"
        assert body["price"] == "199.00"
        assert body["currency"] == "INR"

    def test_vault_item(self, client, make_item):
        item = make_item("vault_restricted", vault="https://drive.example/f/1", storage=None)
        body = client.get(f"/access/{item.id}", headers=USER).json()
        assert body["entitlement"] == "allow_via_external_vault"
        assert body["vault_reference"] == "https://drive.example/f/1"

    def test_missing_item_error_body(self, client):
        resp = client.get("/access/missing", headers=USER)
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] == "content_not_found"
        assert body["remediation"] == "none"
        assert body["retryable"] is False


class TestPurchaseFlow:
    def test_purchase_verify_redeem(self, client, gateway, make_item):
        item = make_item("paid", storage="s3://bucket/paid.pdf")
        verified = _buy(client, gateway, item.id)
        assert verified.status_code == 200, verified.text
        body = verified.json()
        assert body["order"]["status"] == "completed"
        assert body["order"]["price"] == "199.00"
        link = body["download"]
        assert link["download_url"].endswith(f"/downloads/{link['token']}")

        assert client.get(f"/access/{item.id}", headers=USER).json()["entitlement"] == "allow_direct"

        redeemed = client.get(f"/downloads/{link['token']}")
        assert redeemed.status_code == 200
        assert redeemed.json()["reference"] == "s3://bucket/paid.pdf"

        again = client.get(f"/downloads/{link['token']}")
        assert again.status_code == 409
        assert again.json()["error"] == "token_already_used"
        assert again.json()["remediation"] == "request_new_link"

    def test_repeat_purchase_reports_already_purchased(self, client, gateway, make_item):
        item = make_item("paid")
        _buy(client, gateway, item.id)
        resp = client.post("/payments/orders", json={"content_item_id": item.id}, headers=USER)
        assert resp.status_code == 200
        assert resp.json()["already_purchased"] is True
        assert len(gateway.orders) == 1

    def test_bad_signature(self, client, make_item):
        item = make_item("paid")
        order_ref = client.post("/payments/orders", json={"content_item_id": item.id}, headers=USER).json()["order"][
            "provider_order_reference"
        ]
        resp = client.post(
            "/payments/verify",
            json={"provider_order_reference": order_ref, "provider_payment_reference": "pay_1", "signature": "f" * 64},
            headers=USER,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "signature_invalid"

    def test_purchase_history(self, client, gateway, make_item):
        item = make_item("paid")
        _buy(client, gateway, item.id)
        purchases = client.get("/payments/purchases", headers=USER).json()
        assert [p["content_item_id"] for p in purchases] == [item.id]
        assert client.get("/payments/purchases", headers={"X-User-Id": "u2"}).json() == []


class TestDownloadLinks:
    def test_paid_without_purchase_forbidden(self, client, make_item):
        item = make_item("paid")
        resp = client.post("/downloads/links", json={"content_item_id": item.id}, headers=USER)
        assert resp.status_code == 403
        body = resp.json()
        assert body["error"] == "policy_denied"
        assert body["remediation"] == "pay"
        assert body["price"] == "199.00"

    def test_free_link_roundtrip(self, client, make_item):
        item = make_item("free", storage="s3://bucket/free.pdf")
        link = client.post("/downloads/links", json={"content_item_id": item.id}, headers=USER).json()
        resp = client.get(f"/downloads/{link['token']}")
        assert resp.status_code == 200
        assert resp.json()["kind"] == "storage"

    def test_unknown_token(self, client):
        resp = client.get("/downloads/unknown-secret")
        assert resp.status_code == 404
        assert resp.json()["error"] == "token_not_found"


class TestAdmin:
    def test_refund_requires_key(self, client):
        assert client.post("/admin/orders/any/refund").status_code == 401

    def test_refund_revokes_new_links_only(self, client, gateway, make_item):
        item = make_item("paid")
        link = _buy(client, gateway, item.id).json()["download"]
        order_id = client.get("/payments/purchases", headers=USER).json()[0]["order_id"]

        resp = client.post(f"/admin/orders/{order_id}/refund", headers={"X-Admin-Key": settings.admin_api_key})
        assert resp.status_code == 200
        assert resp.json()["status"] == "refunded"

        assert client.get(f"/access/{item.id}", headers=USER).json()["entitlement"] == "denied"
        assert client.post("/downloads/links", json={"content_item_id": item.id}, headers=USER).status_code == 403
        assert client.get(f"/downloads/{link['token']}").status_code == 200

    def test_refund_twice_conflict(self, client, gateway, make_item):
        item = make_item("paid")
        _buy(client, gateway, item.id)
        order_id = client.get("/payments/purchases", headers=USER).json()[0]["order_id"]
        headers = {"X-Admin-Key": settings.admin_api_key}
        client.post(f"/admin/orders/{order_id}/refund", headers=headers)
        resp = client.post(f"/admin/orders/{order_id}/refund", headers=headers)
        assert resp.status_code == 409
        assert resp.json()["error"] == "invalid_transition"

    def test_operator_link(self, client, make_item):
        item = make_item("free")
        resp = client.post(
            "/admin/download-links",
            json={"requester_id": "u9", "content_item_id": item.id, "ttl_seconds": 600},
            headers={"X-Admin-Key": settings.admin_api_key},
        )
        assert resp.status_code == 200
        assert resp.json()["content_item_id"] == item.id


class TestWebhook:
    def test_bad_signature(self, client):
        resp = client.post(
            "/payments/webhook",
            content=b'{"event": "payment.captured"}',
            headers={"X-Razorpay-Signature": "bad", "Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "signature_invalid"

    def test_capture_completes_order(self, client, gateway, make_item):
        item = make_item("paid")
        order_ref = client.post("/payments/orders", json={"content_item_id": item.id}, headers=USER).json()["order"][
            "provider_order_reference"
        ]
        body = json.dumps(
            {"event": "payment.captured", "payload": {"payment": {"entity": {"id": "pay_1", "order_id": order_ref}}}}
        ).encode("utf-8")
        resp = client.post(
            "/payments/webhook",
            content=body,
            headers={
                "X-Razorpay-Signature": compute_webhook_signature(gateway.webhook_secret, body),
                "X-Razorpay-Event-Id": "evt_1",
                "Content-Type": "application/json",
            },
        )
        assert resp.status_code == 200
        assert resp.json()["handled"] is True
        assert client.get(f"/access/{item.id}", headers=USER).json()["entitlement"] == "allow_direct"


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
