"""
Общие фикстуры: SQLite-файл через SQLAlchemy, фейковый шлюз с настоящими HMAC-подписями, мок Redis.
Переменные окружения выставляются до импорта content_access (Settings читается при импорте).
"""
import os
import tempfile
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

_TMP_DIR = tempfile.mkdtemp(prefix="content_access_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'app.db')}"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["APP_ENV"] = "test"
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "test_key_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "test_webhook_secret")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from content_access.db.base import Base  # noqa: E402
from content_access.models.audit_log import AuditLog  # noqa: E402,F401
from content_access.models.content_item import ContentItem  # noqa: E402
from content_access.models.download_token import DownloadToken  # noqa: E402,F401
from content_access.models.order import Order  # noqa: E402,F401
from content_access.services.payment_gateway.base import (  # noqa: E402
    GatewayOrder,
    GatewayPayment,
    PaymentGateway,
    compute_payment_signature,
    compute_webhook_signature,
    signatures_match,
)

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


class FakeGateway(PaymentGateway):
    """Шлюз без сети: заказы в памяти, подписи: те же HMAC, что у Razorpay."""

    def __init__(self, key_secret: str = KEY_SECRET, webhook_secret: str = WEBHOOK_SECRET):
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.orders: list[GatewayOrder] = []
        self.payments: dict[str, GatewayPayment] = {}
        self.refunds: list[tuple[str, int | None]] = []
        self.create_error: Exception | None = None
        self.fetch_error: Exception | None = None

    def create_order(self, amount, currency, receipt, notes=None):
        if self.create_error is not None:
            raise self.create_error
        order = GatewayOrder(id=f"order_{uuid4().hex[:14]}", amount=amount, currency=currency, receipt=receipt, status="created")
        self.orders.append(order)
        return order

    def fetch_payment(self, provider_payment_reference):
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.payments.get(
            provider_payment_reference,
            GatewayPayment(id=provider_payment_reference, order_id=None, status="captured", method="upi"),
        )

    def refund_payment(self, provider_payment_reference, amount=None, notes=None):
        self.refunds.append((provider_payment_reference, amount))
        return {"id": "rfnd_test", "status": "processed"}

    def verify_payment_signature(self, provider_order_reference, provider_payment_reference, signature):
        expected = compute_payment_signature(self.key_secret, provider_order_reference, provider_payment_reference)
        return signatures_match(expected, signature)

    def verify_webhook_signature(self, body, signature):
        return signatures_match(compute_webhook_signature(self.webhook_secret, body), signature)

    def sign(self, provider_order_reference: str, provider_payment_reference: str) -> str:
        return compute_payment_signature(self.key_secret, provider_order_reference, provider_payment_reference)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.incr.return_value = 1
    client.set.return_value = True
    return client


@pytest.fixture
def make_item(db):
    def _make(classification="paid", price=None, currency="INR", vault=None, storage="s3://bucket/file.pdf", **kwargs):
        if price is None:
            price = Decimal("199.00") if classification == "paid" else Decimal("0")
        item = ContentItem(
            id=kwargs.get("id", str(uuid4())),
            title=kwargs.get("title", "Lecture notes"),
            access_classification=classification,
            price=price,
            currency=currency,
            external_vault_reference=vault,
            storage_reference=storage,
        )
        db.add(item)
        db.commit()
        return item

    return _make
