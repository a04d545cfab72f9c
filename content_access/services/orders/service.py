"""
OrderLedger: жизненный цикл покупки платного материала.

Ответственности:
- Создание pending-заказа у шлюза (идемпотентно: повторная покупка не списывает деньги дважды)
- Проверка подписи шлюза и завершение заказа + выдача токена в одной транзакции
- Рефанд (только admin, completed -> refunded)
- История покупок

Все переходы статуса делаются условным UPDATE ... WHERE status = <ожидаемый>, поэтому терминальные состояния
не перезаписываются, параллельные завершения не проходят дважды.
"""
import logging
import time
from dataclasses import dataclass

import redis
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from content_access.core.config import settings
from content_access.core.errors import (
    ContentNotFound,
    GatewayError,
    InvalidTransition,
    OrderNotFound,
    PaymentNotCaptured,
    RateLimited,
    SignatureInvalid,
    UpstreamTimeout,
    ValidationFailed,
)
from content_access.models.download_token import DownloadToken
from content_access.models.order import Order, OrderStatus
from content_access.paywall.models import AccessClassification
from content_access.services.audit.service import AuditService
from content_access.services.catalogue.service import CatalogueService
from content_access.services.orders.queries import find_completed_order, find_pending_order
from content_access.services.payment_gateway.base import PaymentGateway
from content_access.services.tokens.service import TokenIssuer
from content_access.utils.clock import utcnow
from content_access.utils.currency import to_minor_units
from content_access.utils.metrics import order_transitions_total, signature_failures_total

logger = logging.getLogger(__name__)

RECEIPT_MAX_LENGTH = 40  # лимит Razorpay


@dataclass
class PurchaseResult:
    order: Order
    created: bool = False
    # Повторная покупка уже оплаченного: возвращаем существующее право, не ошибку
    already_purchased: bool = False


@dataclass
class CompletionResult:
    order: Order
    token: DownloadToken | None
    already_completed: bool = False


class OrderLedger:
    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        redis_client: redis.Redis | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self._redis = redis_client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.audit = AuditService(db)
        self.tokens = TokenIssuer(db)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: str) -> Order | None:
        return self.db.query(Order).filter(Order.id == order_id).one_or_none()

    def get_by_provider_reference(self, provider_order_reference: str) -> Order | None:
        return (
            self.db.query(Order)
            .filter(Order.provider_order_reference == provider_order_reference)
            .one_or_none()
        )

    def list_purchases(self, requester_id: str, limit: int = 100) -> list[Order]:
        """Completed-заказы requester, новые сверху."""
        return (
            self.db.query(Order)
            .filter(Order.requester_id == requester_id, Order.status == OrderStatus.COMPLETED)
            .order_by(Order.completed_at.desc())
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_order(self, requester_id: str, content_item_id: str) -> PurchaseResult:
        """
        InitiatePurchase. Цена и валюта снимаются с каталога в момент создания заказа.
        Уже оплачено -> already_purchased; есть pending -> тот же заказ; иначе новый заказ у шлюза.
        """
        if not requester_id:
            raise ValidationFailed("requester id is required")
        item = CatalogueService(self.db).get_item(content_item_id)
        if item.classification != AccessClassification.PAID:
            raise ValidationFailed("this content is not a paid item")

        completed = find_completed_order(self.db, requester_id, content_item_id)
        if completed is not None:
            logger.info(
                "order_already_purchased",
                extra={"requester_id": requester_id, "content_item_id": content_item_id, "order_id": completed.id},
            )
            return PurchaseResult(order=completed, already_purchased=True)

        pending = find_pending_order(self.db, requester_id, content_item_id)
        if pending is not None:
            logger.info(
                "order_pending_reused",
                extra={"requester_id": requester_id, "content_item_id": content_item_id, "order_id": pending.id},
            )
            return PurchaseResult(order=pending)

        if not self._check_rate_limit(requester_id):
            raise RateLimited("too many purchase attempts, try again later")

        amount = to_minor_units(item.price, item.currency)
        if amount <= 0:
            raise ValidationFailed("invalid content price")
        receipt = build_receipt(content_item_id, requester_id)
        gateway_order = self.gateway.create_order(
            amount,
            item.currency,
            receipt,
            notes={"content_item_id": content_item_id, "requester_id": requester_id},
        )

        order = Order(
            requester_id=requester_id,
            content_item_id=content_item_id,
            provider_order_reference=gateway_order.id,
            amount=amount,
            currency=item.currency,
            status=OrderStatus.PENDING,
            meta={"content_title": item.title, "receipt": receipt},
        )
        try:
            with self.db.begin_nested():
                self.db.add(order)
                self.db.flush()
        except IntegrityError:
            # Параллельный запрос успел создать pending для той же пары: отдаём его заказ.
            # Наш заказ у шлюза остаётся неоплаченным и истечёт на стороне шлюза.
            winner = find_pending_order(self.db, requester_id, content_item_id)
            if winner is not None:
                logger.info(
                    "order_pending_reused",
                    extra={
                        "requester_id": requester_id,
                        "content_item_id": content_item_id,
                        "order_id": winner.id,
                        "provider_order_reference": gateway_order.id,
                    },
                )
                return PurchaseResult(order=winner)
            logger.error(
                "order_provider_reference_duplicate",
                extra={"provider_order_reference": gateway_order.id, "requester_id": requester_id},
            )
            raise GatewayError("payment gateway returned a duplicate order reference") from None

        order_transitions_total.labels(status=OrderStatus.PENDING).inc()
        logger.info(
            "order_created",
            extra={
                "order_id": order.id,
                "requester_id": requester_id,
                "content_item_id": content_item_id,
                "provider_order_reference": order.provider_order_reference,
                "amount": amount,
                "currency": item.currency,
            },
        )
        return PurchaseResult(order=order, created=True)

    # ------------------------------------------------------------------
    # Verify & complete (checkout callback)
    # ------------------------------------------------------------------

    def verify_and_complete(
        self,
        provider_order_reference: str,
        provider_payment_reference: str,
        provider_signature: str,
        *,
        requester_id: str | None = None,
        requester_ip: str | None = None,
        user_agent: str | None = None,
    ) -> CompletionResult:
        """
        ConfirmPayment. Fail closed: неверная подпись, отказ/таймаут шлюза -> заказ failed
        (коммитится сразу, до выброса ошибки). Повтор для completed-заказа: no-op.
        """
        if not provider_order_reference or not provider_payment_reference or not provider_signature:
            raise ValidationFailed("payment verification data is required")

        order = self.get_by_provider_reference(provider_order_reference)
        if order is None or (requester_id is not None and order.requester_id != requester_id):
            logger.warning(
                "payment_verify_order_not_found",
                extra={"provider_order_reference": provider_order_reference, "requester_id": requester_id},
            )
            raise OrderNotFound("payment record not found")

        signature_ok = self.gateway.verify_payment_signature(
            provider_order_reference, provider_payment_reference, provider_signature
        )
        if not signature_ok:
            # Неверная подпись всегда SignatureInvalid + security-событие, в каком бы статусе ни был заказ;
            # failed ставится только pending-заказу.
            self._record_signature_failure(order, "checkout", provider_payment_reference)
            if order.status == OrderStatus.PENDING:
                self._fail(order, "signature_invalid", provider_payment_reference, provider_signature)
            self.db.commit()
            raise SignatureInvalid("payment verification failed: invalid signature")

        if order.status == OrderStatus.COMPLETED:
            if order.provider_payment_reference == provider_payment_reference:
                logger.info("payment_already_verified", extra={"order_id": order.id})
                return CompletionResult(
                    order=order,
                    token=self.tokens.find_reusable(order.requester_id, order.content_item_id, order_id=order.id),
                    already_completed=True,
                )
            # Подписан другой платёж по уже оплаченному заказу: не подтверждаем второй раз
            self._record_signature_failure(order, "checkout", provider_payment_reference)
            self.db.commit()
            raise SignatureInvalid("payment verification failed")

        if order.status != OrderStatus.PENDING:
            logger.warning(
                "payment_verify_invalid_state",
                extra={"order_id": order.id, "status": order.status},
            )
            raise InvalidTransition("order is not awaiting payment")

        payment_method = None
        if settings.payment_confirm_with_gateway:
            try:
                payment = self.gateway.fetch_payment(provider_payment_reference)
            except (UpstreamTimeout, GatewayError) as e:
                self._fail(order, e.code, provider_payment_reference, provider_signature)
                self.db.commit()
                raise
            if not payment.settled or (payment.order_id and payment.order_id != provider_order_reference):
                logger.warning(
                    "payment_not_captured",
                    extra={"order_id": order.id, "status": payment.status},
                )
                self._fail(order, "payment_not_captured", provider_payment_reference, provider_signature)
                self.db.commit()
                raise PaymentNotCaptured(f"payment not successful, status: {payment.status}")
            payment_method = payment.method

        return self._complete(
            order,
            provider_payment_reference,
            provider_signature,
            payment_method=payment_method,
            source="checkout",
            requester_ip=requester_ip,
            user_agent=user_agent,
        )

    # ------------------------------------------------------------------
    # Webhook path (подпись тела уже проверена вызывающим)
    # ------------------------------------------------------------------

    def complete_from_webhook(
        self,
        provider_order_reference: str,
        provider_payment_reference: str,
        payment_method: str | None = None,
    ) -> CompletionResult | None:
        order = self.get_by_provider_reference(provider_order_reference)
        if order is None:
            logger.warning("webhook_order_not_found", extra={"provider_order_reference": provider_order_reference})
            return None
        if order.status == OrderStatus.COMPLETED:
            return CompletionResult(order=order, token=None, already_completed=True)
        if order.status != OrderStatus.PENDING:
            # failed/refunded не переписываем: нужен ручной разбор (возможно, рефанд у шлюза)
            logger.warning(
                "webhook_capture_for_terminal_order",
                extra={"order_id": order.id, "status": order.status},
            )
            return None
        return self._complete(
            order,
            provider_payment_reference,
            None,
            payment_method=payment_method,
            source="webhook",
        )

    def fail_from_webhook(self, provider_order_reference: str, provider_payment_reference: str | None) -> Order | None:
        order = self.get_by_provider_reference(provider_order_reference)
        if order is None or order.status != OrderStatus.PENDING:
            return order
        self._fail(order, "payment_failed", provider_payment_reference, None)
        return order

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    def refund(
        self,
        order_id: str,
        *,
        actor_id: str | None = None,
        refund_at_gateway: bool = False,
    ) -> Order:
        """
        Только admin: completed -> refunded. Выданные ранее токены не трогаем -
        отзывается лишь право на новые ссылки.
        Сначала условный UPDATE (один победитель), потом рефанд у шлюза в той же транзакции:
        ошибка шлюза откатывает переход вызывающим, деньги двигаются не больше одного раза.
        """
        order = self.get_order(order_id)
        if order is None:
            raise OrderNotFound("order not found")
        if order.status != OrderStatus.COMPLETED:
            raise InvalidTransition(f"only completed orders can be refunded (status: {order.status})")
        if refund_at_gateway and not order.provider_payment_reference:
            raise InvalidTransition("order has no settled payment to refund")

        now = utcnow()
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.COMPLETED)
            .values(status=OrderStatus.REFUNDED, refunded_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(order)
        if result.rowcount != 1:
            raise InvalidTransition(f"only completed orders can be refunded (status: {order.status})")

        if refund_at_gateway:
            self.gateway.refund_payment(
                order.provider_payment_reference,
                amount=order.amount,
                notes={"order_id": order.id},
            )

        order_transitions_total.labels(status=OrderStatus.REFUNDED).inc()
        self.audit.order_event(
            order, "order_refunded", actor_type="admin", actor_id=actor_id, refund_at_gateway=refund_at_gateway
        )
        logger.info(
            "order_refunded",
            extra={"order_id": order.id, "requester_id": order.requester_id, "actor": actor_id},
        )
        return order

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _complete(
        self,
        order: Order,
        provider_payment_reference: str,
        provider_signature: str | None,
        *,
        payment_method: str | None,
        source: str,
        requester_ip: str | None = None,
        user_agent: str | None = None,
    ) -> CompletionResult:
        """pending -> completed и выдача токена в той же транзакции (токен не теряется при сбое)."""
        now = utcnow()
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.PENDING)
            .values(
                status=OrderStatus.COMPLETED,
                provider_payment_reference=provider_payment_reference,
                provider_signature=provider_signature,
                payment_method=payment_method,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(order)

        if result.rowcount != 1:
            # Параллельное подтверждение успело первым
            if order.status == OrderStatus.COMPLETED and order.provider_payment_reference == provider_payment_reference:
                return CompletionResult(
                    order=order,
                    token=self.tokens.find_reusable(order.requester_id, order.content_item_id, order_id=order.id),
                    already_completed=True,
                )
            raise InvalidTransition("order is not awaiting payment")

        order_transitions_total.labels(status=OrderStatus.COMPLETED).inc()
        self.audit.order_event(
            order, "order_completed", actor_type="gateway" if source == "webhook" else "requester", source=source
        )
        logger.info(
            "payment_completed",
            extra={
                "order_id": order.id,
                "requester_id": order.requester_id,
                "content_item_id": order.content_item_id,
                "source": source,
            },
        )

        try:
            token = self.tokens.issue_for_order(order, requester_ip=requester_ip, user_agent=user_agent)
        except (ContentNotFound, ValidationFailed) as e:
            # Материал переклассифицирован или удалён после оплаты: заказ всё равно completed
            logger.warning("download_token_not_issued", extra={"order_id": order.id, "error": e.code})
            token = None
        return CompletionResult(order=order, token=token)

    def _fail(
        self,
        order: Order,
        reason: str,
        provider_payment_reference: str | None,
        provider_signature: str | None,
    ) -> None:
        """pending -> failed (терминально). Если заказ уже не pending: ничего не меняем."""
        now = utcnow()
        meta = dict(order.meta or {})
        meta["failure_reason"] = reason
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.PENDING)
            .values(
                {
                    Order.status: OrderStatus.FAILED,
                    Order.provider_payment_reference: provider_payment_reference,
                    Order.provider_signature: provider_signature,
                    Order.meta: meta,
                    Order.updated_at: now,
                }
            )
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(order)
        if result.rowcount == 1:
            order_transitions_total.labels(status=OrderStatus.FAILED).inc()
            logger.warning(
                "order_failed",
                extra={"order_id": order.id, "requester_id": order.requester_id, "error": reason},
            )

    def _record_signature_failure(self, order: Order, source: str, provider_payment_reference: str | None) -> None:
        """Security-событие: лог + audit. Подпись в лог не пишем."""
        signature_failures_total.labels(source=source).inc()
        logger.warning(
            "payment_signature_invalid",
            extra={
                "order_id": order.id,
                "requester_id": order.requester_id,
                "provider_order_reference": order.provider_order_reference,
                "provider_payment_reference": provider_payment_reference,
                "source": source,
            },
        )
        self.audit.security_event(
            "payment_signature_invalid",
            source=source,
            entity_id=order.id,
            requester_id=order.requester_id,
            provider_payment_reference=provider_payment_reference,
        )

    # ------------------------------------------------------------------
    # Rate-limit (Redis: общий для всех воркеров/реплик)
    # ------------------------------------------------------------------

    def _check_rate_limit(self, requester_id: str) -> bool:
        """Не более purchase_rate_limit новых заказов за окно. Работает при нескольких репликах."""
        key = f"purchase_rate:{requester_id}"
        try:
            current = self._redis.incr(key)
            if current == 1:
                self._redis.expire(key, settings.purchase_rate_window_seconds)
            return current <= settings.purchase_rate_limit
        except redis.RedisError as e:
            logger.warning("purchase_rate_limit_redis_error", extra={"error": str(e)})
            return True  # fail open: при недоступности Redis разрешаем покупку


def build_receipt(content_item_id: str, requester_id: str) -> str:
    """Короткий receipt для шлюза (<= 40 символов)."""
    stamp = str(int(time.time()))[-8:]
    return f"ci_{content_item_id[:8]}_{requester_id[:8]}_{stamp}"[:RECEIPT_MAX_LENGTH]
