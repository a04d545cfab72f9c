"""
TokenIssuer: выпуск одноразовых ссылок на скачивание.

- secret: secrets.token_urlsafe(32): 256 бит энтропии
- коллизия secret (unique) -> одна перегенерация в savepoint, вторая -> TokenIssueFailed
- paid: только при completed-заказе того же requester и материала
- issue_for_order идемпотентен: возвращает живой (неиспользованный, неистёкший) токен заказа
"""
import logging
import secrets
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from content_access.core.errors import PolicyDenied, TokenIssueFailed, ValidationFailed
from content_access.models.download_token import DownloadToken
from content_access.models.order import Order, OrderStatus
from content_access.paywall.audit import TokenKind, record_token_issued
from content_access.paywall.config import resolve_token_ttl
from content_access.paywall.models import AccessClassification
from content_access.services.catalogue.service import CatalogueService
from content_access.services.orders.queries import find_completed_order
from content_access.utils.clock import utcnow
from content_access.utils.metrics import download_tokens_issued_total

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
MAX_ISSUE_ATTEMPTS = 2


class TokenIssuer:
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def generate_secret() -> str:
        return secrets.token_urlsafe(TOKEN_BYTES)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(
        self,
        requester_id: str,
        content_item_id: str,
        originating_order_id: str | None = None,
        ttl: timedelta | None = None,
        *,
        requester_ip: str | None = None,
        user_agent: str | None = None,
        kind: TokenKind | None = None,
    ) -> DownloadToken:
        """
        Выпустить новый токен. Классификация материала перепроверяется здесь же.
        vault_restricted токенов не получает; paid требует completed-заказ этого requester.
        """
        if not requester_id:
            raise ValidationFailed("requester id is required")
        item = CatalogueService(self.db).get_item(content_item_id)

        if item.classification == AccessClassification.VAULT_RESTRICTED:
            raise ValidationFailed("vault-restricted content is served by the external vault")

        if item.classification == AccessClassification.PAID and not originating_order_id:
            raise PolicyDenied("purchase required", price=str(item.price), currency=item.currency)

        if originating_order_id:
            order = self.db.query(Order).filter(Order.id == originating_order_id).one_or_none()
            if (
                order is None
                or order.requester_id != requester_id
                or order.content_item_id != content_item_id
                or order.status != OrderStatus.COMPLETED
            ):
                logger.warning(
                    "download_token_order_mismatch",
                    extra={"requester_id": requester_id, "content_item_id": content_item_id, "order_id": originating_order_id},
                )
                raise PolicyDenied("no completed purchase for this content", price=str(item.price), currency=item.currency)

        ttl = resolve_token_ttl(ttl)
        if kind is None:
            kind = "paid" if originating_order_id else "free"
        return self._create(
            requester_id=requester_id,
            content_item_id=content_item_id,
            order_id=originating_order_id,
            ttl=ttl,
            requester_ip=requester_ip,
            user_agent=user_agent,
            kind=kind,
        )

    def issue_for_order(
        self,
        order: Order,
        *,
        requester_ip: str | None = None,
        user_agent: str | None = None,
    ) -> DownloadToken:
        """Идемпотентно по order.id: повторный вызов после сбоя не плодит токены."""
        existing = self.find_reusable(order.requester_id, order.content_item_id, order_id=order.id)
        if existing is not None:
            record_token_issued(existing.id, order.requester_id, order.content_item_id, "paid", order_id=order.id, reused=True)
            return existing
        return self.issue(
            order.requester_id,
            order.content_item_id,
            order.id,
            requester_ip=requester_ip,
            user_agent=user_agent,
            kind="paid",
        )

    def issue_download_link(
        self,
        content_item_id: str,
        requester_id: str,
        *,
        requester_ip: str | None = None,
        user_agent: str | None = None,
    ) -> DownloadToken:
        """
        IssueDownloadLink для клиента.
        paid -> нужен completed-заказ; отдаём живой токен заказа или выпускаем новый.
        free -> новая аудируемая ссылка с ограниченным сроком.
        """
        if not requester_id:
            raise ValidationFailed("requester id is required")
        item = CatalogueService(self.db).get_item(content_item_id)

        if item.classification == AccessClassification.PAID:
            order = find_completed_order(self.db, requester_id, content_item_id)
            if order is None:
                raise PolicyDenied("purchase required", price=str(item.price), currency=item.currency)
            return self.issue_for_order(order, requester_ip=requester_ip, user_agent=user_agent)

        return self.issue(
            requester_id,
            content_item_id,
            requester_ip=requester_ip,
            user_agent=user_agent,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_reusable(
        self,
        requester_id: str,
        content_item_id: str,
        order_id: str | None = None,
    ) -> DownloadToken | None:
        """Самый свежий неиспользованный и неистёкший токен."""
        query = self.db.query(DownloadToken).filter(
            DownloadToken.requester_id == requester_id,
            DownloadToken.content_item_id == content_item_id,
            DownloadToken.used.is_(False),
            DownloadToken.expires_at > utcnow(),
        )
        if order_id is not None:
            query = query.filter(DownloadToken.order_id == order_id)
        return query.order_by(DownloadToken.created_at.desc()).first()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create(
        self,
        *,
        requester_id: str,
        content_item_id: str,
        order_id: str | None,
        ttl: timedelta,
        requester_ip: str | None,
        user_agent: str | None,
        kind: TokenKind,
    ) -> DownloadToken:
        for attempt in range(1, MAX_ISSUE_ATTEMPTS + 1):
            issued_at = utcnow()
            token = DownloadToken(
                secret=self.generate_secret(),
                requester_id=requester_id,
                content_item_id=content_item_id,
                order_id=order_id,
                expires_at=issued_at + ttl,
                used=False,
                issued_ip=requester_ip,
                issued_user_agent=(user_agent or "")[:512] or None,
                created_at=issued_at,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(token)
                    self.db.flush()
            except IntegrityError:
                logger.warning(
                    "download_token_secret_collision",
                    extra={"requester_id": requester_id, "content_item_id": content_item_id, "count": attempt},
                )
                continue

            download_tokens_issued_total.labels(kind=kind).inc()
            record_token_issued(token.id, requester_id, content_item_id, kind, order_id=order_id)
            return token

        logger.error(
            "download_token_issue_failed",
            extra={"requester_id": requester_id, "content_item_id": content_item_id},
        )
        raise TokenIssueFailed("could not issue a download link, please retry")
