"""
RedemptionGate: погашение одноразовой ссылки (RedeemDownloadLink).

Победителя определяет один условный UPDATE:
    UPDATE download_tokens SET used = true ... WHERE secret = :s AND used IS false AND expires_at > :now
rowcount == 1 -> этот запрос получил файл; остальные перечитывают строку и получают
TokenExpired / TokenAlreadyUsed / TokenNotFound. Истечение важнее used.

Оплату повторно не проверяем: рефанд не отзывает уже выданные ссылки.
"""
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from content_access.core.errors import TokenAlreadyUsed, TokenExpired, TokenNotFound
from content_access.models.download_token import DownloadToken
from content_access.paywall.audit import record_redemption
from content_access.paywall.delivery import build_delivery_pointer
from content_access.paywall.models import DeliveryPointer
from content_access.services.catalogue.service import CatalogueService
from content_access.utils.clock import as_utc, utcnow
from content_access.utils.metrics import redemptions_total

logger = logging.getLogger(__name__)

MAX_SECRET_LENGTH = 256


class RedemptionGate:
    def __init__(self, db: Session):
        self.db = db
        self.catalogue = CatalogueService(db)

    def redeem(
        self,
        secret: str,
        requester_ip: str | None = None,
        user_agent: str | None = None,
    ) -> DeliveryPointer:
        if not secret or len(secret) > MAX_SECRET_LENGTH:
            self._reject(None, "not_found")
            raise TokenNotFound("download link is not valid")

        token = self._load(secret)
        self._check_usable(token)

        # Классификация перепроверяется до погашения: битый материал не сжигает ссылку
        item = self.catalogue.get_item(token.content_item_id)

        now = utcnow()
        result = self.db.execute(
            update(DownloadToken)
            .where(
                DownloadToken.secret == secret,
                DownloadToken.used.is_(False),
                DownloadToken.expires_at > now,
            )
            .values(
                used=True,
                used_at=now,
                redeemed_ip=requester_ip,
                redeemed_user_agent=(user_agent or "")[:512] or None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Проиграли гонку (или токен истёк между чтением и UPDATE)
            token = self._load(secret, refresh=True)
            self._check_usable(token, now=now)
            self._reject(token, "already_used")
            raise TokenAlreadyUsed("download link has already been used")

        self.db.refresh(token)
        pointer = build_delivery_pointer(item, now)

        if (token.issued_ip and requester_ip and token.issued_ip != requester_ip) or (
            token.issued_user_agent and user_agent and token.issued_user_agent != user_agent[:512]
        ):
            logger.info(
                "token_client_changed",
                extra={"token_id": token.id, "requester_id": token.requester_id},
            )

        redemptions_total.labels(outcome="success").inc()
        record_redemption(
            token.id,
            "success",
            content_item_id=token.content_item_id,
            requester_id=token.requester_id,
        )
        return pointer

    def _load(self, secret: str, refresh: bool = False) -> DownloadToken:
        query = self.db.query(DownloadToken).filter(DownloadToken.secret == secret)
        if refresh:
            query = query.populate_existing()
        token = query.one_or_none()
        if token is None:
            self._reject(None, "not_found")
            raise TokenNotFound("download link is not valid")
        return token

    def _check_usable(self, token: DownloadToken, now=None) -> None:
        now = now or utcnow()
        if as_utc(token.expires_at) <= now:
            self._reject(token, "expired")
            raise TokenExpired("download link has expired", expired_at=as_utc(token.expires_at).isoformat())
        if token.used:
            self._reject(token, "already_used")
            raise TokenAlreadyUsed("download link has already been used")

    def _reject(self, token: DownloadToken | None, outcome: str) -> None:
        redemptions_total.labels(outcome=outcome).inc()
        record_redemption(
            token.id if token is not None else None,
            outcome,
            content_item_id=token.content_item_id if token is not None else None,
            requester_id=token.requester_id if token is not None else None,
        )

