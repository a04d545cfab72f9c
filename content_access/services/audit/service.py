from typing import Any

from sqlalchemy.orm import Session

from content_access.models.audit_log import AuditLog
from content_access.models.download_token import DownloadToken
from content_access.models.order import Order


class AuditService:
    """
    Аудит финансовых и security-событий.
    Пишет в текущую транзакцию (flush); commit делает вызывающий вместе с переходом заказа.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def _write(
        self,
        actor_type: str,
        actor_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        payload: dict[str, Any],
    ) -> AuditLog:
        entry = AuditLog(
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload={k: v for k, v in payload.items() if v is not None},
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def order_event(
        self,
        order: Order,
        action: str,
        *,
        actor_type: str,
        actor_id: str | None = None,
        **details: Any,
    ) -> AuditLog:
        """Переход заказа: сумма и валюта пишутся всегда, actor по умолчанию владелец заказа."""
        payload = {"amount": order.amount, "currency": order.currency, **details}
        return self._write(actor_type, actor_id or order.requester_id, action, "order", order.id, payload)

    def security_event(self, action: str, *, source: str, entity_id: str | None = None, **details: Any) -> AuditLog:
        """Отказ проверки подписи (checkout или webhook). Подпись и секреты в payload не кладём."""
        entity_type = "webhook" if source == "webhook" else "order"
        return self._write("gateway", None, action, entity_type, entity_id, {"source": source, **details})

    def token_event(self, token: DownloadToken, action: str, *, actor_id: str | None = None) -> AuditLog:
        payload = {
            "requester_id": token.requester_id,
            "content_item_id": token.content_item_id,
            "order_id": token.order_id,
        }
        return self._write("admin", actor_id, action, "download_token", token.id, payload)
