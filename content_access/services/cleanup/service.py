from datetime import timedelta
from typing import Any

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from content_access.models.download_token import DownloadToken
from content_access.models.order import Order, OrderStatus
from content_access.utils.clock import utcnow
from content_access.utils.metrics import order_transitions_total


class CleanupService:
    """Гигиена хранилища. Для корректности не нужна: истёкший токен и так не гасится."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def preview_token_sweep(self, retention_hours: int) -> dict[str, Any]:
        """Dry-run: сколько токенов удалит sweep_expired_tokens."""
        threshold = utcnow() - timedelta(hours=retention_hours)
        count = self.db.query(DownloadToken).filter(DownloadToken.expires_at <= threshold).count()
        return {"tokens_count": count, "retention_hours": retention_hours}

    def sweep_expired_tokens(self, retention_hours: int) -> dict[str, Any]:
        """Удаляет токены, истёкшие раньше чем retention_hours назад (использованные и нет)."""
        threshold = utcnow() - timedelta(hours=retention_hours)
        result = self.db.execute(
            delete(DownloadToken)
            .where(DownloadToken.expires_at <= threshold)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return {"deleted_tokens": result.rowcount, "retention_hours": retention_hours}

    def expire_stale_pending_orders(self, older_than_hours: int) -> dict[str, Any]:
        """Pending старше порога -> failed. 0: выключено."""
        if older_than_hours <= 0:
            return {"failed_orders": 0, "skipped": "disabled"}
        now = utcnow()
        threshold = now - timedelta(hours=older_than_hours)
        result = self.db.execute(
            update(Order)
            .where(Order.status == OrderStatus.PENDING, Order.created_at <= threshold)
            .values(status=OrderStatus.FAILED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            order_transitions_total.labels(status=OrderStatus.FAILED).inc(result.rowcount)
        return {"failed_orders": result.rowcount, "older_than_hours": older_than_hours}
