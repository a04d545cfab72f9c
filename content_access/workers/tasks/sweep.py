"""
Celery beat tasks: удаление давно истёкших ссылок и перевод зависших pending-заказов в failed.
"""
import logging

from sqlalchemy.exc import ProgrammingError

from content_access.core.celery_app import celery_app
from content_access.core.config import settings
from content_access.db.session import SessionLocal
from content_access.services.cleanup.service import CleanupService

logger = logging.getLogger(__name__)


def _table_missing(e: ProgrammingError) -> bool:
    msg = str(e.orig) if getattr(e, "orig", None) else str(e)
    return "does not exist" in msg or "UndefinedTable" in msg or "no such table" in msg


@celery_app.task(
    name="content_access.workers.tasks.sweep.sweep_expired_tokens",
    time_limit=120,
    soft_time_limit=110,
)
def sweep_expired_tokens() -> dict:
    db = SessionLocal()
    try:
        result = CleanupService(db).sweep_expired_tokens(settings.download_token_retention_hours)
        if result["deleted_tokens"]:
            logger.info("sweep_expired_tokens", extra={"count": result["deleted_tokens"]})
        return {"ok": True, **result}
    except ProgrammingError as e:
        db.rollback()
        if _table_missing(e):
            return {"ok": True, "skipped": "table_not_found"}
        logger.exception("sweep_expired_tokens_error")
        return {"ok": False}
    except Exception:
        logger.exception("sweep_expired_tokens_error")
        db.rollback()
        return {"ok": False}
    finally:
        db.close()


@celery_app.task(
    name="content_access.workers.tasks.sweep.expire_stale_pending_orders",
    time_limit=120,
    soft_time_limit=110,
)
def expire_stale_pending_orders() -> dict:
    """Брошенные checkout'ы. Поздний webhook для такого заказа его уже не завершит (см. ledger)."""
    db = SessionLocal()
    try:
        result = CleanupService(db).expire_stale_pending_orders(settings.stale_pending_order_hours)
        if result.get("failed_orders"):
            logger.warning("stale_pending_orders_failed", extra={"count": result["failed_orders"]})
        return {"ok": True, **result}
    except ProgrammingError as e:
        db.rollback()
        if _table_missing(e):
            return {"ok": True, "skipped": "table_not_found"}
        logger.exception("expire_stale_pending_orders_error")
        return {"ok": False}
    except Exception:
        logger.exception("expire_stale_pending_orders_error")
        db.rollback()
        return {"ok": False}
    finally:
        db.close()
