import json
import logging
from logging.handlers import RotatingFileHandler
from datetime import datetime, timezone

from content_access.core.config import settings


class JsonFormatter(logging.Formatter):
    """Одна JSON-строка на запись; из extra копируются только поля из белого списка."""

    # Секреты (токен, подпись, ключи) в белый список не входят никогда.
    EXTRA_FIELDS = (
        "request_id", "path", "method", "status_code", "latency_ms",
        "requester_id", "content_item_id", "order_id", "token_id",
        "provider_order_reference", "provider_payment_reference",
        "decision", "outcome", "status", "classification", "source",
        "event", "event_id", "actor", "amount", "currency", "count",
        "error", "breaker_name", "old_state", "new_state",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> None:
    formatter = JsonFormatter()
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    handlers = [handler]
    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    root.handlers = handlers
    # httpx на INFO пишет каждый запрос к шлюзу; достаточно наших gateway_* событий
    logging.getLogger("httpx").setLevel(logging.WARNING)
