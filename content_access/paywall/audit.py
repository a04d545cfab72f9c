"""
Аудит выдачи доступа (лог-события для аналитики). Секрет токена не логируем: только token_id.
"""
from __future__ import annotations

import logging
from typing import Literal

logger = logging.getLogger(__name__)

TokenKind = Literal["paid", "free", "operator"]


def record_vault_handoff(content_item_id: str, requester_id: str) -> None:
    """Requester отправлен во внешний vault (токен не выпускается)."""
    logger.info(
        "vault_handoff",
        extra={"content_item_id": content_item_id, "requester_id": requester_id},
    )


def record_token_issued(
    token_id: str,
    requester_id: str,
    content_item_id: str,
    kind: TokenKind,
    *,
    order_id: str | None = None,
    reused: bool = False,
) -> None:
    logger.info(
        "download_token_reused" if reused else "download_token_issued",
        extra={
            "token_id": token_id,
            "requester_id": requester_id,
            "content_item_id": content_item_id,
            "order_id": order_id,
            "source": kind,
        },
    )


def record_redemption(
    token_id: str | None,
    outcome: str,
    *,
    content_item_id: str | None = None,
    requester_id: str | None = None,
) -> None:
    """Итог попытки погашения: success / not_found / expired / already_used."""
    level = logging.INFO if outcome == "success" else logging.WARNING
    logger.log(
        level,
        "token_redemption",
        extra={
            "token_id": token_id,
            "outcome": outcome,
            "content_item_id": content_item_id,
            "requester_id": requester_id,
        },
    )
