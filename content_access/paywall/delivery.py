"""
Execution: build_delivery_pointer(item, redeemed_at) -> DeliveryPointer.
Вызывается только RedemptionGate после успешного погашения: до этого storage_reference клиенту не виден.
"""
from __future__ import annotations

import logging
from datetime import datetime

from content_access.core.errors import ContentNotFound
from content_access.paywall.models import AccessClassification, ContentItemView, DeliveryPointer

logger = logging.getLogger(__name__)


def build_delivery_pointer(item: ContentItemView, redeemed_at: datetime) -> DeliveryPointer:
    """
    free/paid -> указатель на байты в хранилище (storage_reference).
    Если материал после выдачи ссылки перевели в vault_restricted: отдаём vault-ссылку.
    """
    if item.classification == AccessClassification.VAULT_RESTRICTED:
        if not item.external_vault_reference:
            raise ContentNotFound("content is not available")
        return DeliveryPointer(
            kind="vault",
            reference=item.external_vault_reference,
            content_item_id=item.id,
            redeemed_at=redeemed_at,
        )

    if not item.storage_reference:
        logger.error("delivery_storage_reference_missing", extra={"content_item_id": item.id})
        raise ContentNotFound("content file is not available")

    return DeliveryPointer(
        kind="storage",
        reference=item.storage_reference,
        content_item_id=item.id,
        redeemed_at=redeemed_at,
    )
