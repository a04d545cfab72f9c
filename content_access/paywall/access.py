"""
Decision только: decide_entitlement(ctx) -> EntitlementDecision.
Чистая функция, без I/O: безопасно вызывать повторно и конкурентно.
Факт оплаты приходит в ctx из Order Ledger (durable store), кэш здесь не участвует.
"""
from __future__ import annotations

import logging

from content_access.paywall.models import (
    AccessClassification,
    Entitlement,
    EntitlementContext,
    EntitlementDecision,
)

logger = logging.getLogger(__name__)


def decide_entitlement(ctx: EntitlementContext) -> EntitlementDecision:
    """
    Решает, можно ли requester получить материал и каким путём.

    - free -> allow_direct, без условий
    - vault_restricted -> allow_via_external_vault, отдаём vault-ссылку (у vault свой контроль доступа)
    - paid -> allow_direct только при completed-заказе; иначе denied с ценой для покупки.
      Refunded-заказ не считается: рефанд сразу отзывает право на новые ссылки.
    """
    # Повторная валидация: классификация могла прийти строкой из предыдущего слоя
    classification = AccessClassification.parse(ctx.classification)

    if classification == AccessClassification.FREE:
        return EntitlementDecision(
            entitlement=Entitlement.ALLOW_DIRECT,
            content_item_id=ctx.content_item_id,
            classification=classification,
        )

    if classification == AccessClassification.VAULT_RESTRICTED:
        return EntitlementDecision(
            entitlement=Entitlement.ALLOW_VIA_EXTERNAL_VAULT,
            content_item_id=ctx.content_item_id,
            classification=classification,
            vault_reference=ctx.external_vault_reference,
        )

    if ctx.has_completed_order:
        return EntitlementDecision(
            entitlement=Entitlement.ALLOW_DIRECT,
            content_item_id=ctx.content_item_id,
            classification=classification,
        )

    return EntitlementDecision(
        entitlement=Entitlement.DENIED,
        content_item_id=ctx.content_item_id,
        classification=classification,
        price=ctx.price,
        currency=ctx.currency,
    )
