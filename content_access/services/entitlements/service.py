"""
EntitlementService (GetEntitlement): каталог + ledger -> EntitlementContext -> decide_entitlement.
Факт оплаты читается из БД на каждый запрос (кэша нет: рефанд действует сразу).
"""
import logging

from sqlalchemy.orm import Session

from content_access.core.errors import PolicyDenied
from content_access.paywall.access import decide_entitlement
from content_access.paywall.audit import record_vault_handoff
from content_access.paywall.models import (
    AccessClassification,
    Entitlement,
    EntitlementContext,
    EntitlementDecision,
)
from content_access.services.catalogue.service import CatalogueService
from content_access.services.orders.queries import find_completed_order
from content_access.utils.metrics import entitlement_decisions_total

logger = logging.getLogger(__name__)


class EntitlementService:
    def __init__(self, db: Session):
        self.db = db
        self.catalogue = CatalogueService(db)

    def get_entitlement(self, content_item_id: str, requester_id: str) -> EntitlementDecision:
        item = self.catalogue.get_item(content_item_id)

        has_completed_order = False
        if item.classification == AccessClassification.PAID and requester_id:
            has_completed_order = find_completed_order(self.db, requester_id, content_item_id) is not None

        ctx = EntitlementContext(
            requester_id=requester_id,
            content_item_id=item.id,
            classification=item.classification,
            has_completed_order=has_completed_order,
            price=item.price,
            currency=item.currency,
            external_vault_reference=item.external_vault_reference,
        )
        decision = decide_entitlement(ctx)

        entitlement_decisions_total.labels(
            classification=decision.classification.value,
            decision=decision.entitlement.value,
        ).inc()
        if decision.entitlement == Entitlement.ALLOW_VIA_EXTERNAL_VAULT:
            record_vault_handoff(item.id, requester_id)
        logger.info(
            "entitlement_decided",
            extra={
                "requester_id": requester_id,
                "content_item_id": item.id,
                "classification": decision.classification.value,
                "decision": decision.entitlement.value,
            },
        )
        return decision

    def require_entitlement(self, content_item_id: str, requester_id: str) -> EntitlementDecision:
        """Как get_entitlement, но denied -> PolicyDenied (с ценой для покупки)."""
        decision = self.get_entitlement(content_item_id, requester_id)
        if not decision.allowed:
            raise PolicyDenied(
                "purchase required",
                price=str(decision.price) if decision.price is not None else None,
                currency=decision.currency,
            )
        return decision
