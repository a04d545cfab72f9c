from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from content_access.api.deps import get_requester_id
from content_access.db.session import get_db
from content_access.schemas.access import EntitlementOut
from content_access.services.entitlements.service import EntitlementService


router = APIRouter(prefix="/access", tags=["access"])


@router.get("/{content_item_id}", response_model=EntitlementOut)
def get_entitlement(
    content_item_id: str,
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
) -> EntitlementOut:
    """GetEntitlement. denied: это обычный ответ 200 с ценой, а не ошибка."""
    decision = EntitlementService(db).get_entitlement(content_item_id, requester_id)
    return EntitlementOut(
        content_item_id=decision.content_item_id,
        classification=decision.classification.value,
        entitlement=decision.entitlement.value,
        vault_reference=decision.vault_reference,
        price=decision.price,
        currency=decision.currency,
    )
