"""
CatalogueService: чтение материалов каталога. Подсистема каталог не изменяет.
Каждое чтение валидирует классификацию и инварианты цены/vault-ссылки.
"""
import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from content_access.core.errors import ContentNotFound, ValidationFailed
from content_access.models.content_item import ContentItem
from content_access.paywall.config import get_default_currency
from content_access.paywall.models import AccessClassification, ContentItemView

logger = logging.getLogger(__name__)


class CatalogueService:
    def __init__(self, db: Session):
        self.db = db

    def get_item(self, content_item_id: str) -> ContentItemView:
        """Материал по id; ContentNotFound если нет, ValidationFailed если запись нарушает инварианты."""
        if not content_item_id:
            raise ValidationFailed("content item id is required")
        item = self.db.query(ContentItem).filter(ContentItem.id == content_item_id).one_or_none()
        if item is None:
            raise ContentNotFound("content item not found")
        return to_view(item)


def to_view(item: ContentItem) -> ContentItemView:
    classification = AccessClassification.parse(item.access_classification)
    price = Decimal(str(item.price or 0))
    vault_reference = (item.external_vault_reference or "").strip() or None

    if price < 0:
        raise ValidationFailed("content price must be non-negative")
    if price > 0 and classification != AccessClassification.PAID:
        logger.warning(
            "catalogue_invariant_violation",
            extra={"content_item_id": item.id, "classification": classification.value, "error": "price_on_non_paid"},
        )
        raise ValidationFailed("only paid content may have a price")
    if classification == AccessClassification.PAID and price <= 0:
        raise ValidationFailed("paid content must have a positive price")
    if vault_reference and classification != AccessClassification.VAULT_RESTRICTED:
        raise ValidationFailed("only vault-restricted content may have a vault reference")
    if classification == AccessClassification.VAULT_RESTRICTED and not vault_reference:
        raise ValidationFailed("vault-restricted content requires a vault reference")

    return ContentItemView(
        id=item.id,
        title=item.title or "",
        classification=classification,
        price=price,
        currency=(item.currency or get_default_currency()).upper(),
        external_vault_reference=vault_reference,
        storage_reference=item.storage_reference,
    )
