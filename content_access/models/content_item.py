"""
ContentItem: материал каталога. Им владеет каталог, здесь только чтение.
access_classification хранится строкой и валидируется на каждой границе
(см. AccessClassification.parse), а не доверяется как есть.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Numeric, String

from content_access.db.base import Base


class ContentItem(Base):
    __tablename__ = "content_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    title = Column(String, nullable=False, default="")
    access_classification = Column(String, nullable=False)      # free / vault_restricted / paid
    price = Column(Numeric(12, 2), nullable=False, default=0)   # в основной единице валюты (рубли/рупии)
    currency = Column(String(3), nullable=True)                 # None -> settings.default_currency
    external_vault_reference = Column(String, nullable=True)    # только для vault_restricted
    storage_reference = Column(String, nullable=True)           # указатель на байты в хранилище
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
