"""
Order: попытка покупки платного материала.
provider_order_reference уникален (выдаёт шлюз): на нём держится защита от двойного завершения.
Статусы: pending -> completed | failed, completed -> refunded. Заказы никогда не удаляются.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, Integer, String, text

from content_access.db.base import Base, JSONType


class OrderStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_requester_item_status", "requester_id", "content_item_id", "status"),
        # Не больше одного pending-заказа на пару (requester, item): повторная покупка берёт существующий
        Index(
            "uq_orders_one_pending_per_item",
            "requester_id",
            "content_item_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    requester_id = Column(String, nullable=False, index=True)
    content_item_id = Column(String, nullable=False, index=True)
    provider_order_reference = Column(String, unique=True, nullable=False)
    provider_payment_reference = Column(String, nullable=True, index=True)
    provider_signature = Column(String, nullable=True)
    amount = Column(Integer, nullable=False)                   # в минимальных единицах (копейки/пайсы), снимок цены
    currency = Column(String(3), nullable=False)
    status = Column(String, nullable=False, default=OrderStatus.PENDING, index=True)
    payment_method = Column(String, nullable=True)             # upi / card / ... (со стороны шлюза)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
