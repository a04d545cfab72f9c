"""
Общие запросы к Order для entitlement/issuer/ledger. Источник истины: только БД.
"""
from sqlalchemy.orm import Session

from content_access.models.order import Order, OrderStatus


def find_completed_order(db: Session, requester_id: str, content_item_id: str) -> Order | None:
    """Последний completed-заказ requester на материал. Refunded/failed/pending не считаются."""
    return (
        db.query(Order)
        .filter(
            Order.requester_id == requester_id,
            Order.content_item_id == content_item_id,
            Order.status == OrderStatus.COMPLETED,
        )
        .order_by(Order.completed_at.desc())
        .first()
    )


def find_pending_order(db: Session, requester_id: str, content_item_id: str) -> Order | None:
    return (
        db.query(Order)
        .filter(
            Order.requester_id == requester_id,
            Order.content_item_id == content_item_id,
            Order.status == OrderStatus.PENDING,
        )
        .order_by(Order.created_at.desc())
        .first()
    )
