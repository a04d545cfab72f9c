"""
Admin API: рефанд заказа и операторские ссылки. Доступ по X-Admin-Key.
"""
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from content_access.api.deps import get_client_ip, get_order_ledger, require_admin
from content_access.api.routes.downloads import to_link_out
from content_access.api.routes.payments import to_order_out
from content_access.db.session import get_db
from content_access.schemas.access import DownloadLinkOut, OperatorLinkIn, OrderOut, RefundIn
from content_access.services.audit.service import AuditService
from content_access.services.orders.queries import find_completed_order
from content_access.services.orders.service import OrderLedger
from content_access.services.tokens.service import TokenIssuer


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/orders/{order_id}/refund", response_model=OrderOut)
def refund_order(
    order_id: str,
    payload: RefundIn | None = None,
    ledger: OrderLedger = Depends(get_order_ledger),
) -> OrderOut:
    """RefundOrder: completed -> refunded. Уже выданные ссылки продолжают работать до истечения."""
    payload = payload or RefundIn()
    order = ledger.refund(order_id, actor_id="admin", refund_at_gateway=payload.refund_at_gateway)
    ledger.db.commit()
    return to_order_out(order)


@router.post("/download-links", response_model=DownloadLinkOut)
def issue_operator_link(
    payload: OperatorLinkIn,
    client_ip: str = Depends(get_client_ip),
    db: Session = Depends(get_db),
) -> DownloadLinkOut:
    """
    Ссылка, выданная оператором (поддержка): те же правила, что и для клиента -
    paid только при completed-заказе этого requester; TTL зажимается в границы настроек.
    """
    issuer = TokenIssuer(db)
    ttl = timedelta(seconds=payload.ttl_seconds) if payload.ttl_seconds is not None else None
    completed = find_completed_order(db, payload.requester_id, payload.content_item_id)
    order_id = completed.id if completed is not None else None
    token = issuer.issue(
        payload.requester_id,
        payload.content_item_id,
        order_id,
        ttl,
        requester_ip=client_ip,
        kind="operator",
    )
    AuditService(db).token_event(token, "operator_link_issued")
    db.commit()
    return to_link_out(token)
