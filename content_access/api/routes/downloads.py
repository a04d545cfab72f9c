from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from content_access.api.deps import get_client_ip, get_requester_id, get_user_agent
from content_access.core.config import settings
from content_access.db.session import get_db
from content_access.models.download_token import DownloadToken
from content_access.schemas.access import DownloadLinkIn, DownloadLinkOut, RedemptionOut
from content_access.services.redemption.service import RedemptionGate
from content_access.services.tokens.service import TokenIssuer
from content_access.utils.clock import as_utc


router = APIRouter(prefix="/downloads", tags=["downloads"])


def to_link_out(token: DownloadToken) -> DownloadLinkOut:
    return DownloadLinkOut(
        token_id=token.id,
        token=token.secret,
        content_item_id=token.content_item_id,
        expires_at=as_utc(token.expires_at),
        download_url=f"{settings.public_base_url.rstrip('/')}/downloads/{token.secret}",
    )


@router.post("/links", response_model=DownloadLinkOut)
def issue_download_link(
    payload: DownloadLinkIn,
    requester_id: str = Depends(get_requester_id),
    client_ip: str = Depends(get_client_ip),
    user_agent: str | None = Depends(get_user_agent),
    db: Session = Depends(get_db),
) -> DownloadLinkOut:
    token = TokenIssuer(db).issue_download_link(
        payload.content_item_id,
        requester_id,
        requester_ip=client_ip,
        user_agent=user_agent,
    )
    db.commit()
    return to_link_out(token)


@router.get("/{secret}", response_model=RedemptionOut)
def redeem_download_link(
    secret: str,
    client_ip: str = Depends(get_client_ip),
    user_agent: str | None = Depends(get_user_agent),
    db: Session = Depends(get_db),
) -> RedemptionOut:
    """
    RedeemDownloadLink: одноразово. Ответ это указатель для Delivery Adapter
    (storage-ссылка на байты или vault-ссылка), сами байты здесь не отдаются.
    """
    pointer = RedemptionGate(db).redeem(secret, client_ip, user_agent)
    db.commit()
    return RedemptionOut(
        kind=pointer.kind,
        reference=pointer.reference,
        content_item_id=pointer.content_item_id,
        redeemed_at=pointer.redeemed_at,
    )
