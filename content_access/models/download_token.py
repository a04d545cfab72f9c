"""
DownloadToken: одноразовая ограниченная по времени ссылка на скачивание.
secret: сам bearer-токен (>= 256 бит). used меняется false -> true ровно один раз
условным UPDATE (см. RedemptionGate). Истёкший токен = несуществующий, независимо от used.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Index, String

from content_access.db.base import Base


class DownloadToken(Base):
    __tablename__ = "download_tokens"
    __table_args__ = (
        Index("ix_download_tokens_requester_item_used", "requester_id", "content_item_id", "used"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    secret = Column(String, unique=True, nullable=False)
    requester_id = Column(String, nullable=False, index=True)
    content_item_id = Column(String, nullable=False, index=True)
    order_id = Column(String, nullable=True, index=True)       # None для бесплатных/операторских ссылок
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    issued_ip = Column(String, nullable=True)
    issued_user_agent = Column(String, nullable=True)
    redeemed_ip = Column(String, nullable=True)
    redeemed_user_agent = Column(String, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
