"""
Общие зависимости роутов: идентичность requester, IP клиента, admin-ключ, Redis.
"""
import hmac
import logging
import re

import redis
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from content_access.core.config import settings
from content_access.db.session import get_db
from content_access.services.orders.service import OrderLedger
from content_access.services.payment_gateway.base import PaymentGateway
from content_access.services.payment_gateway.razorpay import get_payment_gateway

logger = logging.getLogger(__name__)

# Гостевой id генерирует клиент; принимаем только безопасный алфавит
GUEST_ID_RE = re.compile(r"^[A-Za-z0-9_-]{8,128}$")

_redis_client: redis.Redis | None = None


def get_redis() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


def get_requester_id(
    x_user_id: str | None = Header(default=None),
    x_guest_id: str | None = Header(default=None),
) -> str:
    """X-User-Id ставит auth-прокси; без него: гостевой X-Guest-Id. Иначе 401."""
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    if x_guest_id and GUEST_ID_RE.match(x_guest_id.strip()):
        return f"guest:{x_guest_id.strip()}"
    raise HTTPException(status_code=401, detail="requester identity required")


def get_client_ip(request: Request) -> str:
    """Client IP (X-Forwarded-For только от доверенного прокси в production)."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and settings.app_env == "production":
        trusted = settings.trusted_proxy_ips_set
        if trusted and request.client and request.client.host in trusted:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def get_user_agent(request: Request) -> str | None:
    return request.headers.get("User-Agent")


def require_admin(x_admin_key: str | None = Header(default=None)) -> str:
    """Admin-роуты закрыты, пока ключ не задан."""
    if not settings.admin_api_key:
        raise HTTPException(status_code=503, detail="admin api is not configured")
    if not x_admin_key or not hmac.compare_digest(x_admin_key.encode("utf-8"), settings.admin_api_key.encode("utf-8")):
        logger.warning("admin_auth_failed")
        raise HTTPException(status_code=401, detail="unauthorized")
    return "admin"


def get_order_ledger(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    redis_client: redis.Redis = Depends(get_redis),
) -> OrderLedger:
    return OrderLedger(db, gateway, redis_client=redis_client)
