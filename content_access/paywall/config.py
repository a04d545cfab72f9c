"""
Paywall config: типизированная обёртка над content_access.core.config для TTL ссылок и валюты.
"""
from __future__ import annotations

from datetime import timedelta

from content_access.core.config import settings
from content_access.core.errors import ValidationFailed


def get_default_token_ttl() -> timedelta:
    return timedelta(hours=settings.download_token_ttl_hours)


def get_default_currency() -> str:
    return settings.default_currency


def resolve_token_ttl(ttl: timedelta | None) -> timedelta:
    """
    TTL по умолчанию: 24 часа. Переданный TTL (операторские ссылки) зажимаем в границы настроек.
    Неположительный TTL: ошибка, а не «сразу истёкшая» ссылка.
    """
    if ttl is None:
        return get_default_token_ttl()
    if ttl <= timedelta(0):
        raise ValidationFailed("ttl must be positive")
    lower = timedelta(seconds=settings.download_token_min_ttl_seconds)
    upper = timedelta(hours=settings.download_token_max_ttl_hours)
    return min(max(ttl, lower), upper)
