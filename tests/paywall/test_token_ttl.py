"""Tests for paywall config: TTL ссылок."""
from datetime import timedelta
from unittest.mock import patch

import pytest

from content_access.core.errors import ValidationFailed


def test_default_ttl_is_24_hours():
    from content_access.paywall.config import resolve_token_ttl

    assert resolve_token_ttl(None) == timedelta(hours=24)


def test_operator_ttl_clamped_to_bounds():
    with patch("content_access.paywall.config.settings") as mock_settings:
        mock_settings.download_token_min_ttl_seconds = 60
        mock_settings.download_token_max_ttl_hours = 48
        from content_access.paywall.config import resolve_token_ttl

        assert resolve_token_ttl(timedelta(seconds=5)) == timedelta(seconds=60)
        assert resolve_token_ttl(timedelta(hours=2)) == timedelta(hours=2)
        assert resolve_token_ttl(timedelta(days=30)) == timedelta(hours=48)


def test_non_positive_ttl_rejected():
    from content_access.paywall.config import resolve_token_ttl

    with pytest.raises(ValidationFailed):
        resolve_token_ttl(timedelta(0))
    with pytest.raises(ValidationFailed):
        resolve_token_ttl(timedelta(seconds=-1))


def test_default_ttl_and_currency_follow_settings():
    with patch("content_access.paywall.config.settings") as mock_settings:
        mock_settings.download_token_ttl_hours = 6
        mock_settings.default_currency = "USD"
        from content_access.paywall.config import get_default_currency, get_default_token_ttl, resolve_token_ttl

        assert get_default_token_ttl() == timedelta(hours=6)
        assert resolve_token_ttl(None) == timedelta(hours=6)
        assert get_default_currency() == "USD"
