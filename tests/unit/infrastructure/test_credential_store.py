"""
Tests for the settings-backed credential store.
"""
import pytest

from core.domain.exceptions import FeedAuthenticationError
from core.infrastructure.adapters.credentials.settings_credential_store import (
    SettingsCredentialStore,
)
from core.settings.modules import AmazonSettings


@pytest.mark.asyncio
async def test_default_ref_uses_app_refresh_token(amazon_settings):
    store = SettingsCredentialStore(amazon_settings)

    assert await store.get_refresh_token("seller-1", None) == "Atzr|default-token"
    assert await store.get_refresh_token("seller-1", "default") == "Atzr|default-token"


@pytest.mark.asyncio
async def test_named_ref(amazon_settings):
    store = SettingsCredentialStore(amazon_settings)

    assert await store.get_refresh_token("seller-b", "seller-b") == "Atzr|seller-b-token"


@pytest.mark.asyncio
async def test_unknown_ref_is_an_auth_failure(amazon_settings):
    store = SettingsCredentialStore(amazon_settings)

    with pytest.raises(FeedAuthenticationError):
        await store.get_refresh_token("seller-1", "nobody")


@pytest.mark.asyncio
async def test_explicit_default_entry_wins():
    settings = AmazonSettings(
        refresh_token="Atzr|app-token",
        credentials={"default": "Atzr|configured-default"},
    )

    store = SettingsCredentialStore(settings)

    assert await store.get_refresh_token("seller-1", None) == "Atzr|configured-default"


@pytest.mark.asyncio
async def test_no_tokens_configured():
    store = SettingsCredentialStore(AmazonSettings(refresh_token=None, credentials={}))

    with pytest.raises(FeedAuthenticationError):
        await store.get_refresh_token("seller-1", None)
