"""
Settings-backed credential store.

Resolves credential refs from AmazonSettings.credentials; the ref
"default" falls back to the app-wide refresh token.
"""
import logging
from typing import Dict, Optional

from core.application.interfaces import ICredentialStore
from core.domain.exceptions import FeedAuthenticationError
from core.settings.modules.amazon_settings import AmazonSettings

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIAL_REF = "default"


class SettingsCredentialStore(ICredentialStore):
    """Refresh tokens held in configuration."""

    def __init__(self, settings: AmazonSettings):
        self._tokens: Dict[str, str] = dict(settings.credentials)
        if settings.refresh_token and DEFAULT_CREDENTIAL_REF not in self._tokens:
            self._tokens[DEFAULT_CREDENTIAL_REF] = settings.refresh_token

    async def get_refresh_token(self, user_id: str, credential_ref: Optional[str]) -> str:
        ref = credential_ref or DEFAULT_CREDENTIAL_REF
        token = self._tokens.get(ref)
        if not token:
            logger.error(f"❌ [CREDENTIALS] No refresh token for ref {ref!r} (user {user_id})")
            raise FeedAuthenticationError(f"Unknown credential reference: {ref}")
        return token
