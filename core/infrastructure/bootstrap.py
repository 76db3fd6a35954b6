"""
Service wiring.

Builds a FeeSyncService from application settings, shared by the API
and the background worker.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.application.services.fee_sync_service import FeeSyncService
from core.infrastructure.adapters.credentials.settings_credential_store import SettingsCredentialStore
from core.infrastructure.database.config import get_session_factory
from core.infrastructure.marketplace.amazon import SpApiGatewayFactory
from core.settings import AppSettings, get_app_settings
from orchestration import EventBusProtocol, RunLockRegistry


logger = logging.getLogger(__name__)


def create_fee_sync_service(
    settings: Optional[AppSettings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    event_bus: Optional[EventBusProtocol] = None,
    locks: Optional[RunLockRegistry] = None,
) -> FeeSyncService:
    """
    Create a FeeSyncService backed by SP-API and the configured database.

    Args:
        settings: Application settings (loaded from env if None)
        session_factory: Session factory (global one if None)
        event_bus: Lifecycle event bus (in-memory if None)
        locks: Run lock registry shared within the process

    Returns:
        FeeSyncService instance
    """
    settings = settings or get_app_settings()
    service = FeeSyncService(
        session_factory=session_factory or get_session_factory(),
        credential_store=SettingsCredentialStore(settings.amazon),
        gateway_factory=SpApiGatewayFactory(settings.amazon),
        settings=settings.fee_sync,
        default_marketplace_ids=list(settings.amazon.marketplace_ids),
        event_bus=event_bus,
        locks=locks,
    )
    logger.info(
        f"Created FeeSyncService (marketplace={settings.amazon.marketplace}, "
        f"credential refs={len(settings.amazon.credentials)})"
    )
    return service
