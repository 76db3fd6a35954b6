"""Per-(user, kind) run locks."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from core.domain.enums import SyncKind
from core.domain.exceptions import SyncAlreadyRunningError

logger = logging.getLogger(__name__)


class RunLockRegistry:
    """
    At most one sync run per (user_id, kind) in this process.

    A second request for a held key is rejected, not queued: two runs
    of the same kind would race on the same breakdown rows.
    """

    def __init__(self) -> None:
        self._held: set[tuple[str, SyncKind]] = set()
        self._guard = asyncio.Lock()

    def is_held(self, user_id: str, kind: SyncKind) -> bool:
        return (user_id, kind) in self._held

    @asynccontextmanager
    async def acquire(self, user_id: str, kind: SyncKind) -> AsyncIterator[None]:
        """Hold the lock for the duration of the block.

        Raises:
            SyncAlreadyRunningError: If a run of this kind is in progress for the user
        """
        key = (user_id, kind)
        async with self._guard:
            if key in self._held:
                logger.warning(f"[LOCK] Rejected concurrent {kind.value} sync for user {user_id}")
                raise SyncAlreadyRunningError(user_id, kind.value)
            self._held.add(key)

        try:
            yield
        finally:
            self._held.discard(key)
