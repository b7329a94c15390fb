"""Session status markers (reply status and hiatus marker)."""

import logging

from turnkeeper.db.models import HiatusRecord, HiatusStatus, TimestampStatus
from turnkeeper.db.repository import Repository
from turnkeeper.engine.interfaces import Notifier

logger = logging.getLogger(__name__)


def hiatus_status_of(hiatus: HiatusRecord | None) -> HiatusStatus:
    if hiatus is None:
        return HiatusStatus.NO_HIATUS
    if hiatus.expires_at is None:
        return HiatusStatus.ACTIVE_INDEFINITE
    return HiatusStatus.ACTIVE


class StatusBoard:
    """Persists a session's status and surfaces it through the notifier."""

    def __init__(self, repo: Repository, notifier: Notifier):
        self.repo = repo
        self.notifier = notifier

    async def record(
        self,
        channel_id: int,
        status: TimestampStatus | None = None,
        hiatus_status: HiatusStatus | None = None,
    ) -> None:
        await self.repo.set_session_status(channel_id, status, hiatus_status)
        try:
            await self.notifier.update_status(channel_id, status, hiatus_status)
        except Exception as e:
            logger.error(f"Failed to surface status for channel {channel_id}: {e}")
