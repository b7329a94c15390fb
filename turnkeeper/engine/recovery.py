"""Rebuilds pending timers from the database after a restart."""

import logging

from turnkeeper.db.models import RecoveryReport, TimestampStatus
from turnkeeper.db.repository import Repository
from turnkeeper.engine.clock import Clock
from turnkeeper.engine.escalation import EscalationStateMachine
from turnkeeper.engine.hiatus import HiatusAdjuster
from turnkeeper.engine.status import StatusBoard

logger = logging.getLogger(__name__)


class RecoveryLoader:
    """Re-arms reminder and hiatus timers once at startup.

    Must run before anything else schedules timers, since it reads the
    store as the complete list of what should be pending.
    """

    def __init__(
        self,
        repo: Repository,
        escalation: EscalationStateMachine,
        hiatus: HiatusAdjuster,
        status: StatusBoard,
        clock: Clock,
    ):
        self.repo = repo
        self.escalation = escalation
        self.hiatus = hiatus
        self.status = status
        self.clock = clock

    async def run(self) -> RecoveryReport:
        report = RecoveryReport()
        now = self.clock.now()

        for record in await self.repo.get_reminders():
            if record.due_at < now:
                # The whole reply window passed while we were down
                logger.warning(
                    f"Orphaned reminder {record.timer_name} for {record.character_name} "
                    f"(due {record.due_at}), discarding and marking channel "
                    f"{record.channel_id} overdue"
                )
                await self.repo.delete_reminder(record.channel_id)
                await self.status.record(record.channel_id, status=TimestampStatus.OVERDUE)
                report.orphaned_reminders += 1
                report.orphan_names.append(record.timer_name)
                continue

            self.escalation.restore(record)
            report.restored_reminders += 1
            logger.debug(f"Restored {record.timer_name} (tier {record.tier}) for {record.due_at}")

        for hiatus in await self.repo.get_hiatuses(with_expiry_only=True):
            if hiatus.expires_at < now:
                # Record stays: dropping it without reconciling could hide an overdue reply
                logger.warning(
                    f"Orphaned hiatus {hiatus.timer_name} (expired {hiatus.expires_at}), "
                    f"left for manual cleanup"
                )
                report.orphaned_hiatuses += 1
                report.orphan_names.append(hiatus.timer_name)
                continue

            self.hiatus.restore(hiatus)
            report.restored_hiatuses += 1
            logger.debug(f"Restored {hiatus.timer_name} for {hiatus.expires_at}")

        logger.info(
            f"Recovery finished: {report.restored_reminders} reminders and "
            f"{report.restored_hiatuses} hiatuses restored, "
            f"{report.orphaned_reminders + report.orphaned_hiatuses} orphans"
        )
        return report
