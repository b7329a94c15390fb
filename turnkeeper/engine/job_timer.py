"""Named one-shot timers on top of APScheduler."""

import itertools
import logging
from datetime import datetime
from typing import Awaitable, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from turnkeeper.errors import SchedulingError

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


def build_scheduler() -> AsyncIOScheduler:
    """Scheduler used in production: UTC, late jobs always run once."""
    return AsyncIOScheduler(
        timezone="UTC",
        job_defaults={"misfire_grace_time": None, "coalesce": True, "max_instances": 1},
    )


class JobTimer:
    """Registry of named timers, at most one live entry per name.

    Every entry is an absolute ``DateTrigger`` job, so it fires exactly once
    and is dropped by the scheduler afterwards. Each installed entry gets a
    generation number; a fire whose generation no longer matches the
    registry (the name was cancelled or replaced after the job was handed to
    the executor) is ignored.

    The registry lives in memory only. Everything in it can be rebuilt from
    the database by ``RecoveryLoader``.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self._scheduler = scheduler or build_scheduler()
        self._generations: dict[str, int] = {}
        self._counter = itertools.count(1)

    # Lifecycle

    def start(self, paused: bool = False) -> None:
        """Start the underlying scheduler. Needs a running event loop."""
        if not self._scheduler.running:
            self._scheduler.start(paused=paused)
            logger.info("Job timer started")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Job timer shut down")

    # Operations

    def schedule(self, name: str, fire_at: datetime, callback: TimerCallback) -> None:
        """Install a timer, replacing any existing entry with the same name."""
        if fire_at.tzinfo is None:
            raise SchedulingError(f"Refusing to schedule {name} with naive datetime {fire_at}")

        if self.exists(name):
            self.cancel(name)

        generation = next(self._counter)
        self._scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=fire_at),
            args=[name, generation, callback],
            id=name,
            name=name,
            replace_existing=True,
        )
        self._generations[name] = generation
        logger.debug(f"Scheduled job ({name}) for {fire_at}")

    def cancel(self, name: str) -> bool:
        """Cancel a timer. Returns False (and warns) if it does not exist."""
        # A job already handed to the executor is gone from the scheduler but
        # still holds a generation; dropping it turns that fire into a no-op.
        self._generations.pop(name, None)
        try:
            self._lookup(name)
        except SchedulingError as e:
            logger.warning(f"Trying to cancel non-existent job: {e}")
            return False

        self._scheduler.remove_job(name)
        logger.debug(f"Cancelled job ({name})")
        return True

    def exists(self, name: str) -> bool:
        return self._scheduler.get_job(name) is not None

    def reschedule(self, name: str, new_fire_at: datetime) -> bool:
        """Move an existing timer. Returns False (and warns) if it does not exist."""
        if new_fire_at.tzinfo is None:
            raise SchedulingError(
                f"Refusing to reschedule {name} with naive datetime {new_fire_at}"
            )
        try:
            self._lookup(name)
            self._scheduler.reschedule_job(name, trigger=DateTrigger(run_date=new_fire_at))
        except (SchedulingError, JobLookupError) as e:
            logger.warning(f"Trying to reschedule non-existent job: {e}")
            return False

        logger.debug(f"Rescheduled job ({name}) to {new_fire_at}")
        return True

    def next_invocation(self, name: str) -> datetime | None:
        """When the timer will fire next, or None if there is no such timer."""
        job = self._scheduler.get_job(name)
        if job is None:
            return None
        return job.next_run_time

    def names(self) -> list[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    # Internals

    def _lookup(self, name: str):
        job = self._scheduler.get_job(name)
        if job is None:
            raise SchedulingError(f"No job named {name}")
        return job

    async def _fire(self, name: str, generation: int, callback: TimerCallback) -> None:
        # Drop our own entry before running, so the callback sees no live timer
        # under its name and may schedule a fresh one.
        if self._generations.get(name) != generation:
            logger.debug(f"Ignoring stale fire of job ({name})")
            return
        del self._generations[name]

        logger.debug(f"Running job ({name})...")
        try:
            await callback()
        except Exception:
            logger.exception(f"Job ({name}) failed")
