"""Shared fixtures: a real SQLite file, a paused scheduler and a fixed clock."""

from datetime import datetime, timedelta
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest_asyncio

from turnkeeper.db.config_store import ConfigurationStore
from turnkeeper.db.migrations import run_migrations
from turnkeeper.db.models import Participant, Session
from turnkeeper.db.repository import Repository
from turnkeeper.engine.escalation import EscalationStateMachine
from turnkeeper.engine.hiatus import HiatusAdjuster
from turnkeeper.engine.job_timer import JobTimer, build_scheduler
from turnkeeper.engine.locks import KeyedLock
from turnkeeper.engine.recovery import RecoveryLoader
from turnkeeper.engine.sessions import SessionService
from turnkeeper.engine.status import StatusBoard

T0 = datetime(2030, 1, 1, 12, 0, tzinfo=ZoneInfo("UTC"))

ALICE = Participant(user_id=1, character_name="Alice")
BOB = Participant(user_id=2, character_name="Bob")
CAROL = Participant(user_id=3, character_name="Carol")

CHANNEL = -100


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class RecordingNotifier:
    """Notifier double that records every call.

    Methods listed in ``failing`` raise instead of recording.
    """

    def __init__(self):
        self.calls: list[tuple[str, tuple]] = []
        self.failing: set[str] = set()
        self._next_message_id = 1000

    def _record(self, method: str, *args) -> None:
        if method in self.failing:
            raise RuntimeError(f"{method} failed")
        self.calls.append((method, args))

    def of(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]

    async def send_reminder(self, channel_id, user_id, character_name, tier, hiatus_active):
        self._record("send_reminder", channel_id, user_id, character_name, tier, hiatus_active)

    async def send_moderator_warning(self, channel_id, user_id, character_name, hiatus_status):
        self._record("send_moderator_warning", channel_id, user_id, character_name, hiatus_status)

    async def send_hiatus_summary(self, user_id, sessions):
        self._record("send_hiatus_summary", user_id, sessions)

    async def send_turn_notification(self, session, previous, reason, message=None):
        self._record("send_turn_notification", session, previous, reason, message)

    async def update_status(self, channel_id, status=None, hiatus_status=None):
        self._record("update_status", channel_id, status, hiatus_status)

    async def announce_hiatus(self, hiatus):
        self._record("announce_hiatus", hiatus)
        self._next_message_id += 1
        return self._next_message_id

    async def edit_hiatus_announcement(self, hiatus):
        self._record("edit_hiatus_announcement", hiatus)

    async def delete_hiatus_announcement(self, hiatus):
        self._record("delete_hiatus_announcement", hiatus)


async def fire_timer(scheduler, name: str) -> None:
    """Fire a timer the way the scheduler does: drop the job, then run it."""
    job = scheduler.get_job(name)
    assert job is not None, f"no timer named {name}"
    scheduler.remove_job(name)
    await job.func(*job.args)


async def add_session(repo: Repository, participants=None, current=None) -> Session:
    participants = participants or [ALICE, BOB, CAROL]
    session = Session(
        channel_id=CHANNEL,
        participants=participants,
        current_turn=current or participants[0],
        last_advance_at=T0,
    )
    await repo.upsert_session(session)
    return session


@pytest_asyncio.fixture
async def repo(tmp_path):
    db_path = tmp_path / "turnkeeper.db"
    await run_migrations(db_path)
    repo = Repository(db_path)
    await repo.connect()
    yield repo
    await repo.close()


@pytest_asyncio.fixture
async def config(repo):
    config = ConfigurationStore(repo)
    # reminder_0 = 2h, reminder_1 = 4h, hiatus = 3h
    for name, hours in (("reminder_0", "2"), ("reminder_1", "4"), ("hiatus", "3")):
        await config.set_value(f"schedule_{name}_hours", hours)
        await config.set_value(f"schedule_{name}_minutes", "0")
    return config


@pytest_asyncio.fixture
async def scheduler():
    scheduler = build_scheduler()
    yield scheduler
    if scheduler.running:
        scheduler.shutdown(wait=False)


@pytest_asyncio.fixture
async def timer(scheduler):
    timer = JobTimer(scheduler)
    timer.start(paused=True)
    yield timer
    timer.shutdown()


@pytest_asyncio.fixture
async def env(repo, config, scheduler, timer):
    """Fully wired core on a paused scheduler."""
    clock = FrozenClock()
    notifier = RecordingNotifier()
    locks = KeyedLock()

    status = StatusBoard(repo, notifier)
    escalation = EscalationStateMachine(repo, timer, config, notifier, status, clock, locks)
    hiatus = HiatusAdjuster(repo, timer, config, notifier, escalation, status, clock, locks)
    sessions = SessionService(repo, escalation, notifier, status, clock, locks)
    recovery = RecoveryLoader(repo, escalation, hiatus, status, clock)

    return SimpleNamespace(
        repo=repo,
        config=config,
        scheduler=scheduler,
        timer=timer,
        clock=clock,
        notifier=notifier,
        status=status,
        escalation=escalation,
        hiatus=hiatus,
        sessions=sessions,
        recovery=recovery,
    )
