import dataclasses
import os
from datetime import datetime, timedelta

# Keep the import-time production engine in memory and notifications offline
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["NOTIFY_WEBHOOK_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from app.config import load_settings
from app.database import init_db
from app.main import app
from app.runtime import BracketRuntime, get_runtime
from app.services.notification_gateway import NotificationGateway

TEST_DATABASE_URL = "sqlite:///:memory:"
START_OF_TEST = datetime(2026, 3, 1, 12, 0, 0)


# ============================================================================
# Test doubles
# ============================================================================


class RecordingNotifier(NotificationGateway):
    """Records every notification instead of sending it."""

    def __init__(self):
        self.events = []

    def post_tournament_update(self, scope, state):
        self.events.append(("tournament_update", scope, state))

    def create_match_thread(self, scope, match):
        thread_ref = f"thread-{match['match_id']}"
        self.events.append(("create_match_thread", scope, match))
        return thread_ref

    def archive_thread(self, thread_ref):
        self.events.append(("archive_thread", thread_ref, None))

    def post_match_update(self, thread_ref, state):
        self.events.append(("match_update", thread_ref, state))

    def raise_escalation(self, scope, state):
        self.events.append(("escalation", scope, state))

    def of(self, kind):
        return [e for e in self.events if e[0] == kind]

    def tournament_events(self):
        return [state["event"] for kind, _, state in self.events if kind == "tournament_update"]


class FakeTimer:
    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.cancelled or self.fired:
            return
        self.fired = True
        self.function()


class FakeTimerFactory:
    """Stands in for threading.Timer; timers only run when a test fires them."""

    def __init__(self):
        self.timers = []

    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    def live(self):
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]

    def fire_due(self):
        """Fire every live timer whose delay is zero (a timestamp already in the past)."""
        for timer in [t for t in self.live() if t.interval == 0]:
            timer.fire()

    def fire_all(self):
        for timer in sorted(self.live(), key=lambda t: t.interval):
            timer.fire()


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(name="engine")
def engine_fixture():
    """Fresh in-memory database per test; StaticPool so every session shares it."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="settings")
def settings_fixture():
    # Seeding follows join order so brackets are predictable in tests
    return dataclasses.replace(
        load_settings(),
        randomize_seeding=False,
        bracket_reset_enabled=True,
        read_retry_delay_seconds=0,
        registration_close_lead_minutes=15,
    )


@pytest.fixture(name="notifier")
def notifier_fixture():
    return RecordingNotifier()


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock(START_OF_TEST)


@pytest.fixture(name="timers")
def timers_fixture():
    return FakeTimerFactory()


@pytest.fixture(name="runtime")
def runtime_fixture(engine, settings, notifier, clock, timers):
    return BracketRuntime(engine, settings, notifier=notifier, clock=clock, timer_factory=timers)


@pytest.fixture(name="make_tournament")
def make_tournament_fixture(runtime, clock):
    """Create a tournament and register *count* solo players p1..pN (in that order)."""

    def _make(count=4, tournament_type="single_elim", guild_id="guild-1", start_in=timedelta(hours=1)):
        tournament = runtime.create_tournament(
            guild_id=guild_id,
            name=f"{tournament_type} cup",
            tournament_type=tournament_type,
            start_time=clock() + start_in,
            creator_id="creator",
            creator_name="Creator",
        )
        for i in range(1, count + 1):
            runtime.state_machine.join(guild_id, tournament.tournament_id, f"p{i}", f"Player {i}")
        return tournament

    return _make


@pytest.fixture(name="client")
def client_fixture(runtime):
    """Test client wired to the per-test runtime.

    Override MUST be set BEFORE TestClient() so startup uses the test runtime.
    """
    app.dependency_overrides[get_runtime] = lambda: runtime

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
