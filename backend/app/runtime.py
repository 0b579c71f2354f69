"""
Runtime wiring: builds the engine components once and connects them.

Timer callbacks land here so that a fired start both activates the tournament
and kicks off play (byes, match threads).
"""
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.engine import Engine

from app.config import Settings, settings as default_settings
from app.database import engine as default_engine, init_db
from app.models.tournament import Tournament, TournamentStatus, utcnow
from app.services.creation_wizard import CreationWizard
from app.services.match_progression import MatchProgressionEngine
from app.services.notification_gateway import NotificationGateway, WebhookNotificationGateway
from app.services.persistence_gateway import PersistenceGateway
from app.services.timer_scheduler import REGISTRATION_CLOSE, TimerFactory, TimerScheduler
from app.services.tournament_locks import TournamentLocks
from app.services.tournament_state_machine import TournamentStateMachine, TransitionResult

logger = logging.getLogger(__name__)


class BracketRuntime:
    def __init__(
        self,
        engine: Engine,
        settings: Settings,
        notifier: Optional[NotificationGateway] = None,
        clock: Callable[[], datetime] = utcnow,
        timer_factory: TimerFactory = threading.Timer,
    ):
        self.engine = engine
        self.settings = settings
        self.gateway = PersistenceGateway(
            engine,
            retry_attempts=settings.read_retry_attempts,
            retry_delay=settings.read_retry_delay_seconds,
        )
        self.notifier = notifier or WebhookNotificationGateway(
            settings.notify_webhook_url, timeout=settings.notify_timeout_seconds
        )
        self.locks = TournamentLocks()
        self.state_machine = TournamentStateMachine(self.gateway, self.notifier, self.locks, settings, clock)
        self.progression = MatchProgressionEngine(
            self.gateway, self.notifier, self.locks, self.state_machine, clock
        )
        self.scheduler = TimerScheduler(
            self.gateway,
            on_registration_close=self.handle_registration_close,
            on_start=self.handle_tournament_start,
            clock=clock,
            timer_factory=timer_factory,
        )
        self.wizard = CreationWizard(self.create_tournament, settings.creation_session_ttl_seconds, clock)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Create tables, re-arm timers and resume play of active tournaments."""
        init_db(self.engine)
        self.scheduler.start()
        for tournament in self.gateway.list_active_tournaments():
            if tournament.status == TournamentStatus.active.value:
                self.progression.kickoff(tournament.guild_id, tournament.tournament_id)

    def stop(self) -> None:
        self.scheduler.stop()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_tournament(self, **kwargs: Any) -> Tournament:
        tournament = self.state_machine.create_tournament(**kwargs)
        self.scheduler.schedule(tournament)
        return tournament

    def handle_registration_close(self, guild_id: str, tournament_id: str) -> TransitionResult:
        result = self.state_machine.close_registration(guild_id, tournament_id)
        if result.tournament.is_terminal:
            self.scheduler.cancel(guild_id, tournament_id)
        else:
            self.scheduler.cancel_timer(guild_id, tournament_id, REGISTRATION_CLOSE)
        return result

    def handle_tournament_start(self, guild_id: str, tournament_id: str, strict: bool = False) -> TransitionResult:
        result = self.state_machine.start_tournament(guild_id, tournament_id, strict=strict)
        if result.tournament.is_terminal:
            self.scheduler.cancel(guild_id, tournament_id)
        elif result.changed and result.tournament.status == TournamentStatus.active.value:
            self.progression.kickoff(guild_id, tournament_id)
        return result

    def force_start(self, guild_id: str, tournament_id: str) -> TransitionResult:
        """Close registration and start now. Unlike the timer path, too few participants is an error."""
        logger.info(f"Force-starting tournament {tournament_id}")
        result = self.handle_tournament_start(guild_id, tournament_id, strict=True)
        self.scheduler.cancel(guild_id, tournament_id)
        return result

    def cancel(self, guild_id: str, tournament_id: str, reason: str = "Cancelled by an administrator") -> TransitionResult:
        result = self.state_machine.cancel(guild_id, tournament_id, reason)
        self.scheduler.cancel(guild_id, tournament_id)
        return result


_runtime: Optional[BracketRuntime] = None


def get_runtime() -> BracketRuntime:
    """Get or create the process-wide runtime."""
    global _runtime
    if _runtime is None:
        _runtime = BracketRuntime(default_engine, default_settings)
    return _runtime
