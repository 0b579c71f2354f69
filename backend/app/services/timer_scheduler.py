"""
Timer scheduler: deferred registration-close and start events.

Timers are derived from the absolute timestamps stored on each tournament, never
from memory alone. ``start()`` replays every non-terminal tournament: past
timestamps fire immediately, future ones are armed. After a restart the same
call rebuilds the same timer set.
"""
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Tuple

from app.models.tournament import Tournament, TournamentStatus, utcnow
from app.services.persistence_gateway import PersistenceGateway

logger = logging.getLogger(__name__)

REGISTRATION_CLOSE = "registration_close"
TOURNAMENT_START = "start"

TimerKey = Tuple[str, str, str]
TournamentCallback = Callable[[str, str], Any]
TimerFactory = Callable[[float, Callable[[], None]], Any]


class TimerScheduler:
    def __init__(
        self,
        gateway: PersistenceGateway,
        on_registration_close: TournamentCallback,
        on_start: TournamentCallback,
        clock: Callable[[], datetime] = utcnow,
        timer_factory: TimerFactory = threading.Timer,
    ):
        self.gateway = gateway
        self.callbacks: Dict[str, TournamentCallback] = {
            REGISTRATION_CLOSE: on_registration_close,
            TOURNAMENT_START: on_start,
        }
        self.clock = clock
        self.timer_factory = timer_factory
        self._timers: Dict[TimerKey, Any] = {}
        self._lock = threading.Lock()
        self._stopped = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> int:
        """Re-derive timers from every non-terminal tournament. Returns how many were armed."""
        with self._lock:
            self._stopped = False
        armed = 0
        for tournament in self.gateway.list_active_tournaments():
            armed += self.schedule(tournament)
        logger.info(f"Timer scheduler started with {armed} pending timer(s)")
        return armed

    def stop(self) -> None:
        with self._lock:
            self._stopped = True
            timers, self._timers = list(self._timers.values()), {}
        for timer in timers:
            timer.cancel()
        logger.info(f"Timer scheduler stopped, {len(timers)} timer(s) cancelled")

    @property
    def pending(self) -> List[TimerKey]:
        with self._lock:
            return sorted(self._timers)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self, tournament: Tournament) -> int:
        """Arm the timers *tournament* still needs given its status. Returns how many were armed."""
        guild_id, tournament_id = tournament.guild_id, tournament.tournament_id
        if tournament.status not in (TournamentStatus.open.value, TournamentStatus.closed.value):
            self.cancel(guild_id, tournament_id)
            return 0
        armed = 0
        if tournament.status == TournamentStatus.open.value:
            armed += self._arm((guild_id, tournament_id, REGISTRATION_CLOSE), tournament.registration_close_time)
        else:
            self._disarm([(guild_id, tournament_id, REGISTRATION_CLOSE)])
        armed += self._arm((guild_id, tournament_id, TOURNAMENT_START), tournament.start_time)
        return armed

    def cancel(self, guild_id: str, tournament_id: str) -> int:
        """Cancel both timers of a tournament. Unknown or already-fired timers are ignored."""
        cancelled = self._disarm(
            [(guild_id, tournament_id, REGISTRATION_CLOSE), (guild_id, tournament_id, TOURNAMENT_START)]
        )
        if cancelled:
            logger.info(f"Cancelled {cancelled} timer(s) for tournament {tournament_id}")
        return cancelled

    def cancel_timer(self, guild_id: str, tournament_id: str, kind: str) -> bool:
        return self._disarm([(guild_id, tournament_id, kind)]) == 1

    def _disarm(self, keys: List[TimerKey]) -> int:
        with self._lock:
            timers = [self._timers.pop(key) for key in keys if key in self._timers]
        for timer in timers:
            timer.cancel()
        return len(timers)

    def _arm(self, key: TimerKey, when: datetime) -> int:
        delay = max(0.0, (when - self.clock()).total_seconds())
        with self._lock:
            if self._stopped:
                return 0
            previous = self._timers.pop(key, None)
            timer = self.timer_factory(delay, lambda: self._fire(key, timer))
            timer.daemon = True
            self._timers[key] = timer
        if previous is not None:
            previous.cancel()
        timer.start()
        logger.info(f"Scheduled {key[2]} for tournament {key[1]} in {delay:.1f}s")
        return 1

    def _fire(self, key: TimerKey, timer: Any) -> None:
        with self._lock:
            if self._timers.get(key) is not timer:
                return
            del self._timers[key]
        guild_id, tournament_id, kind = key
        logger.info(f"Timer fired: {kind} for tournament {tournament_id}")
        try:
            self.callbacks[kind](guild_id, tournament_id)
        except Exception:
            logger.exception(f"Timer callback {kind} failed for tournament {tournament_id}")
