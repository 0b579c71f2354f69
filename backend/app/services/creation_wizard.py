"""
Tournament creation wizard.

A short-lived session object walks a creator through name -> type -> team
size -> start time, then creates the tournament in a single ``commit()``.
Sessions are keyed by a random id and expire after a TTL.
"""
import logging
import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional

from app.exceptions import CreationSessionNotFound
from app.models.tournament import Tournament, TournamentType, utcnow

logger = logging.getLogger(__name__)

TEAM_SIZES = (1, 2, 3, 4, 5)
START_TIME_CHOICES = ("30m", "1h", "2h", "3h", "24h")
MAX_NAME_LENGTH = 100

_RELATIVE_TIME = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?$")


def parse_time_string(value: str, now: datetime) -> datetime:
    """
    Turn "30m", "1h", "2h30m" (relative to *now*) or an ISO timestamp into a
    naive UTC start time. Raises ValueError for anything else or a time in the past.
    """
    text = (value or "").strip().lower()
    match = _RELATIVE_TIME.match(text)
    if text and match and (match.group(1) or match.group(2)):
        hours = int(match.group(1) or 0)
        minutes = int(match.group(2) or 0)
        if hours == 0 and minutes == 0:
            raise ValueError("Start time must be in the future")
        return now + timedelta(hours=hours, minutes=minutes)

    try:
        parsed = datetime.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid time format: {value!r}. Use 30m, 1h, 2h30m or an ISO timestamp")
    if parsed.tzinfo is not None:
        parsed = to_naive_utc(parsed)
    if parsed <= now:
        raise ValueError("Start time must be in the future")
    return parsed


def to_naive_utc(value: datetime) -> datetime:
    offset = value.utcoffset() or timedelta(0)
    return (value - offset).replace(tzinfo=None)


class WizardStep(str, Enum):
    name = "name"
    type = "type"
    team_size = "team_size"
    start_time = "start_time"
    done = "done"


@dataclass
class CreationSession:
    session_id: str
    guild_id: str
    creator_id: str
    creator_name: str
    channel_ref: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    step: WizardStep = WizardStep.name

    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    team_size: Optional[int] = None
    start_time: Optional[datetime] = None

    def expired(self, now: datetime, ttl_seconds: int) -> bool:
        return now - self.created_at > timedelta(seconds=ttl_seconds)

    def set_name(self, name: str, description: Optional[str] = None) -> None:
        name = (name or "").strip()
        if not name:
            raise ValueError("Tournament name is required")
        if len(name) > MAX_NAME_LENGTH:
            raise ValueError(f"Tournament name must be at most {MAX_NAME_LENGTH} characters")
        self.name = name
        self.description = description
        self.step = WizardStep.type

    def set_type(self, tournament_type: str) -> None:
        if tournament_type not in {t.value for t in TournamentType}:
            raise ValueError(f"Unknown tournament type: {tournament_type}")
        self.type = tournament_type
        self.step = WizardStep.team_size

    def set_team_size(self, team_size: int) -> None:
        team_size = int(team_size)
        if team_size not in TEAM_SIZES:
            raise ValueError(f"Team size must be one of {TEAM_SIZES}")
        self.team_size = team_size
        self.step = WizardStep.start_time

    def set_start_time(self, value: str, now: datetime) -> None:
        self.start_time = parse_time_string(value, now)
        self.step = WizardStep.done

    def apply(self, value: str, now: datetime) -> None:
        """Feed the answer for the current step."""
        if self.step == WizardStep.name:
            self.set_name(value)
        elif self.step == WizardStep.type:
            self.set_type(value)
        elif self.step == WizardStep.team_size:
            try:
                self.set_team_size(int(value))
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid team size: {value!r}") from e
        elif self.step == WizardStep.start_time:
            self.set_start_time(value, now)
        else:
            raise ValueError("All steps are complete; commit the session")


class CreationWizard:
    def __init__(
        self,
        create_tournament: Callable[..., Tournament],
        ttl_seconds: int = 900,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.create_tournament = create_tournament
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._sessions: Dict[str, CreationSession] = {}
        self._lock = threading.Lock()

    def begin(
        self,
        guild_id: str,
        creator_id: str,
        creator_name: str,
        channel_ref: Optional[str] = None,
        name: Optional[str] = None,
    ) -> CreationSession:
        self.purge_expired()
        session = CreationSession(
            session_id=uuid.uuid4().hex,
            guild_id=guild_id,
            creator_id=creator_id,
            creator_name=creator_name,
            channel_ref=channel_ref,
            created_at=self.clock(),
        )
        if name is not None:
            session.set_name(name)
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str, guild_id: Optional[str] = None) -> CreationSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and guild_id is not None and session.guild_id != guild_id:
                session = None
            if session is not None and session.expired(self.clock(), self.ttl_seconds):
                del self._sessions[session_id]
                session = None
        if session is None:
            raise CreationSessionNotFound("Session expired. Please start again.")
        return session

    def advance(self, session_id: str, value: str, guild_id: Optional[str] = None) -> CreationSession:
        session = self.get(session_id, guild_id)
        session.apply(value, self.clock())
        return session

    def commit(self, session_id: str, guild_id: Optional[str] = None) -> Tournament:
        session = self.get(session_id, guild_id)
        if session.step != WizardStep.done:
            raise ValueError(f"Session is incomplete; next step is {session.step.value}")
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise CreationSessionNotFound("Session already committed")
        tournament = self.create_tournament(
            guild_id=session.guild_id,
            name=session.name,
            tournament_type=session.type,
            start_time=session.start_time,
            creator_id=session.creator_id,
            creator_name=session.creator_name,
            team_size=session.team_size,
            description=session.description,
            channel_ref=session.channel_ref,
        )
        logger.info(f"Creation session {session_id} committed as tournament {tournament.tournament_id}")
        return tournament

    def discard(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if s.expired(now, self.ttl_seconds)]
            for sid in stale:
                del self._sessions[sid]
        return len(stale)
