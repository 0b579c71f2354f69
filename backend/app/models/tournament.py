from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back."""
    return datetime.utcnow()


class TournamentType(str, Enum):
    single_elim = "single_elim"
    double_elim = "double_elim"
    round_robin = "round_robin"


class TournamentStatus(str, Enum):
    open = "open"
    closed = "closed"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


TERMINAL_STATUSES = frozenset({TournamentStatus.completed.value, TournamentStatus.cancelled.value})
NON_TERMINAL_STATUSES = frozenset(
    {TournamentStatus.open.value, TournamentStatus.closed.value, TournamentStatus.active.value}
)


class Tournament(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("guild_id", "tournament_id", name="uq_guild_tournament"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: str = Field(index=True, unique=True)
    guild_id: str = Field(index=True)
    name: str
    description: Optional[str] = None

    type: str  # "single_elim" | "double_elim" | "round_robin"
    team_size: int = Field(default=1)  # 1 = 1v1, 2 = 2v2, ...
    max_participants: Optional[int] = Field(default=None)  # None = unlimited

    # Absolute UTC timestamps; the scheduler derives its timers from these
    registration_close_time: datetime
    start_time: datetime

    status: str = Field(default=TournamentStatus.open.value, index=True)
    current_round: int = Field(default=0)

    channel_ref: Optional[str] = Field(default=None)  # opaque notification target
    creator_id: str
    creator_name: str

    winner_id: Optional[str] = Field(default=None)
    winner_name: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
