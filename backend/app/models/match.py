from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel

from app.models.tournament import utcnow

SYSTEM_ACTOR = "system"


class MatchStatus(str, Enum):
    pending = "pending"  # waiting for participants
    ready = "ready"  # both participants known
    in_progress = "in_progress"  # discussion thread open
    bye = "bye"  # one participant auto-advances
    completed = "completed"


class BracketType(str, Enum):
    winners = "winners"
    losers = "losers"
    grand_finals = "grand_finals"
    round_robin = "round_robin"


REPORTABLE_STATUSES = frozenset({MatchStatus.ready.value, MatchStatus.in_progress.value})


class Match(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "match_id", name="uq_tournament_match"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    guild_id: str = Field(index=True)
    tournament_id: str = Field(foreign_key="tournament.tournament_id", index=True)
    match_id: str

    # Bracket position
    round: int
    match_number: int  # stable ordinal within (bracket_type, round)
    bracket_type: str  # "winners" | "losers" | "grand_finals" | "round_robin"

    # None = bye (round 1) or not yet determined
    participant1_id: Optional[str] = Field(default=None)
    participant2_id: Optional[str] = Field(default=None)

    status: str = Field(default=MatchStatus.pending.value, index=True)

    # Progression: winner goes to next_match_id, loser (double elim) to loser_next_match_id
    next_match_id: Optional[str] = Field(default=None)
    next_match_slot: Optional[int] = Field(default=None)  # 1 or 2
    loser_next_match_id: Optional[str] = Field(default=None)
    loser_next_match_slot: Optional[int] = Field(default=None)
    # Grand finals only: the reset match is played only if the losers-bracket champion wins
    is_reset_gate: bool = Field(default=False)

    # Two-party result reporting
    reported_winner_id: Optional[str] = Field(default=None)
    reported_by: Optional[str] = Field(default=None)
    reported_at: Optional[datetime] = Field(default=None)
    confirmed_by: Optional[str] = Field(default=None)
    disputed: bool = Field(default=False)
    score: Optional[str] = Field(default=None)

    # Set exactly once, on completion
    winner_id: Optional[str] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)

    thread_ref: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def slot_of(self, participant_id: Optional[str]) -> Optional[int]:
        if participant_id is None:
            return None
        if participant_id == self.participant1_id:
            return 1
        if participant_id == self.participant2_id:
            return 2
        return None

    def opponent_of(self, participant_id: str) -> Optional[str]:
        slot = self.slot_of(participant_id)
        if slot == 1:
            return self.participant2_id
        if slot == 2:
            return self.participant1_id
        return None

    @property
    def sole_participant_id(self) -> Optional[str]:
        filled = [p for p in (self.participant1_id, self.participant2_id) if p]
        return filled[0] if len(filled) == 1 else None
