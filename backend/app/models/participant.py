from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, SQLModel

from app.models.tournament import utcnow


class ParticipantKind(str, Enum):
    user = "user"
    team = "team"


class Participant(SQLModel, table=True):
    __table_args__ = (
        SAUniqueConstraint("tournament_id", "participant_id", name="uq_tournament_participant"),
        # One registration per captain per tournament
        SAUniqueConstraint("tournament_id", "captain_user_id", name="uq_tournament_captain"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    guild_id: str = Field(index=True)
    tournament_id: str = Field(foreign_key="tournament.tournament_id", index=True)
    participant_id: str

    kind: str = Field(default=ParticipantKind.user.value)  # "user" | "team"
    ref_id: str  # user id for solo entries, team id for teams
    captain_user_id: str
    display_name: str
    team_members: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))

    seed: Optional[int] = Field(default=None)
    wins: int = Field(default=0)
    losses: int = Field(default=0)
    eliminated: bool = Field(default=False)
    joined_at: datetime = Field(default_factory=utcnow)

    def member_user_ids(self) -> List[str]:
        ids = [self.captain_user_id]
        for member in self.team_members or []:
            user_id = member.get("user_id")
            if user_id and user_id not in ids:
                ids.append(user_id)
        return ids

    def controlled_by(self, user_id: str) -> bool:
        """True when *user_id* may act for this participant (solo player or any team member)."""
        return user_id in self.member_user_ids()
