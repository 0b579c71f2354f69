"""
Read models shared by the API and the notification payloads.

``tournament_state`` / ``match_state`` build the renderable state handed to the
notification gateway: JSON-safe dicts, no formatting.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from app.models.match import Match
from app.models.tournament import Tournament


class TournamentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tournament_id: str
    guild_id: str
    name: str
    description: Optional[str] = None
    type: str
    team_size: int
    max_participants: Optional[int] = None
    registration_close_time: datetime
    start_time: datetime
    status: str
    current_round: int
    channel_ref: Optional[str] = None
    creator_id: str
    creator_name: str
    winner_id: Optional[str] = None
    winner_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TeamMemberRead(BaseModel):
    user_id: str
    username: Optional[str] = None


class ParticipantRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    participant_id: str
    kind: str
    ref_id: str
    captain_user_id: str
    display_name: str
    team_members: Optional[List[TeamMemberRead]] = None
    seed: Optional[int] = None
    wins: int
    losses: int
    eliminated: bool
    joined_at: datetime


class MatchRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    match_id: str
    tournament_id: str
    round: int
    match_number: int
    bracket_type: str
    participant1_id: Optional[str] = None
    participant2_id: Optional[str] = None
    status: str
    next_match_id: Optional[str] = None
    next_match_slot: Optional[int] = None
    loser_next_match_id: Optional[str] = None
    loser_next_match_slot: Optional[int] = None
    reported_winner_id: Optional[str] = None
    reported_by: Optional[str] = None
    reported_at: Optional[datetime] = None
    confirmed_by: Optional[str] = None
    disputed: bool
    score: Optional[str] = None
    winner_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    thread_ref: Optional[str] = None


class StandingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    participant_id: str
    wins: int
    losses: int
    head_to_head: int


def tournament_state(tournament: Tournament, event: str, **extra: Any) -> Dict[str, Any]:
    state = TournamentRead.model_validate(tournament).model_dump(mode="json")
    state["event"] = event
    state.update(extra)
    return state


def match_state(match: Match, event: str, **extra: Any) -> Dict[str, Any]:
    state = MatchRead.model_validate(match).model_dump(mode="json")
    state["event"] = event
    state.update(extra)
    return state
