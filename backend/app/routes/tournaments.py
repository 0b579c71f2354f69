from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator, model_validator

from app.exceptions import BracketEngineError
from app.models.match import MatchStatus
from app.models.tournament import TournamentType
from app.routes.errors import to_http_exception
from app.runtime import BracketRuntime, get_runtime
from app.schemas import MatchRead, ParticipantRead, StandingRead, TeamMemberRead, TournamentRead
from app.services.bracket_generator import round_name
from app.services.creation_wizard import TEAM_SIZES, to_naive_utc
from app.services.standings import calculate_standings

router = APIRouter()


class TournamentCreate(BaseModel):
    name: str
    type: str
    start_time: datetime
    creator_id: str
    creator_name: str
    team_size: int = 1
    description: Optional[str] = None
    max_participants: Optional[int] = None
    channel_ref: Optional[str] = None
    registration_close_time: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v not in {t.value for t in TournamentType}:
            raise ValueError(f"type must be one of {[t.value for t in TournamentType]}")
        return v

    @field_validator("team_size")
    @classmethod
    def validate_team_size(cls, v):
        if v not in TEAM_SIZES:
            raise ValueError(f"team_size must be one of {list(TEAM_SIZES)}")
        return v

    @field_validator("start_time", "registration_close_time")
    @classmethod
    def normalize_utc(cls, v):
        """Timestamps are stored as naive UTC."""
        if v is not None and v.tzinfo is not None:
            return to_naive_utc(v)
        return v

    @model_validator(mode="after")
    def validate_times(self):
        if self.registration_close_time and self.registration_close_time > self.start_time:
            raise ValueError("registration_close_time must be <= start_time")
        return self


class JoinRequest(BaseModel):
    user_id: str
    username: str
    team_name: Optional[str] = None
    members: List[TeamMemberRead] = []


class ActorRequest(BaseModel):
    user_id: str
    is_admin: bool = False
    reason: Optional[str] = None


class TransitionResponse(BaseModel):
    tournament: TournamentRead
    changed: bool
    previous_status: str
    refund_required: bool = False


class TournamentDetail(BaseModel):
    tournament: TournamentRead
    participants: List[ParticipantRead]
    match_counts: dict


class BracketMatch(MatchRead):
    round_name: str


class BracketResponse(BaseModel):
    tournament: TournamentRead
    matches: List[BracketMatch]


def _transition_response(result) -> TransitionResponse:
    return TransitionResponse(
        tournament=TournamentRead.model_validate(result.tournament),
        changed=result.changed,
        previous_status=result.previous_status,
        refund_required=result.refund_required,
    )


def _require_organizer(runtime: BracketRuntime, guild_id: str, tournament_id: str, actor: ActorRequest) -> None:
    tournament = runtime.state_machine.load(guild_id, tournament_id)
    if not actor.is_admin and actor.user_id != tournament.creator_id:
        raise HTTPException(status_code=403, detail="Only the creator or an administrator can do this")


@router.post("/guilds/{guild_id}/tournaments", response_model=TournamentRead, status_code=201)
def create_tournament(guild_id: str, body: TournamentCreate, runtime: BracketRuntime = Depends(get_runtime)):
    try:
        tournament = runtime.create_tournament(guild_id=guild_id, tournament_type=body.type, **body.model_dump(exclude={"type"}))
    except (BracketEngineError, ValueError) as e:
        raise to_http_exception(e)
    return tournament


@router.get("/guilds/{guild_id}/tournaments", response_model=List[TournamentRead])
def list_active_tournaments(guild_id: str, runtime: BracketRuntime = Depends(get_runtime)):
    return runtime.gateway.list_active_tournaments(guild_id)


@router.get("/guilds/{guild_id}/tournaments/{tournament_id}", response_model=TournamentDetail)
def get_tournament(guild_id: str, tournament_id: str, runtime: BracketRuntime = Depends(get_runtime)):
    try:
        tournament = runtime.state_machine.load(guild_id, tournament_id)
    except BracketEngineError as e:
        raise to_http_exception(e)
    participants = runtime.gateway.get_participants(guild_id, tournament_id)
    matches = runtime.gateway.get_matches(guild_id, tournament_id)
    counts = {status.value: 0 for status in MatchStatus}
    for m in matches:
        counts[m.status] = counts.get(m.status, 0) + 1
    return TournamentDetail(
        tournament=TournamentRead.model_validate(tournament),
        participants=[ParticipantRead.model_validate(p) for p in participants],
        match_counts=counts,
    )


@router.get("/guilds/{guild_id}/tournaments/{tournament_id}/bracket", response_model=BracketResponse)
def get_bracket(guild_id: str, tournament_id: str, runtime: BracketRuntime = Depends(get_runtime)):
    try:
        tournament = runtime.state_machine.load(guild_id, tournament_id)
    except BracketEngineError as e:
        raise to_http_exception(e)
    matches = runtime.gateway.get_matches(guild_id, tournament_id)
    winners_rounds = max((m.round for m in matches if m.bracket_type == "winners"), default=0)
    ordered = sorted(matches, key=lambda m: (m.bracket_type != "winners", m.bracket_type, m.round, m.match_number))
    return BracketResponse(
        tournament=TournamentRead.model_validate(tournament),
        matches=[
            BracketMatch(
                **MatchRead.model_validate(m).model_dump(),
                round_name=round_name(m.round, winners_rounds, m.bracket_type),
            )
            for m in ordered
        ],
    )


@router.get("/guilds/{guild_id}/tournaments/{tournament_id}/standings", response_model=List[StandingRead])
def get_standings(guild_id: str, tournament_id: str, runtime: BracketRuntime = Depends(get_runtime)):
    try:
        runtime.state_machine.load(guild_id, tournament_id)
    except BracketEngineError as e:
        raise to_http_exception(e)
    participant_ids = [p.participant_id for p in runtime.gateway.get_participants(guild_id, tournament_id)]
    matches = runtime.gateway.get_matches(guild_id, tournament_id)
    return calculate_standings(tournament_id, participant_ids, matches)


@router.post(
    "/guilds/{guild_id}/tournaments/{tournament_id}/join",
    response_model=ParticipantRead,
    status_code=201,
)
def join_tournament(
    guild_id: str, tournament_id: str, body: JoinRequest, runtime: BracketRuntime = Depends(get_runtime)
):
    try:
        return runtime.state_machine.join(
            guild_id,
            tournament_id,
            body.user_id,
            body.username,
            team_name=body.team_name,
            members=[m.model_dump() for m in body.members],
        )
    except BracketEngineError as e:
        raise to_http_exception(e)


@router.post("/guilds/{guild_id}/tournaments/{tournament_id}/leave", response_model=ParticipantRead)
def leave_tournament(
    guild_id: str, tournament_id: str, body: ActorRequest, runtime: BracketRuntime = Depends(get_runtime)
):
    try:
        return runtime.state_machine.leave(guild_id, tournament_id, body.user_id)
    except BracketEngineError as e:
        raise to_http_exception(e)


@router.post("/guilds/{guild_id}/tournaments/{tournament_id}/force-start", response_model=TransitionResponse)
def force_start(guild_id: str, tournament_id: str, body: ActorRequest, runtime: BracketRuntime = Depends(get_runtime)):
    try:
        _require_organizer(runtime, guild_id, tournament_id, body)
        result = runtime.force_start(guild_id, tournament_id)
    except BracketEngineError as e:
        raise to_http_exception(e)
    return _transition_response(result)


@router.post("/guilds/{guild_id}/tournaments/{tournament_id}/cancel", response_model=TransitionResponse)
def cancel_tournament(
    guild_id: str, tournament_id: str, body: ActorRequest, runtime: BracketRuntime = Depends(get_runtime)
):
    try:
        _require_organizer(runtime, guild_id, tournament_id, body)
        result = runtime.cancel(guild_id, tournament_id, body.reason or "Cancelled by an administrator")
    except BracketEngineError as e:
        raise to_http_exception(e)
    return _transition_response(result)
