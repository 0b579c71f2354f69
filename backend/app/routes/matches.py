"""
Match result endpoints: report -> confirm, dispute, admin dispute resolution.

Completing a match advances its winner downstream and may finish the tournament.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.exceptions import BracketEngineError
from app.routes.errors import to_http_exception
from app.runtime import BracketRuntime, get_runtime
from app.schemas import MatchRead, TournamentRead

router = APIRouter()


class ReportRequest(BaseModel):
    user_id: str
    winner_id: str
    is_admin: bool = False
    score: Optional[str] = None


class MatchActionRequest(BaseModel):
    user_id: str
    is_admin: bool = False
    reason: Optional[str] = None


class MatchActionResponse(BaseModel):
    match: MatchRead
    changed: bool
    now_ready: List[str] = []
    tournament: Optional[TournamentRead] = None


def _action_response(result) -> MatchActionResponse:
    tournament = None
    if result.tournament_result is not None:
        tournament = TournamentRead.model_validate(result.tournament_result.tournament)
    return MatchActionResponse(
        match=MatchRead.model_validate(result.match),
        changed=result.changed,
        now_ready=[m.match_id for m in result.now_ready],
        tournament=tournament,
    )


@router.get("/guilds/{guild_id}/tournaments/{tournament_id}/matches", response_model=List[MatchRead])
def list_matches(guild_id: str, tournament_id: str, runtime: BracketRuntime = Depends(get_runtime)):
    try:
        runtime.state_machine.load(guild_id, tournament_id)
    except BracketEngineError as e:
        raise to_http_exception(e)
    return runtime.gateway.get_matches(guild_id, tournament_id)


@router.get("/guilds/{guild_id}/tournaments/{tournament_id}/matches/{match_id}", response_model=MatchRead)
def get_match(guild_id: str, tournament_id: str, match_id: str, runtime: BracketRuntime = Depends(get_runtime)):
    try:
        return runtime.progression.load_match(guild_id, tournament_id, match_id)
    except BracketEngineError as e:
        raise to_http_exception(e)


@router.post(
    "/guilds/{guild_id}/tournaments/{tournament_id}/matches/{match_id}/report",
    response_model=MatchActionResponse,
)
def report_result(
    guild_id: str,
    tournament_id: str,
    match_id: str,
    body: ReportRequest,
    runtime: BracketRuntime = Depends(get_runtime),
):
    try:
        result = runtime.progression.report_winner(
            guild_id,
            tournament_id,
            match_id,
            body.winner_id,
            body.user_id,
            is_admin=body.is_admin,
            score=body.score,
        )
    except BracketEngineError as e:
        raise to_http_exception(e)
    return _action_response(result)


@router.post(
    "/guilds/{guild_id}/tournaments/{tournament_id}/matches/{match_id}/confirm",
    response_model=MatchActionResponse,
)
def confirm_result(
    guild_id: str,
    tournament_id: str,
    match_id: str,
    body: MatchActionRequest,
    runtime: BracketRuntime = Depends(get_runtime),
):
    try:
        result = runtime.progression.confirm_winner(
            guild_id, tournament_id, match_id, body.user_id, is_admin=body.is_admin
        )
    except BracketEngineError as e:
        raise to_http_exception(e)
    return _action_response(result)


@router.post(
    "/guilds/{guild_id}/tournaments/{tournament_id}/matches/{match_id}/dispute",
    response_model=MatchActionResponse,
)
def dispute_result(
    guild_id: str,
    tournament_id: str,
    match_id: str,
    body: MatchActionRequest,
    runtime: BracketRuntime = Depends(get_runtime),
):
    try:
        result = runtime.progression.dispute_winner(
            guild_id, tournament_id, match_id, body.user_id, is_admin=body.is_admin, reason=body.reason
        )
    except BracketEngineError as e:
        raise to_http_exception(e)
    return _action_response(result)


@router.post(
    "/guilds/{guild_id}/tournaments/{tournament_id}/matches/{match_id}/resolve",
    response_model=MatchActionResponse,
)
def resolve_dispute(
    guild_id: str,
    tournament_id: str,
    match_id: str,
    body: MatchActionRequest,
    runtime: BracketRuntime = Depends(get_runtime),
):
    try:
        result = runtime.progression.resolve_dispute(
            guild_id, tournament_id, match_id, body.user_id, is_admin=body.is_admin
        )
    except BracketEngineError as e:
        raise to_http_exception(e)
    return _action_response(result)
