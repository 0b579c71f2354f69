"""
Step-by-step tournament creation: begin a session, answer each step, commit.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.exceptions import BracketEngineError
from app.models.tournament import TournamentType
from app.routes.errors import to_http_exception
from app.runtime import BracketRuntime, get_runtime
from app.schemas import TournamentRead
from app.services.creation_wizard import START_TIME_CHOICES, TEAM_SIZES, CreationSession, WizardStep

router = APIRouter()


class SessionBegin(BaseModel):
    creator_id: str
    creator_name: str
    channel_ref: Optional[str] = None
    name: Optional[str] = None


class StepAnswer(BaseModel):
    value: str


class SessionView(BaseModel):
    session_id: str
    step: str
    choices: List[str] = []
    name: Optional[str] = None
    type: Optional[str] = None
    team_size: Optional[int] = None
    start_time: Optional[datetime] = None


def _choices(step: WizardStep) -> List[str]:
    if step == WizardStep.type:
        return [t.value for t in TournamentType]
    if step == WizardStep.team_size:
        return [str(n) for n in TEAM_SIZES]
    if step == WizardStep.start_time:
        return list(START_TIME_CHOICES)
    return []


def _session_view(session: CreationSession) -> SessionView:
    return SessionView(
        session_id=session.session_id,
        step=session.step.value,
        choices=_choices(session.step),
        name=session.name,
        type=session.type,
        team_size=session.team_size,
        start_time=session.start_time,
    )


@router.post("/guilds/{guild_id}/creation-sessions", response_model=SessionView, status_code=201)
def begin_session(guild_id: str, body: SessionBegin, runtime: BracketRuntime = Depends(get_runtime)):
    try:
        session = runtime.wizard.begin(
            guild_id, body.creator_id, body.creator_name, channel_ref=body.channel_ref, name=body.name
        )
    except (BracketEngineError, ValueError) as e:
        raise to_http_exception(e)
    return _session_view(session)


@router.get("/guilds/{guild_id}/creation-sessions/{session_id}", response_model=SessionView)
def get_session_state(guild_id: str, session_id: str, runtime: BracketRuntime = Depends(get_runtime)):
    try:
        return _session_view(runtime.wizard.get(session_id, guild_id))
    except BracketEngineError as e:
        raise to_http_exception(e)


@router.post("/guilds/{guild_id}/creation-sessions/{session_id}/steps", response_model=SessionView)
def answer_step(guild_id: str, session_id: str, body: StepAnswer, runtime: BracketRuntime = Depends(get_runtime)):
    try:
        session = runtime.wizard.advance(session_id, body.value, guild_id)
    except (BracketEngineError, ValueError) as e:
        raise to_http_exception(e)
    return _session_view(session)


@router.post(
    "/guilds/{guild_id}/creation-sessions/{session_id}/commit",
    response_model=TournamentRead,
    status_code=201,
)
def commit_session(guild_id: str, session_id: str, runtime: BracketRuntime = Depends(get_runtime)):
    try:
        return runtime.wizard.commit(session_id, guild_id)
    except (BracketEngineError, ValueError) as e:
        raise to_http_exception(e)


@router.delete("/guilds/{guild_id}/creation-sessions/{session_id}", status_code=204)
def discard_session(guild_id: str, session_id: str, runtime: BracketRuntime = Depends(get_runtime)):
    runtime.wizard.discard(session_id)
