"""Map engine exceptions onto HTTP responses."""
from fastapi import HTTPException

from app.exceptions import (
    BracketEngineError,
    BracketGenerationFailure,
    CreationSessionNotFound,
    InsufficientParticipants,
    MatchNotFound,
    NotAParticipant,
    ReportConflict,
    TournamentNotFound,
)


def to_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, (TournamentNotFound, MatchNotFound, CreationSessionNotFound)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, NotAParticipant):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ReportConflict):
        return HTTPException(
            status_code=409,
            detail={
                "error": "report_conflict",
                "message": str(exc),
                "match_id": exc.match_id,
                "pending_winner_id": exc.pending_winner_id,
                "conflicting_winner_id": exc.conflicting_winner_id,
            },
        )
    if isinstance(exc, InsufficientParticipants):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, BracketGenerationFailure):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, BracketEngineError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=422, detail=str(exc))
