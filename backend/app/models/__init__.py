from app.models.match import BracketType, Match, MatchStatus
from app.models.participant import Participant, ParticipantKind
from app.models.tournament import Tournament, TournamentStatus, TournamentType

__all__ = [
    "Tournament",
    "TournamentStatus",
    "TournamentType",
    "Participant",
    "ParticipantKind",
    "Match",
    "MatchStatus",
    "BracketType",
]
