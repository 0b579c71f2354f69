"""
Persistence gateway: the durable store for tournaments, participants and matches.

Every call opens its own session, so nothing authoritative is cached between
calls. Reads are retried a bounded number of times on transient database
errors; writes are not retried and surface to the caller.
"""
import logging
import time
from dataclasses import asdict
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from app.exceptions import MatchNotFound, TournamentNotFound
from app.models.match import Match
from app.models.participant import Participant
from app.models.tournament import NON_TERMINAL_STATUSES, Tournament, utcnow
from app.services.bracket_generator import PlannedMatch

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PersistenceGateway:
    def __init__(self, engine: Engine, retry_attempts: int = 3, retry_delay: float = 0.05):
        self.engine = engine
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def _read(self, fn: Callable[[Session], T]) -> T:
        attempt = 1
        while True:
            try:
                with self._session() as session:
                    return fn(session)
            except OperationalError as exc:
                if attempt >= self.retry_attempts:
                    raise
                logger.warning(f"Read failed (attempt {attempt}/{self.retry_attempts}): {exc}")
                attempt += 1
                time.sleep(self.retry_delay)

    # ------------------------------------------------------------------
    # Tournaments
    # ------------------------------------------------------------------

    def get_tournament(self, guild_id: str, tournament_id: str) -> Optional[Tournament]:
        return self._read(
            lambda session: session.exec(
                select(Tournament).where(
                    Tournament.guild_id == guild_id,
                    Tournament.tournament_id == tournament_id,
                )
            ).first()
        )

    def list_active_tournaments(self, guild_id: Optional[str] = None) -> List[Tournament]:
        """Open, closed and active tournaments ordered by start time (all scopes when guild_id is None)."""

        def query(session: Session) -> List[Tournament]:
            stmt = select(Tournament).where(Tournament.status.in_(sorted(NON_TERMINAL_STATUSES)))
            if guild_id is not None:
                stmt = stmt.where(Tournament.guild_id == guild_id)
            return list(session.exec(stmt.order_by(Tournament.start_time, Tournament.id)).all())

        return self._read(query)

    def create_tournament(self, tournament: Tournament) -> Tournament:
        with self._session() as session:
            session.add(tournament)
            session.commit()
            session.refresh(tournament)
            return tournament

    def update_tournament(self, guild_id: str, tournament_id: str, patch: Dict[str, Any]) -> Tournament:
        with self._session() as session:
            tournament = session.exec(
                select(Tournament).where(
                    Tournament.guild_id == guild_id,
                    Tournament.tournament_id == tournament_id,
                )
            ).first()
            if not tournament:
                raise TournamentNotFound(f"Tournament {tournament_id} not found")
            for key, value in patch.items():
                setattr(tournament, key, value)
            tournament.updated_at = utcnow()
            session.add(tournament)
            session.commit()
            session.refresh(tournament)
            return tournament

    def update_tournament_status(self, guild_id: str, tournament_id: str, status: str) -> Tournament:
        return self.update_tournament(guild_id, tournament_id, {"status": status})

    def set_tournament_winner(
        self, guild_id: str, tournament_id: str, winner_id: str, winner_name: str
    ) -> Tournament:
        return self.update_tournament(
            guild_id,
            tournament_id,
            {"status": "completed", "winner_id": winner_id, "winner_name": winner_name},
        )

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def get_participants(self, guild_id: str, tournament_id: str) -> List[Participant]:
        return self._read(
            lambda session: list(
                session.exec(
                    select(Participant)
                    .where(
                        Participant.guild_id == guild_id,
                        Participant.tournament_id == tournament_id,
                    )
                    .order_by(Participant.joined_at, Participant.id)
                ).all()
            )
        )

    def add_participant(self, participant: Participant) -> Participant:
        with self._session() as session:
            session.add(participant)
            session.commit()
            session.refresh(participant)
            return participant

    def remove_participant(self, guild_id: str, tournament_id: str, participant_id: str) -> bool:
        with self._session() as session:
            participant = session.exec(
                select(Participant).where(
                    Participant.guild_id == guild_id,
                    Participant.tournament_id == tournament_id,
                    Participant.participant_id == participant_id,
                )
            ).first()
            if not participant:
                return False
            session.delete(participant)
            session.commit()
            return True

    def update_participant(
        self, guild_id: str, tournament_id: str, participant_id: str, patch: Dict[str, Any]
    ) -> Optional[Participant]:
        with self._session() as session:
            participant = session.exec(
                select(Participant).where(
                    Participant.guild_id == guild_id,
                    Participant.tournament_id == tournament_id,
                    Participant.participant_id == participant_id,
                )
            ).first()
            if not participant:
                return None
            for key, value in patch.items():
                setattr(participant, key, value)
            session.add(participant)
            session.commit()
            session.refresh(participant)
            return participant

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    def create_matches(self, guild_id: str, tournament_id: str, planned: Iterable[PlannedMatch]) -> int:
        """Insert a whole bracket in one transaction: all matches or none."""
        now = utcnow()
        rows = [
            Match(guild_id=guild_id, tournament_id=tournament_id, created_at=now, updated_at=now, **asdict(p))
            for p in planned
        ]
        with self._session() as session:
            session.add_all(rows)
            session.commit()
        return len(rows)

    def get_match(self, guild_id: str, tournament_id: str, match_id: str) -> Optional[Match]:
        return self._read(
            lambda session: session.exec(
                select(Match).where(
                    Match.guild_id == guild_id,
                    Match.tournament_id == tournament_id,
                    Match.match_id == match_id,
                )
            ).first()
        )

    def get_matches(self, guild_id: str, tournament_id: str) -> List[Match]:
        return self._read(
            lambda session: list(
                session.exec(
                    select(Match)
                    .where(Match.guild_id == guild_id, Match.tournament_id == tournament_id)
                    .order_by(Match.id)
                ).all()
            )
        )

    def update_match(self, guild_id: str, tournament_id: str, match_id: str, patch: Dict[str, Any]) -> Match:
        with self._session() as session:
            match = session.exec(
                select(Match).where(
                    Match.guild_id == guild_id,
                    Match.tournament_id == tournament_id,
                    Match.match_id == match_id,
                )
            ).first()
            if not match:
                raise MatchNotFound(f"Match {match_id} not found")
            for key, value in patch.items():
                setattr(match, key, value)
            match.updated_at = utcnow()
            session.add(match)
            session.commit()
            session.refresh(match)
            return match
