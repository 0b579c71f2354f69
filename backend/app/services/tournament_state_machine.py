"""
Tournament lifecycle: open -> closed -> active -> completed, with cancellation
reachable from every non-terminal status.

Transitions are looked up in a fixed table. Replaying an event whose target has
already been reached (or any event on a cancelled tournament) is an idempotent
success reported with ``changed=False``; anything else off the table raises
InvalidTransition.

Public methods take the tournament lock themselves. Methods ending in
``_locked`` expect the caller to hold it and to flush the outbox afterwards.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.config import Settings
from app.exceptions import InsufficientParticipants, InvalidTransition, RegistrationError, TournamentNotFound
from app.models.match import BracketType, Match, MatchStatus
from app.models.participant import Participant, ParticipantKind
from app.models.tournament import (
    TERMINAL_STATUSES,
    Tournament,
    TournamentStatus,
    TournamentType,
    utcnow,
)
from app.schemas import tournament_state
from app.services.advancement_service import ends_bracket
from app.services.bracket_generator import generate_bracket, stable_shuffle
from app.services.notification_gateway import NotificationGateway, Outbox
from app.services.persistence_gateway import PersistenceGateway
from app.services.standings import standings_leader
from app.services.tournament_locks import TournamentLocks

logger = logging.getLogger(__name__)


class TournamentEvent(str, Enum):
    close_registration = "close_registration"
    start = "start"
    complete = "complete"
    cancel = "cancel"


_OPEN = TournamentStatus.open.value
_CLOSED = TournamentStatus.closed.value
_ACTIVE = TournamentStatus.active.value
_COMPLETED = TournamentStatus.completed.value
_CANCELLED = TournamentStatus.cancelled.value

TRANSITIONS: Dict[Tuple[str, TournamentEvent], str] = {
    (_OPEN, TournamentEvent.close_registration): _CLOSED,
    (_CLOSED, TournamentEvent.start): _ACTIVE,
    (_ACTIVE, TournamentEvent.complete): _COMPLETED,
    (_OPEN, TournamentEvent.cancel): _CANCELLED,
    (_CLOSED, TournamentEvent.cancel): _CANCELLED,
    (_ACTIVE, TournamentEvent.cancel): _CANCELLED,
}

EVENT_TARGETS = {
    TournamentEvent.close_registration: _CLOSED,
    TournamentEvent.start: _ACTIVE,
    TournamentEvent.complete: _COMPLETED,
    TournamentEvent.cancel: _CANCELLED,
}

_PROGRESS = {_OPEN: 0, _CLOSED: 1, _ACTIVE: 2, _COMPLETED: 3}


def resolve_transition(status: str, event: TournamentEvent) -> Optional[str]:
    """Target status for *event*, or None when the event is an idempotent no-op."""
    target = TRANSITIONS.get((status, event))
    if target is not None:
        return target
    expected = EVENT_TARGETS[event]
    if status == _CANCELLED:
        return None
    if status == _COMPLETED and event == TournamentEvent.cancel:
        raise InvalidTransition(status, expected, "A completed tournament cannot be cancelled")
    if expected in _PROGRESS and _PROGRESS[status] >= _PROGRESS[expected]:
        return None
    raise InvalidTransition(status, expected)


@dataclass
class TransitionResult:
    tournament: Tournament
    changed: bool
    previous_status: str
    refund_required: bool = False


def notification_scope(tournament: Tournament) -> str:
    return tournament.channel_ref or tournament.guild_id


class TournamentStateMachine:
    def __init__(
        self,
        gateway: PersistenceGateway,
        notifier: NotificationGateway,
        locks: TournamentLocks,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.notifier = notifier
        self.locks = locks
        self.settings = settings
        self.clock = clock

    def load(self, guild_id: str, tournament_id: str) -> Tournament:
        tournament = self.gateway.get_tournament(guild_id, tournament_id)
        if tournament is None:
            raise TournamentNotFound(f"Tournament {tournament_id} not found")
        return tournament

    # ------------------------------------------------------------------
    # Creation & registration
    # ------------------------------------------------------------------

    def create_tournament(
        self,
        guild_id: str,
        name: str,
        tournament_type: str,
        start_time: datetime,
        creator_id: str,
        creator_name: str,
        team_size: int = 1,
        description: Optional[str] = None,
        max_participants: Optional[int] = None,
        channel_ref: Optional[str] = None,
        registration_close_time: Optional[datetime] = None,
    ) -> Tournament:
        if tournament_type not in {t.value for t in TournamentType}:
            raise ValueError(f"Unknown tournament type: {tournament_type}")
        if team_size < 1:
            raise ValueError("team_size must be at least 1")
        if max_participants is not None and max_participants < 2:
            raise ValueError("max_participants must be at least 2")
        if registration_close_time is None:
            registration_close_time = start_time - timedelta(minutes=self.settings.registration_close_lead_minutes)
        if registration_close_time > start_time:
            raise ValueError("registration_close_time must not be after start_time")

        tournament = self.gateway.create_tournament(
            Tournament(
                tournament_id=uuid.uuid4().hex[:12],
                guild_id=guild_id,
                name=name.strip(),
                description=description,
                type=tournament_type,
                team_size=team_size,
                max_participants=max_participants,
                registration_close_time=registration_close_time,
                start_time=start_time,
                channel_ref=channel_ref,
                creator_id=creator_id,
                creator_name=creator_name,
            )
        )
        logger.info(
            f"Created tournament {tournament.tournament_id} ({tournament.type}) in {guild_id}, "
            f"closes {registration_close_time.isoformat()}, starts {start_time.isoformat()}"
        )
        outbox = Outbox(self.notifier)
        outbox.tournament_update(notification_scope(tournament), tournament_state(tournament, "created"))
        outbox.flush()
        return tournament

    def join(
        self,
        guild_id: str,
        tournament_id: str,
        user_id: str,
        username: str,
        team_name: Optional[str] = None,
        members: Optional[List[Dict[str, Any]]] = None,
    ) -> Participant:
        """
        Register a solo player, or a team captained by *user_id*.

        Team tournaments need a team name and exactly ``team_size - 1`` other
        members; nobody may appear in two registrations.
        """
        outbox = Outbox(self.notifier)
        with self.locks.hold(guild_id, tournament_id):
            tournament = self.load(guild_id, tournament_id)
            if tournament.status != _OPEN:
                raise RegistrationError("Registration is closed for this tournament")

            existing = self.gateway.get_participants(guild_id, tournament_id)
            if tournament.max_participants is not None and len(existing) >= tournament.max_participants:
                raise RegistrationError("Tournament is full")

            member_entries = _normalize_members(user_id, members or [])
            if tournament.team_size == 1 and member_entries:
                raise RegistrationError("This is a solo tournament; teammates are not allowed")
            if tournament.team_size > 1:
                if not team_name or not team_name.strip():
                    raise RegistrationError("A team name is required for team tournaments")
                if len(member_entries) + 1 != tournament.team_size:
                    raise RegistrationError(
                        f"Teams need exactly {tournament.team_size} players "
                        f"(captain plus {tournament.team_size - 1})"
                    )

            joining = [user_id] + [m["user_id"] for m in member_entries]
            for participant in existing:
                taken = [uid for uid in joining if participant.controlled_by(uid)]
                if taken:
                    raise RegistrationError(f"User {taken[0]} is already registered")

            if tournament.team_size > 1:
                ref_id = uuid.uuid4().hex[:12]
                participant = Participant(
                    guild_id=guild_id,
                    tournament_id=tournament_id,
                    participant_id=ref_id,
                    kind=ParticipantKind.team.value,
                    ref_id=ref_id,
                    captain_user_id=user_id,
                    display_name=team_name.strip(),
                    team_members=[{"user_id": user_id, "username": username}] + member_entries,
                )
            else:
                participant = Participant(
                    guild_id=guild_id,
                    tournament_id=tournament_id,
                    participant_id=user_id,
                    kind=ParticipantKind.user.value,
                    ref_id=user_id,
                    captain_user_id=user_id,
                    display_name=username,
                )
            participant = self.gateway.add_participant(participant)
            logger.info(f"{participant.display_name} joined tournament {tournament_id}")
            outbox.tournament_update(
                notification_scope(tournament),
                tournament_state(
                    tournament,
                    "participant_joined",
                    participant_id=participant.participant_id,
                    participant_count=len(existing) + 1,
                ),
            )
        outbox.flush()
        return participant

    def leave(self, guild_id: str, tournament_id: str, user_id: str) -> Participant:
        """Withdraw the registration *user_id* controls. Team entries are withdrawn by their captain."""
        outbox = Outbox(self.notifier)
        with self.locks.hold(guild_id, tournament_id):
            tournament = self.load(guild_id, tournament_id)
            if tournament.status != _OPEN:
                raise RegistrationError("Cannot leave after registration has closed")
            participants = self.gateway.get_participants(guild_id, tournament_id)
            participant = next((p for p in participants if p.captain_user_id == user_id), None)
            if participant is None:
                if any(p.controlled_by(user_id) for p in participants):
                    raise RegistrationError("Only the team captain can withdraw the team")
                raise RegistrationError("You are not registered for this tournament")
            self.gateway.remove_participant(guild_id, tournament_id, participant.participant_id)
            logger.info(f"{participant.display_name} left tournament {tournament_id}")
            outbox.tournament_update(
                notification_scope(tournament),
                tournament_state(
                    tournament,
                    "participant_left",
                    participant_id=participant.participant_id,
                    participant_count=len(participants) - 1,
                ),
            )
        outbox.flush()
        return participant

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    def close_registration(self, guild_id: str, tournament_id: str) -> TransitionResult:
        outbox = Outbox(self.notifier)
        with self.locks.hold(guild_id, tournament_id):
            result = self.close_registration_locked(self.load(guild_id, tournament_id), outbox)
        outbox.flush()
        return result

    def start_tournament(self, guild_id: str, tournament_id: str, strict: bool = False) -> TransitionResult:
        """
        Activate the tournament, closing registration first if that has not happened yet.

        With *strict*, too few participants raises InsufficientParticipants and
        leaves the tournament untouched instead of cancelling it.
        """
        outbox = Outbox(self.notifier)
        with self.locks.hold(guild_id, tournament_id):
            tournament = self.load(guild_id, tournament_id)
            previous = tournament.status
            if tournament.status == _OPEN:
                closed = self.close_registration_locked(tournament, outbox, strict=strict)
                if closed.tournament.status != _CLOSED:
                    outbox.flush()
                    return closed
                tournament = closed.tournament
            result = self.start_locked(tournament, outbox)
            result.previous_status = previous
        outbox.flush()
        return result

    def cancel(self, guild_id: str, tournament_id: str, reason: str = "Cancelled by an administrator") -> TransitionResult:
        outbox = Outbox(self.notifier)
        with self.locks.hold(guild_id, tournament_id):
            tournament = self.load(guild_id, tournament_id)
            result = self._cancel_locked(tournament, reason, outbox)
        outbox.flush()
        return result

    def close_registration_locked(self, tournament: Tournament, outbox: Outbox, strict: bool = False) -> TransitionResult:
        previous = tournament.status
        if resolve_transition(previous, TournamentEvent.close_registration) is None:
            return TransitionResult(tournament, False, previous)

        guild_id, tournament_id = tournament.guild_id, tournament.tournament_id
        participants = self.gateway.get_participants(guild_id, tournament_id)
        if len(participants) < 2:
            if strict:
                raise InsufficientParticipants(len(participants))
            logger.info(
                f"Tournament {tournament_id} closed with {len(participants)} participant(s); cancelling"
            )
            return self._cancel_locked(
                tournament, "Not enough participants", outbox, refund_required=True
            )

        # A retried close must not build a second bracket
        if not self.gateway.get_matches(guild_id, tournament_id):
            ids = [p.participant_id for p in participants]
            if self.settings.randomize_seeding:
                ids = stable_shuffle(ids, tournament_id)
            plan = generate_bracket(tournament.type, ids, bracket_reset=self.settings.bracket_reset_enabled)
            for seed, participant_id in enumerate(ids, start=1):
                self.gateway.update_participant(guild_id, tournament_id, participant_id, {"seed": seed})
            created = self.gateway.create_matches(guild_id, tournament_id, plan.matches)
            logger.info(
                f"Generated {tournament.type} bracket for {tournament_id}: "
                f"{created} matches, {plan.rounds} rounds, {len(ids)} participants"
            )

        tournament = self.gateway.update_tournament_status(guild_id, tournament_id, _CLOSED)
        logger.info(f"Tournament {tournament_id}: {previous} -> {_CLOSED}")
        outbox.tournament_update(
            notification_scope(tournament),
            tournament_state(tournament, "registration_closed", participant_count=len(participants)),
        )
        return TransitionResult(tournament, True, previous)

    def start_locked(self, tournament: Tournament, outbox: Outbox) -> TransitionResult:
        previous = tournament.status
        if resolve_transition(previous, TournamentEvent.start) is None:
            return TransitionResult(tournament, False, previous)

        guild_id, tournament_id = tournament.guild_id, tournament.tournament_id
        if not self.gateway.get_matches(guild_id, tournament_id):
            return self._cancel_locked(tournament, "No bracket was generated", outbox, refund_required=True)

        tournament = self.gateway.update_tournament(
            guild_id, tournament_id, {"status": _ACTIVE, "current_round": 1}
        )
        logger.info(f"Tournament {tournament_id}: {previous} -> {_ACTIVE}")
        outbox.tournament_update(notification_scope(tournament), tournament_state(tournament, "started"))
        return TransitionResult(tournament, True, previous)

    def _cancel_locked(
        self, tournament: Tournament, reason: str, outbox: Outbox, refund_required: bool = True
    ) -> TransitionResult:
        previous = tournament.status
        if resolve_transition(previous, TournamentEvent.cancel) is None:
            return TransitionResult(tournament, False, previous)

        tournament = self.gateway.update_tournament_status(tournament.guild_id, tournament.tournament_id, _CANCELLED)
        logger.info(f"Tournament {tournament.tournament_id}: {previous} -> {_CANCELLED} ({reason})")
        outbox.tournament_update(
            notification_scope(tournament),
            tournament_state(tournament, "cancelled", reason=reason, refund_required=refund_required),
        )
        for match in self.gateway.get_matches(tournament.guild_id, tournament.tournament_id):
            if match.status != MatchStatus.completed.value:
                outbox.archive(match.thread_ref)
        return TransitionResult(tournament, True, previous, refund_required=refund_required)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete_if_finished(self, tournament: Tournament, match: Match, outbox: Outbox) -> Optional[TransitionResult]:
        """
        Called after every match completion (lock held). Finalizes the
        tournament when *match* decided it; otherwise keeps current_round up
        to date.
        """
        if tournament.status in TERMINAL_STATUSES:
            return TransitionResult(tournament, False, tournament.status)
        if tournament.status != _ACTIVE:
            return None

        matches = self.gateway.get_matches(tournament.guild_id, tournament.tournament_id)
        winner_id: Optional[str] = None
        if tournament.type == TournamentType.round_robin.value:
            if all(m.status == MatchStatus.completed.value for m in matches):
                participant_ids = [
                    p.participant_id
                    for p in self.gateway.get_participants(tournament.guild_id, tournament.tournament_id)
                ]
                winner_id = standings_leader(tournament.tournament_id, participant_ids, matches)
        elif ends_bracket(match):
            winner_id = match.winner_id

        if winner_id is None:
            self._refresh_current_round(tournament, matches, outbox)
            return None
        return self.complete_locked(tournament, winner_id, outbox)

    def complete_locked(self, tournament: Tournament, winner_id: str, outbox: Outbox) -> TransitionResult:
        previous = tournament.status
        if resolve_transition(previous, TournamentEvent.complete) is None:
            return TransitionResult(tournament, False, previous)

        guild_id, tournament_id = tournament.guild_id, tournament.tournament_id
        participants = {p.participant_id: p for p in self.gateway.get_participants(guild_id, tournament_id)}
        champion = participants.get(winner_id)
        winner_name = champion.display_name if champion else winner_id
        tournament = self.gateway.set_tournament_winner(guild_id, tournament_id, winner_id, winner_name)
        logger.info(f"Tournament {tournament_id}: {previous} -> {_COMPLETED}, champion {winner_name}")
        outbox.tournament_update(notification_scope(tournament), tournament_state(tournament, "completed"))
        return TransitionResult(tournament, True, previous)

    def _refresh_current_round(self, tournament: Tournament, matches: List[Match], outbox: Outbox) -> None:
        unfinished = [
            m.round
            for m in matches
            if m.status not in (MatchStatus.completed.value, MatchStatus.bye.value)
            and m.bracket_type != BracketType.losers.value
        ]
        if not unfinished:
            return
        current = min(unfinished)
        if current == tournament.current_round:
            return
        tournament = self.gateway.update_tournament(
            tournament.guild_id, tournament.tournament_id, {"current_round": current}
        )
        logger.info(f"Tournament {tournament.tournament_id} now in round {current}")
        outbox.tournament_update(notification_scope(tournament), tournament_state(tournament, "round_advanced"))


def _normalize_members(captain_id: str, members: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = []
    seen = {captain_id}
    for member in members:
        member_id = str(member.get("user_id") or "").strip()
        if not member_id:
            raise RegistrationError("Every team member needs a user_id")
        if member_id in seen:
            raise RegistrationError(f"User {member_id} is listed twice")
        seen.add(member_id)
        entries.append({"user_id": member_id, "username": member.get("username") or member_id})
    return entries
