"""
Match progression: two-party result reporting and propagation.

A result goes through report -> confirm. The first report only records the
candidate winner; confirmation by the opponent (or an administrator) completes
the match, advances the winner (and double-elimination loser) downstream and
asks the state machine whether the tournament is over.

Completion is the single gate: a completed match is never written again, so a
repeated confirm is a no-op and a winner is propagated exactly once.

Every mutation happens under the tournament lock; notifications and thread
creation happen after it is released.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from app.exceptions import (
    MatchNotFound,
    MatchNotReportable,
    NotAParticipant,
    ReportConflict,
)
from app.models.match import REPORTABLE_STATUSES, SYSTEM_ACTOR, BracketType, Match, MatchStatus
from app.models.participant import Participant
from app.models.tournament import Tournament, TournamentStatus, utcnow
from app.schemas import match_state
from app.services.advancement_service import apply_advancement
from app.services.bracket_generator import round_name
from app.services.notification_gateway import NotificationGateway, Outbox
from app.services.persistence_gateway import PersistenceGateway
from app.services.tournament_locks import TournamentLocks
from app.services.tournament_state_machine import (
    TournamentStateMachine,
    TransitionResult,
    notification_scope,
)

logger = logging.getLogger(__name__)


@dataclass
class ProgressionResult:
    match: Match
    changed: bool
    now_ready: List[Match] = field(default_factory=list)
    tournament_result: Optional[TransitionResult] = None


def controlled_slot(match: Match, participants: List[Participant], user_id: str) -> Optional[int]:
    """Slot (1 or 2) of the participant *user_id* plays for in *match*, if any."""
    for participant in participants:
        if participant.controlled_by(user_id):
            return match.slot_of(participant.participant_id)
    return None


class MatchProgressionEngine:
    def __init__(
        self,
        gateway: PersistenceGateway,
        notifier: NotificationGateway,
        locks: TournamentLocks,
        state_machine: TournamentStateMachine,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.notifier = notifier
        self.locks = locks
        self.state_machine = state_machine
        self.clock = clock

    def load_match(self, guild_id: str, tournament_id: str, match_id: str) -> Match:
        match = self.gateway.get_match(guild_id, tournament_id, match_id)
        if match is None:
            raise MatchNotFound(f"Match {match_id} not found")
        return match

    @staticmethod
    def _require_active(tournament: Tournament) -> None:
        if tournament.status != TournamentStatus.active.value:
            raise MatchNotReportable(f"Tournament is {tournament.status}, not active")

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def report_winner(
        self,
        guild_id: str,
        tournament_id: str,
        match_id: str,
        candidate_winner_id: str,
        reporter_id: str,
        is_admin: bool = False,
        score: Optional[str] = None,
    ) -> ProgressionResult:
        """
        Record the first report for a match. Does not set winner_id.

        A second report naming the same winner is a no-op. A second report
        naming a different winner keeps the first one, marks the match disputed,
        escalates, and raises ReportConflict.
        """
        outbox = Outbox(self.notifier)
        conflict: Optional[ReportConflict] = None
        with self.locks.hold(guild_id, tournament_id):
            tournament = self.state_machine.load(guild_id, tournament_id)
            self._require_active(tournament)
            match = self.load_match(guild_id, tournament_id, match_id)
            if match.status not in REPORTABLE_STATUSES:
                raise MatchNotReportable(f"Match {match_id} is {match.status} and cannot be reported")

            participants = self.gateway.get_participants(guild_id, tournament_id)
            if controlled_slot(match, participants, reporter_id) is None and not is_admin:
                raise NotAParticipant(f"{reporter_id} is not playing in match {match_id}")
            if match.slot_of(candidate_winner_id) is None:
                raise NotAParticipant(f"{candidate_winner_id} is not playing in match {match_id}")

            admin_override = is_admin and match.disputed
            if match.disputed and not admin_override:
                raise MatchNotReportable(f"Match {match_id} is disputed; an administrator must resolve it")

            if match.reported_winner_id and not admin_override:
                if match.reported_winner_id == candidate_winner_id:
                    return ProgressionResult(match=match, changed=False)
                match = self.gateway.update_match(guild_id, tournament_id, match_id, {"disputed": True})
                conflict = ReportConflict(match_id, match.reported_winner_id, candidate_winner_id)
                logger.warning(
                    f"Conflicting report on {tournament_id}/{match_id}: pending {match.reported_winner_id}, "
                    f"{reporter_id} reported {candidate_winner_id}"
                )
                outbox.escalate(
                    notification_scope(tournament),
                    match_state(
                        match,
                        "report_conflict",
                        conflicting_winner_id=candidate_winner_id,
                        conflicting_reporter_id=reporter_id,
                    ),
                )
                outbox.match_update(match.thread_ref, match_state(match, "report_conflict"))
            else:
                match = self.gateway.update_match(
                    guild_id,
                    tournament_id,
                    match_id,
                    {
                        "reported_winner_id": candidate_winner_id,
                        "reported_by": reporter_id,
                        "reported_at": self.clock(),
                        "score": score,
                        "disputed": False,
                    },
                )
                logger.info(f"Match {tournament_id}/{match_id}: {reporter_id} reported {candidate_winner_id}")
                outbox.match_update(match.thread_ref, match_state(match, "result_reported"))
        outbox.flush()
        if conflict is not None:
            raise conflict
        return ProgressionResult(match=match, changed=True)

    def confirm_winner(
        self,
        guild_id: str,
        tournament_id: str,
        match_id: str,
        confirmer_id: str,
        is_admin: bool = False,
    ) -> ProgressionResult:
        """Confirm the pending report. Confirming a completed match changes nothing."""
        outbox = Outbox(self.notifier)
        with self.locks.hold(guild_id, tournament_id):
            match = self.load_match(guild_id, tournament_id, match_id)
            if match.status == MatchStatus.completed.value:
                return ProgressionResult(match=match, changed=False)

            tournament = self.state_machine.load(guild_id, tournament_id)
            self._require_active(tournament)
            if match.status not in REPORTABLE_STATUSES:
                raise MatchNotReportable(f"Match {match_id} is {match.status} and cannot be confirmed")
            if match.disputed:
                raise MatchNotReportable(f"Match {match_id} is disputed; an administrator must resolve it")
            if not match.reported_winner_id:
                raise MatchNotReportable(f"No result has been reported for match {match_id}")

            if not is_admin:
                participants = self.gateway.get_participants(guild_id, tournament_id)
                confirmer_slot = controlled_slot(match, participants, confirmer_id)
                if confirmer_slot is None:
                    raise NotAParticipant(f"{confirmer_id} is not playing in match {match_id}")
                reporter_slot = controlled_slot(match, participants, match.reported_by or "")
                if reporter_slot == confirmer_slot:
                    raise NotAParticipant("The opponent must confirm this result")

            result = self._complete_locked(tournament, match, match.reported_winner_id, confirmer_id, outbox)
        outbox.flush()
        self._open_threads_if_active(guild_id, tournament_id, result)
        return result

    def dispute_winner(
        self,
        guild_id: str,
        tournament_id: str,
        match_id: str,
        disputer_id: str,
        is_admin: bool = False,
        reason: Optional[str] = None,
    ) -> ProgressionResult:
        """Reject the pending report and escalate. The match is open for a fresh report."""
        outbox = Outbox(self.notifier)
        with self.locks.hold(guild_id, tournament_id):
            tournament = self.state_machine.load(guild_id, tournament_id)
            match = self.load_match(guild_id, tournament_id, match_id)
            if match.status == MatchStatus.completed.value:
                raise MatchNotReportable(f"Match {match_id} is already completed")
            if not match.reported_winner_id:
                raise MatchNotReportable(f"No pending result to dispute for match {match_id}")
            if not is_admin:
                participants = self.gateway.get_participants(guild_id, tournament_id)
                if controlled_slot(match, participants, disputer_id) is None:
                    raise NotAParticipant(f"{disputer_id} is not playing in match {match_id}")

            disputed_winner = match.reported_winner_id
            match = self.gateway.update_match(
                guild_id,
                tournament_id,
                match_id,
                {
                    "reported_winner_id": None,
                    "reported_by": None,
                    "reported_at": None,
                    "score": None,
                    "disputed": False,
                },
            )
            logger.warning(f"Match {tournament_id}/{match_id} disputed by {disputer_id}")
            outbox.escalate(
                notification_scope(tournament),
                match_state(
                    match,
                    "dispute",
                    disputed_winner_id=disputed_winner,
                    disputer_id=disputer_id,
                    reason=reason,
                ),
            )
            outbox.match_update(match.thread_ref, match_state(match, "dispute"))
        outbox.flush()
        return ProgressionResult(match=match, changed=True)

    def resolve_dispute(
        self,
        guild_id: str,
        tournament_id: str,
        match_id: str,
        admin_id: str,
        is_admin: bool = False,
    ) -> ProgressionResult:
        """Administrator clears a dispute; the match then needs a fresh report and confirmation."""
        if not is_admin:
            raise NotAParticipant("Only administrators can resolve disputes")
        outbox = Outbox(self.notifier)
        with self.locks.hold(guild_id, tournament_id):
            match = self.load_match(guild_id, tournament_id, match_id)
            if not match.disputed:
                return ProgressionResult(match=match, changed=False)
            match = self.gateway.update_match(
                guild_id,
                tournament_id,
                match_id,
                {
                    "disputed": False,
                    "reported_winner_id": None,
                    "reported_by": None,
                    "reported_at": None,
                    "score": None,
                },
            )
            logger.info(f"Dispute on {tournament_id}/{match_id} resolved by {admin_id}")
            outbox.match_update(match.thread_ref, match_state(match, "dispute_resolved", admin_id=admin_id))
        outbox.flush()
        return ProgressionResult(match=match, changed=True)

    def process_bye(self, guild_id: str, tournament_id: str, match_id: str) -> ProgressionResult:
        """Auto-advance the sole participant of a bye match."""
        outbox = Outbox(self.notifier)
        with self.locks.hold(guild_id, tournament_id):
            tournament = self.state_machine.load(guild_id, tournament_id)
            match = self.load_match(guild_id, tournament_id, match_id)
            result = self._process_bye_locked(tournament, match, outbox)
        outbox.flush()
        self._open_threads_if_active(guild_id, tournament_id, result)
        return result

    # ------------------------------------------------------------------
    # Start of play
    # ------------------------------------------------------------------

    def kickoff(self, guild_id: str, tournament_id: str) -> List[Match]:
        """
        Advance every bye, then open a thread for every ready match.

        Run once the tournament is active. Safe to repeat: completed byes and
        matches that already have a thread are skipped.
        """
        outbox = Outbox(self.notifier)
        with self.locks.hold(guild_id, tournament_id):
            tournament = self.state_machine.load(guild_id, tournament_id)
            if tournament.status != TournamentStatus.active.value:
                return []
            byes = [
                m for m in self.gateway.get_matches(guild_id, tournament_id)
                if m.status == MatchStatus.bye.value
            ]
            for match in byes:
                self._process_bye_locked(tournament, match, outbox)
            waiting = [
                m for m in self.gateway.get_matches(guild_id, tournament_id)
                if m.status == MatchStatus.ready.value and not m.thread_ref
            ]
        outbox.flush()
        logger.info(f"Tournament {tournament_id} kicked off: {len(byes)} bye(s), {len(waiting)} match(es) to open")
        return self.open_threads(guild_id, tournament_id, waiting)

    def open_threads(self, guild_id: str, tournament_id: str, matches: List[Match]) -> List[Match]:
        """Create a discussion thread per match and mark it in progress."""
        if not matches:
            return []
        with self.locks.hold(guild_id, tournament_id):
            tournament = self.state_machine.load(guild_id, tournament_id)
            all_matches = self.gateway.get_matches(guild_id, tournament_id)
        winners_rounds = max(
            (m.round for m in all_matches if m.bracket_type == BracketType.winners.value), default=0
        )
        scope = notification_scope(tournament)

        opened: List[Match] = []
        for match in matches:
            thread_ref = self.notifier.create_match_thread(
                scope,
                match_state(
                    match,
                    "match_ready",
                    round_name=round_name(match.round, winners_rounds, match.bracket_type),
                ),
            )
            if not thread_ref:
                continue
            stale_thread = False
            with self.locks.hold(guild_id, tournament_id):
                current = self.load_match(guild_id, tournament_id, match.match_id)
                if current.thread_ref or current.status not in REPORTABLE_STATUSES:
                    stale_thread = True
                else:
                    current = self.gateway.update_match(
                        guild_id,
                        tournament_id,
                        match.match_id,
                        {"thread_ref": thread_ref, "status": MatchStatus.in_progress.value},
                    )
                    opened.append(current)
            if stale_thread:
                self.notifier.archive_thread(thread_ref)
        return opened

    # ------------------------------------------------------------------
    # Internals (lock held)
    # ------------------------------------------------------------------

    def _process_bye_locked(self, tournament: Tournament, match: Match, outbox: Outbox) -> ProgressionResult:
        if match.status == MatchStatus.completed.value:
            return ProgressionResult(match=match, changed=False)
        if match.status != MatchStatus.bye.value:
            raise MatchNotReportable(f"Match {match.match_id} is {match.status}, not a bye")
        winner_id = match.sole_participant_id
        if winner_id is None:
            raise MatchNotReportable(f"Bye match {match.match_id} has no sole participant")
        return self._complete_locked(tournament, match, winner_id, SYSTEM_ACTOR, outbox, reported_by=SYSTEM_ACTOR)

    def _complete_locked(
        self,
        tournament: Tournament,
        match: Match,
        winner_id: str,
        confirmed_by: str,
        outbox: Outbox,
        reported_by: Optional[str] = None,
    ) -> ProgressionResult:
        patch = {
            "status": MatchStatus.completed.value,
            "winner_id": winner_id,
            "confirmed_by": confirmed_by,
            "completed_at": self.clock(),
        }
        if reported_by is not None:
            patch["reported_by"] = reported_by
            patch["reported_winner_id"] = winner_id
        match = self.gateway.update_match(match.guild_id, match.tournament_id, match.match_id, patch)
        logger.info(f"Match {match.tournament_id}/{match.match_id} completed, winner {winner_id}")

        advancement = apply_advancement(self.gateway, match)
        outbox.match_update(match.thread_ref, match_state(match, "completed"))
        outbox.archive(match.thread_ref)

        tournament_result = self.state_machine.complete_if_finished(tournament, match, outbox)
        return ProgressionResult(
            match=match,
            changed=True,
            now_ready=advancement.now_ready,
            tournament_result=tournament_result,
        )

    def _open_threads_if_active(self, guild_id: str, tournament_id: str, result: ProgressionResult) -> None:
        if not result.now_ready:
            return
        if result.tournament_result is not None and result.tournament_result.tournament.is_terminal:
            return
        tournament = self.gateway.get_tournament(guild_id, tournament_id)
        if tournament is None or tournament.status != TournamentStatus.active.value:
            return
        self.open_threads(guild_id, tournament_id, result.now_ready)
