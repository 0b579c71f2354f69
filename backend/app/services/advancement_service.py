"""
Advancement: when a match completes, move its winner (and, in double
elimination, its loser) into the downstream matches it feeds.

Only updates participant slots, statuses and win/loss bookkeeping on other
records; the completed match itself is written by the caller. Callers hold the
tournament lock.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from app.models.match import BracketType, Match, MatchStatus
from app.models.participant import Participant
from app.services.persistence_gateway import PersistenceGateway

logger = logging.getLogger(__name__)


@dataclass
class AdvancementResult:
    slots_filled: int = 0
    # Successors that flipped pending -> ready because of this completion
    now_ready: List[Match] = field(default_factory=list)
    eliminated_id: Optional[str] = None


def ends_bracket(match: Match) -> bool:
    """True when a completed elimination match decides the champion."""
    if match.status != MatchStatus.completed.value or match.winner_id is None:
        return False
    if match.bracket_type == BracketType.round_robin.value:
        return False
    if match.is_reset_gate:
        # Winners-bracket champion (slot 1) won the grand finals: no reset needed
        return match.winner_id == match.participant1_id
    return match.next_match_id is None and match.bracket_type != BracketType.losers.value


def place_participant(
    gateway: PersistenceGateway,
    guild_id: str,
    tournament_id: str,
    match_id: str,
    slot: int,
    participant_id: str,
) -> Optional[Match]:
    """
    Put *participant_id* into *slot* of a downstream match.

    Only sets the slot if it is empty or already holds the same participant, so
    repeating an advancement changes nothing. Returns the updated match when a
    write happened, None otherwise.
    """
    down = gateway.get_match(guild_id, tournament_id, match_id)
    if down is None:
        logger.error(f"Downstream match {match_id} missing in tournament {tournament_id}")
        return None
    attr = "participant1_id" if slot == 1 else "participant2_id"
    current = getattr(down, attr)
    if current == participant_id:
        return None
    if current is not None:
        logger.error(
            f"Slot {slot} of match {match_id} already holds {current}; refusing to place {participant_id}"
        )
        return None

    patch: Dict = {attr: participant_id}
    other = down.participant2_id if slot == 1 else down.participant1_id
    if other is not None and down.status == MatchStatus.pending.value:
        patch["status"] = MatchStatus.ready.value
    return gateway.update_match(guild_id, tournament_id, match_id, patch)


def _record_result(
    gateway: PersistenceGateway,
    participants: Dict[str, Participant],
    guild_id: str,
    tournament_id: str,
    winner_id: str,
    loser_id: str,
    eliminate_loser: bool,
) -> None:
    winner = participants.get(winner_id)
    if winner is not None:
        gateway.update_participant(guild_id, tournament_id, winner_id, {"wins": winner.wins + 1})
    loser = participants.get(loser_id)
    if loser is not None:
        patch = {"losses": loser.losses + 1}
        if eliminate_loser:
            patch["eliminated"] = True
        gateway.update_participant(guild_id, tournament_id, loser_id, patch)


def apply_advancement(gateway: PersistenceGateway, match: Match) -> AdvancementResult:
    """
    Propagate a freshly completed match.

    Must be called exactly once per completion; completion itself is the gate.
    """
    result = AdvancementResult()
    winner_id = match.winner_id
    if winner_id is None or match.status != MatchStatus.completed.value:
        return result

    guild_id, tournament_id = match.guild_id, match.tournament_id
    loser_id = match.opponent_of(winner_id)

    follow_links = not (match.is_reset_gate and winner_id == match.participant1_id)
    loser_continues = False

    if follow_links and match.next_match_id:
        updated = place_participant(
            gateway, guild_id, tournament_id, match.next_match_id, match.next_match_slot or 1, winner_id
        )
        if updated is not None:
            result.slots_filled += 1
            if updated.status == MatchStatus.ready.value:
                result.now_ready.append(updated)

    if follow_links and loser_id and match.loser_next_match_id:
        loser_continues = True
        updated = place_participant(
            gateway, guild_id, tournament_id, match.loser_next_match_id, match.loser_next_match_slot or 1, loser_id
        )
        if updated is not None:
            result.slots_filled += 1
            if updated.status == MatchStatus.ready.value:
                result.now_ready.append(updated)

    eliminate = (
        loser_id is not None
        and not loser_continues
        and match.bracket_type != BracketType.round_robin.value
    )
    if loser_id is not None:
        # Byes are not counted as wins
        participants = {p.participant_id: p for p in gateway.get_participants(guild_id, tournament_id)}
        _record_result(gateway, participants, guild_id, tournament_id, winner_id, loser_id, eliminate)
    if eliminate:
        result.eliminated_id = loser_id

    logger.info(
        f"Advanced match {tournament_id}/{match.match_id}: winner={winner_id} "
        f"loser={loser_id} filled={result.slots_filled} ready={[m.match_id for m in result.now_ready]}"
    )
    return result
