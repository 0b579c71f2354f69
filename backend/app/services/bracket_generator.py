"""
Bracket Generator: turns an ordered participant list into a match graph.

Pure functions only: same input order, same bracket. No database access.

Formats:
- single_elim: padded to the next power of two, standard fold seeding
  (seed s meets seed size+1-s), byes land against the top seeds.
- double_elim: the single-elim winners bracket plus a losers bracket that
  receives a drop from every winners round, joined by a grand finals and an
  optional bracket-reset match.
- round_robin: every unordered pair once, circle-method rounds, no links.
"""

from __future__ import annotations

import hashlib
import math
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from app.exceptions import BracketGenerationFailure, InsufficientParticipants
from app.models.match import BracketType, MatchStatus
from app.models.tournament import TournamentType

ROLE_WINNER = "WINNER"
ROLE_LOSER = "LOSER"

GRAND_FINALS_ID = "gf-1"
BRACKET_RESET_ID = "gf-2"


@dataclass
class PlannedMatch:
    """One match of a freshly generated bracket, mirroring the Match columns."""
    match_id: str
    round: int
    match_number: int
    bracket_type: str
    participant1_id: Optional[str] = None
    participant2_id: Optional[str] = None
    status: str = MatchStatus.pending.value
    next_match_id: Optional[str] = None
    next_match_slot: Optional[int] = None
    loser_next_match_id: Optional[str] = None
    loser_next_match_slot: Optional[int] = None
    is_reset_gate: bool = False


@dataclass
class BracketPlan:
    matches: List[PlannedMatch]
    rounds: int
    bracket_size: int
    winners_rounds: int = 0
    losers_rounds: int = 0

    def by_id(self) -> Dict[str, PlannedMatch]:
        return {m.match_id: m for m in self.matches}


# =============================================================================
# Seeding helpers
# =============================================================================

def next_power_of_two(n: int) -> int:
    if n <= 2:
        return 2
    return 1 << (n - 1).bit_length()


def bracket_fold_positions(size: int) -> List[int]:
    """Seed numbers in bracket slot order for a *size*-slot bracket.

      4 -> [1, 4, 2, 3]              -> (1v4), (2v3)
      8 -> [1, 8, 4, 5, 2, 7, 3, 6]  -> (1v8), (4v5), (2v7), (3v6)

    Seeds 1 and 2 sit in opposite halves, so they can only meet in the final.
    """
    if size == 2:
        return [1, 2]

    half = bracket_fold_positions(size // 2)

    expanded: List[int] = []
    for s in half:
        expanded.append(s)
        expanded.append(size + 1 - s)
    return expanded


def stable_shuffle(participant_ids: Sequence[str], key: str) -> List[str]:
    """Shuffle deterministically: the same *key* always yields the same order."""
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
    rng = random.Random(int(digest[:16], 16))
    shuffled = list(participant_ids)
    rng.shuffle(shuffled)
    return shuffled


def _validate(participant_ids: Sequence[str]) -> List[str]:
    ids = list(participant_ids)
    if len(ids) < 2:
        raise InsufficientParticipants(len(ids))
    if any(not pid for pid in ids):
        raise BracketGenerationFailure("Participant ids must be non-empty")
    if len(set(ids)) != len(ids):
        raise BracketGenerationFailure("Participant ids must be unique")
    return ids


def _initial_status(p1: Optional[str], p2: Optional[str]) -> str:
    if p1 and p2:
        return MatchStatus.ready.value
    if p1 or p2:
        return MatchStatus.bye.value
    return MatchStatus.pending.value


# =============================================================================
# Single elimination
# =============================================================================

def _winners_match_id(round_number: int, match_number: int) -> str:
    return f"w{round_number}-{match_number}"


def generate_single_elim(participant_ids: Sequence[str]) -> BracketPlan:
    ids = _validate(participant_ids)
    size = next_power_of_two(len(ids))
    rounds = int(math.log2(size))

    slots: List[Optional[str]] = [
        ids[seed - 1] if seed <= len(ids) else None for seed in bracket_fold_positions(size)
    ]

    matches: List[PlannedMatch] = []
    for round_number in range(1, rounds + 1):
        matches_in_round = size >> round_number
        for match_number in range(1, matches_in_round + 1):
            planned = PlannedMatch(
                match_id=_winners_match_id(round_number, match_number),
                round=round_number,
                match_number=match_number,
                bracket_type=BracketType.winners.value,
            )
            if round_number < rounds:
                planned.next_match_id = _winners_match_id(round_number + 1, (match_number + 1) // 2)
                planned.next_match_slot = 1 if match_number % 2 == 1 else 2
            if round_number == 1:
                planned.participant1_id = slots[(match_number - 1) * 2]
                planned.participant2_id = slots[(match_number - 1) * 2 + 1]
                planned.status = _initial_status(planned.participant1_id, planned.participant2_id)
            matches.append(planned)

    return BracketPlan(
        matches=matches,
        rounds=rounds,
        bracket_size=size,
        winners_rounds=rounds,
    )


# =============================================================================
# Double elimination
# =============================================================================

# Node key: (bracket, round, match_number); bracket is "w", "l" or "gf"
NodeKey = Tuple[str, int, int]
# Input source: ("seed", participant_id) or (node_key, role)


@dataclass
class _Node:
    key: NodeKey
    inputs: List[Optional[tuple]] = field(default_factory=lambda: [None, None])
    live_inputs: int = 0
    kept: bool = True


def _losers_round_size(size: int, losers_round: int) -> int:
    # Rounds 2j-1 and 2j of the losers bracket both hold size / 2^(j+1) matches
    j = (losers_round + 1) // 2
    return max(1, size >> (j + 1))


def generate_double_elim(participant_ids: Sequence[str], bracket_reset: bool = True) -> BracketPlan:
    ids = _validate(participant_ids)
    winners = generate_single_elim(ids)
    size = winners.bracket_size
    k = winners.winners_rounds
    losers_round_count = 2 * (k - 1)

    nodes: Dict[NodeKey, _Node] = {}
    order: List[NodeKey] = []

    def add(key: NodeKey, inputs: List[Optional[tuple]]) -> None:
        nodes[key] = _Node(key=key, inputs=inputs)
        order.append(key)

    # Winners bracket
    for planned in winners.matches:
        key = ("w", planned.round, planned.match_number)
        if planned.round == 1:
            inputs = [
                ("seed", planned.participant1_id) if planned.participant1_id else None,
                ("seed", planned.participant2_id) if planned.participant2_id else None,
            ]
        else:
            inputs = [
                (("w", planned.round - 1, planned.match_number * 2 - 1), ROLE_WINNER),
                (("w", planned.round - 1, planned.match_number * 2), ROLE_WINNER),
            ]
        add(key, inputs)

    # Losers bracket
    for losers_round in range(1, losers_round_count + 1):
        count = _losers_round_size(size, losers_round)
        j = (losers_round + 1) // 2
        for m in range(1, count + 1):
            if losers_round == 1:
                inputs = [
                    (("w", 1, 2 * m - 1), ROLE_LOSER),
                    (("w", 1, 2 * m), ROLE_LOSER),
                ]
            elif losers_round % 2 == 1:
                inputs = [
                    (("l", losers_round - 1, 2 * m - 1), ROLE_WINNER),
                    (("l", losers_round - 1, 2 * m), ROLE_WINNER),
                ]
            else:
                # Drop round: alternate the drop order to delay rematches
                dropper = m if j % 2 == 1 else count - m + 1
                inputs = [
                    (("l", losers_round - 1, m), ROLE_WINNER),
                    (("w", j + 1, dropper), ROLE_LOSER),
                ]
            add(("l", losers_round, m), inputs)

    # Grand finals (+ reset)
    if losers_round_count:
        losers_champion = (("l", losers_round_count, 1), ROLE_WINNER)
    else:
        # Two-entry bracket: the only winners-match loser goes straight to the final
        losers_champion = (("w", 1, 1), ROLE_LOSER)
    add(("gf", 1, 1), [(("w", k, 1), ROLE_WINNER), losers_champion])
    if bracket_reset:
        add(("gf", 2, 1), [(("gf", 1, 1), ROLE_LOSER), (("gf", 1, 1), ROLE_WINNER)])

    # Liveness: a node yields a winner with >= 1 live input and a loser with 2
    def source_live(source: Optional[tuple]) -> bool:
        if source is None:
            return False
        ref, role = source
        if ref == "seed":
            return True
        node = nodes[ref]
        return node.live_inputs >= 1 if role == ROLE_WINNER else node.live_inputs == 2

    for key in order:
        node = nodes[key]
        node.live_inputs = sum(1 for source in node.inputs if source_live(source))
        # Losers-bracket matches that could never be played are folded away
        if key[0] == "l" and node.live_inputs < 2:
            node.kept = False

    def resolve(source: Optional[tuple]) -> Optional[tuple]:
        if not source_live(source):
            return None
        ref, role = source
        if ref == "seed":
            return source
        node = nodes[ref]
        if node.kept:
            return source
        # Collapsed node with one live input: its entrant passes straight through
        return resolve(next(s for s in node.inputs if source_live(s)))

    kept_keys = [key for key in order if nodes[key].kept]

    # Compact losers rounds and renumber matches within each round
    id_of: Dict[NodeKey, str] = {}
    round_of: Dict[NodeKey, int] = {}
    number_of: Dict[NodeKey, int] = {}
    losers_rounds_present = sorted({key[1] for key in kept_keys if key[0] == "l"})
    losers_round_map = {old: new for new, old in enumerate(losers_rounds_present, start=1)}
    per_round_counter: Dict[Tuple[str, int], int] = {}
    for key in kept_keys:
        bracket, rnd, _ = key
        if bracket == "w":
            new_round = rnd
        elif bracket == "l":
            new_round = losers_round_map[rnd]
        else:
            new_round = k + rnd
        counter_key = (bracket, new_round)
        per_round_counter[counter_key] = per_round_counter.get(counter_key, 0) + 1
        round_of[key] = new_round
        number_of[key] = per_round_counter[counter_key]
        if bracket == "w":
            id_of[key] = _winners_match_id(new_round, number_of[key])
        elif bracket == "l":
            id_of[key] = f"l{new_round}-{number_of[key]}"
        else:
            id_of[key] = GRAND_FINALS_ID if rnd == 1 else BRACKET_RESET_ID

    planned_by_key: Dict[NodeKey, PlannedMatch] = {}
    for key in kept_keys:
        bracket = key[0]
        planned_by_key[key] = PlannedMatch(
            match_id=id_of[key],
            round=round_of[key],
            match_number=number_of[key],
            bracket_type={
                "w": BracketType.winners.value,
                "l": BracketType.losers.value,
                "gf": BracketType.grand_finals.value,
            }[bracket],
        )

    # Wire every kept node's resolved inputs back into its sources' links
    for key in kept_keys:
        planned = planned_by_key[key]
        for slot, raw_source in enumerate(nodes[key].inputs, start=1):
            source = resolve(raw_source)
            if source is None:
                continue
            ref, role = source
            if ref == "seed":
                # Seed sources carry the participant id in place of a role
                setattr(planned, f"participant{slot}_id", role)
                continue
            upstream = planned_by_key[ref]
            if role == ROLE_WINNER:
                upstream.next_match_id = planned.match_id
                upstream.next_match_slot = slot
            else:
                upstream.loser_next_match_id = planned.match_id
                upstream.loser_next_match_slot = slot

    for key in kept_keys:
        planned = planned_by_key[key]
        if key[0] == "w" and key[1] == 1:
            planned.status = _initial_status(planned.participant1_id, planned.participant2_id)
    if bracket_reset:
        planned_by_key[("gf", 1, 1)].is_reset_gate = True

    matches = [planned_by_key[key] for key in kept_keys]
    losers_rounds = len(losers_rounds_present)
    return BracketPlan(
        matches=matches,
        rounds=k + losers_rounds + (2 if bracket_reset else 1),
        bracket_size=size,
        winners_rounds=k,
        losers_rounds=losers_rounds,
    )


# =============================================================================
# Round robin
# =============================================================================

def round_robin_pairings(n: int) -> List[Tuple[int, int, int, int]]:
    """
    Circle-method pairings for *n* entries.

    Returns (round, sequence_in_round, idx_a, idx_b) with 0-based indices.
    Odd *n* gets a phantom BYE position; pairings against it are dropped.
    """
    n2 = n + 1 if n % 2 == 1 else n
    half = n2 // 2
    bye_idx = n if n % 2 == 1 else -1
    positions = list(range(n2))

    result: List[Tuple[int, int, int, int]] = []
    for round_num in range(1, n2):
        seq = 0
        for i in range(half):
            a, b = positions[i], positions[n2 - 1 - i]
            if a == bye_idx or b == bye_idx:
                continue
            seq += 1
            result.append((round_num, seq, min(a, b), max(a, b)))
        # Keep position 0 fixed, rotate the rest clockwise
        positions = [positions[0]] + [positions[-1]] + positions[1:-1]
    return result


def generate_round_robin(participant_ids: Sequence[str]) -> BracketPlan:
    ids = _validate(participant_ids)
    pairings = round_robin_pairings(len(ids))

    matches = [
        PlannedMatch(
            match_id=f"rr{round_num}-{seq}",
            round=round_num,
            match_number=seq,
            bracket_type=BracketType.round_robin.value,
            participant1_id=ids[a],
            participant2_id=ids[b],
            status=MatchStatus.ready.value,
        )
        for round_num, seq, a, b in pairings
    ]
    rounds = max((m.round for m in matches), default=0)
    return BracketPlan(matches=matches, rounds=rounds, bracket_size=len(ids))


# =============================================================================
# Entry points
# =============================================================================

def generate_bracket(
    tournament_type: str,
    participant_ids: Sequence[str],
    bracket_reset: bool = True,
) -> BracketPlan:
    """Generate the full match graph for *tournament_type*."""
    if tournament_type == TournamentType.single_elim.value:
        return generate_single_elim(participant_ids)
    if tournament_type == TournamentType.double_elim.value:
        return generate_double_elim(participant_ids, bracket_reset=bracket_reset)
    if tournament_type == TournamentType.round_robin.value:
        return generate_round_robin(participant_ids)
    raise BracketGenerationFailure(f"Unknown tournament type: {tournament_type}")


def round_name(round_number: int, total_rounds: int, bracket_type: str) -> str:
    """Human-readable round label."""
    if bracket_type == BracketType.round_robin.value:
        return f"Round {round_number}"
    if bracket_type == BracketType.losers.value:
        return f"Losers Round {round_number}"
    if bracket_type == BracketType.grand_finals.value:
        # total_rounds counts winners rounds; the reset sits one round after the final
        return "Grand Finals" if round_number <= total_rounds + 1 else "Grand Finals Reset"

    rounds_from_end = total_rounds - round_number
    if rounds_from_end == 0:
        return "Finals"
    if rounds_from_end == 1:
        return "Semi-Finals"
    if rounds_from_end == 2:
        return "Quarter-Finals"
    return f"Round {round_number}"
