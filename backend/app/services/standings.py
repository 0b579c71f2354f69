"""
Round-robin standings, computed on demand from match results (never stored).

Ordering:
1. wins minus losses
2. head-to-head wins among the participants still tied
3. a random but stable key derived from (tournament_id, participant_id)
"""

import hashlib
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from app.models.match import MatchStatus


@dataclass
class StandingRow:
    participant_id: str
    wins: int = 0
    losses: int = 0
    head_to_head: int = 0
    rank: int = 0

    @property
    def played(self) -> int:
        return self.wins + self.losses

    @property
    def score(self) -> int:
        return self.wins - self.losses


def tiebreak_key(tournament_id: str, participant_id: str) -> str:
    return hashlib.sha256(f"{tournament_id}:{participant_id}".encode("utf-8")).hexdigest()


def _decided(matches: Iterable) -> List:
    return [
        m for m in matches
        if m.status == MatchStatus.completed.value
        and m.winner_id
        and m.participant1_id
        and m.participant2_id
    ]


def calculate_standings(
    tournament_id: str,
    participant_ids: Sequence[str],
    matches: Iterable,
) -> List[StandingRow]:
    decided = _decided(matches)
    rows: Dict[str, StandingRow] = {pid: StandingRow(participant_id=pid) for pid in participant_ids}

    for m in decided:
        loser_id = m.participant2_id if m.winner_id == m.participant1_id else m.participant1_id
        if m.winner_id in rows:
            rows[m.winner_id].wins += 1
        if loser_id in rows:
            rows[loser_id].losses += 1

    # Head-to-head is only meaningful inside a group with the same score
    tied_groups: Dict[int, List[str]] = defaultdict(list)
    for row in rows.values():
        tied_groups[row.score].append(row.participant_id)

    for group in tied_groups.values():
        if len(group) < 2:
            continue
        members = set(group)
        for m in decided:
            if m.participant1_id in members and m.participant2_id in members:
                rows[m.winner_id].head_to_head += 1

    ordered = sorted(
        rows.values(),
        key=lambda r: (-r.score, -r.head_to_head, tiebreak_key(tournament_id, r.participant_id)),
    )
    for rank, row in enumerate(ordered, start=1):
        row.rank = rank
    return ordered


def standings_leader(
    tournament_id: str,
    participant_ids: Sequence[str],
    matches: Iterable,
) -> Optional[str]:
    table = calculate_standings(tournament_id, participant_ids, matches)
    return table[0].participant_id if table else None
