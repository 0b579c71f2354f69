"""Bracket generation: pure, deterministic, no database."""
import math
from collections import Counter

import pytest

from app.exceptions import BracketGenerationFailure, InsufficientParticipants
from app.services.bracket_generator import (
    BRACKET_RESET_ID,
    GRAND_FINALS_ID,
    bracket_fold_positions,
    generate_bracket,
    generate_double_elim,
    generate_round_robin,
    generate_single_elim,
    next_power_of_two,
    round_name,
    round_robin_pairings,
    stable_shuffle,
)


def _ids(n):
    return [f"p{i}" for i in range(1, n + 1)]


def test_fold_positions():
    assert bracket_fold_positions(2) == [1, 2]
    assert bracket_fold_positions(4) == [1, 4, 2, 3]
    assert bracket_fold_positions(8) == [1, 8, 4, 5, 2, 7, 3, 6]


def test_next_power_of_two():
    assert [next_power_of_two(n) for n in (2, 3, 4, 5, 8, 9)] == [2, 4, 4, 8, 8, 16]


@pytest.mark.parametrize("n", range(2, 34))
def test_single_elim_counts(n):
    """n-1 played matches, ceil(log2 n) rounds, byes only in round 1."""
    plan = generate_single_elim(_ids(n))
    byes = [m for m in plan.matches if m.status == "bye"]
    played = [m for m in plan.matches if m.status != "bye"]

    assert len(played) == n - 1
    assert plan.rounds == math.ceil(math.log2(n))
    assert len(byes) == plan.bracket_size - n
    assert all(m.round == 1 for m in byes)
    finals = [m for m in plan.matches if m.next_match_id is None]
    assert len(finals) == 1
    assert finals[0].round == plan.rounds


def test_scenario_five_players_single_elim():
    plan = generate_single_elim(_ids(5))

    assert plan.bracket_size == 8
    assert plan.rounds == 3
    round1 = [m for m in plan.matches if m.round == 1]
    assert [m.status for m in round1] == ["bye", "ready", "bye", "bye"]
    # Byes land against the top seeds
    assert {m.participant1_id for m in round1 if m.status == "bye"} == {"p1", "p2", "p3"}
    assert all(m.participant2_id is None for m in round1 if m.status == "bye")
    assert (round1[1].participant1_id, round1[1].participant2_id) == ("p4", "p5")
    assert all(m.status == "pending" for m in plan.matches if m.round > 1)


def test_byes_never_meet_byes():
    for n in range(2, 33):
        plan = generate_single_elim(_ids(n))
        for m in plan.matches:
            if m.round == 1:
                assert m.participant1_id or m.participant2_id


def test_single_elim_links():
    plan = generate_single_elim(_ids(8))
    by_id = plan.by_id()
    assert by_id["w1-1"].next_match_id == "w2-1"
    assert by_id["w1-1"].next_match_slot == 1
    assert by_id["w1-2"].next_match_id == "w2-1"
    assert by_id["w1-2"].next_match_slot == 2
    assert by_id["w2-2"].next_match_id == "w3-1"
    assert by_id["w2-2"].next_match_slot == 2
    assert by_id["w3-1"].next_match_id is None


def test_two_participants_single_match():
    plan = generate_single_elim(["a", "b"])
    assert len(plan.matches) == 1
    match = plan.matches[0]
    assert (match.participant1_id, match.participant2_id) == ("a", "b")
    assert match.status == "ready"
    assert match.next_match_id is None


@pytest.mark.parametrize("tournament_type", ["single_elim", "double_elim", "round_robin"])
@pytest.mark.parametrize("ids", [[], ["solo"]])
def test_insufficient_participants(tournament_type, ids):
    with pytest.raises(InsufficientParticipants):
        generate_bracket(tournament_type, ids)


def test_malformed_participant_sets():
    with pytest.raises(BracketGenerationFailure):
        generate_single_elim(["a", "b", "a"])
    with pytest.raises(BracketGenerationFailure):
        generate_single_elim(["a", ""])
    with pytest.raises(BracketGenerationFailure):
        generate_bracket("swiss", ["a", "b"])


def test_generation_is_deterministic():
    assert generate_double_elim(_ids(7)) == generate_double_elim(_ids(7))


@pytest.mark.parametrize("n", [2, 3, 4, 5, 6, 7, 8, 12, 16])
def test_round_robin_counts(n):
    plan = generate_round_robin(_ids(n))
    assert len(plan.matches) == n * (n - 1) // 2
    assert all(m.next_match_id is None for m in plan.matches)
    assert all(m.status == "ready" for m in plan.matches)
    pairs = {frozenset((m.participant1_id, m.participant2_id)) for m in plan.matches}
    assert len(pairs) == len(plan.matches)


def test_scenario_four_players_round_robin():
    plan = generate_bracket("round_robin", _ids(4))
    assert len(plan.matches) == 6
    assert not [m for m in plan.matches if m.status == "bye"]
    assert plan.rounds == 3
    # Everyone plays once per round
    for rnd in range(1, 4):
        players = Counter()
        for m in plan.matches:
            if m.round == rnd:
                players.update([m.participant1_id, m.participant2_id])
        assert set(players.values()) == {1}


def test_round_robin_odd_count_sits_one_out():
    pairings = round_robin_pairings(5)
    assert len(pairings) == 10
    rounds = Counter(r for r, _, _, _ in pairings)
    assert set(rounds.values()) == {2}


def test_double_elim_four_players_structure():
    plan = generate_double_elim(_ids(4))
    by_id = plan.by_id()

    assert sorted(by_id) == sorted(["w1-1", "w1-2", "w2-1", "l1-1", "l2-1", GRAND_FINALS_ID, BRACKET_RESET_ID])
    assert by_id["w1-1"].loser_next_match_id == "l1-1"
    assert by_id["w1-2"].loser_next_match_id == "l1-1"
    assert by_id["w2-1"].next_match_id == GRAND_FINALS_ID
    assert by_id["w2-1"].next_match_slot == 1
    assert by_id["w2-1"].loser_next_match_id == "l2-1"
    assert by_id["l1-1"].next_match_id == "l2-1"
    assert by_id["l2-1"].next_match_id == GRAND_FINALS_ID
    assert by_id["l2-1"].next_match_slot == 2

    grand_finals = by_id[GRAND_FINALS_ID]
    assert grand_finals.bracket_type == "grand_finals"
    assert grand_finals.is_reset_gate
    assert grand_finals.next_match_id == BRACKET_RESET_ID
    assert grand_finals.loser_next_match_id == BRACKET_RESET_ID
    assert by_id[BRACKET_RESET_ID].next_match_id is None
    assert plan.winners_rounds == 2
    assert plan.losers_rounds == 2


def test_double_elim_without_reset():
    plan = generate_double_elim(_ids(4), bracket_reset=False)
    by_id = plan.by_id()
    assert BRACKET_RESET_ID not in by_id
    assert not by_id[GRAND_FINALS_ID].is_reset_gate
    assert by_id[GRAND_FINALS_ID].next_match_id is None


def test_double_elim_two_players_drop_straight_to_grand_finals():
    plan = generate_double_elim(["a", "b"])
    by_id = plan.by_id()
    assert sorted(by_id) == sorted(["w1-1", GRAND_FINALS_ID, BRACKET_RESET_ID])
    assert by_id["w1-1"].next_match_id == GRAND_FINALS_ID
    assert by_id["w1-1"].loser_next_match_id == GRAND_FINALS_ID
    assert by_id["w1-1"].loser_next_match_slot == 2


@pytest.mark.parametrize("n", range(2, 20))
def test_double_elim_byes_only_in_winners_round_one(n):
    plan = generate_double_elim(_ids(n))
    by_id = plan.by_id()
    for m in plan.matches:
        if m.status == "bye":
            assert m.bracket_type == "winners" and m.round == 1
        if m.bracket_type == "losers":
            assert m.status == "pending"
        for target in (m.next_match_id, m.loser_next_match_id):
            if target is not None:
                assert target in by_id

    # Every losers match receives exactly two entrants
    feeds = Counter()
    for m in plan.matches:
        if m.next_match_id:
            feeds[m.next_match_id] += 1
        if m.loser_next_match_id:
            feeds[m.loser_next_match_id] += 1
    for m in plan.matches:
        if m.bracket_type == "losers":
            assert feeds[m.match_id] == 2


def test_double_elim_three_players_collapses_dead_losers_match():
    plan = generate_double_elim(["a", "b", "c"])
    by_id = plan.by_id()
    losers = [m for m in plan.matches if m.bracket_type == "losers"]
    assert [m.match_id for m in losers] == ["l1-1"]
    # The round-1 loser skips the collapsed match and meets the winners-final loser
    assert by_id["w1-2"].loser_next_match_id == "l1-1"
    assert by_id["w2-1"].loser_next_match_id == "l1-1"
    assert by_id["w1-1"].loser_next_match_id is None


def test_stable_shuffle_is_repeatable():
    ids = _ids(10)
    assert stable_shuffle(ids, "t-1") == stable_shuffle(ids, "t-1")
    assert sorted(stable_shuffle(ids, "t-1")) == sorted(ids)


def test_round_name():
    assert round_name(3, 3, "winners") == "Finals"
    assert round_name(2, 3, "winners") == "Semi-Finals"
    assert round_name(1, 3, "winners") == "Quarter-Finals"
    assert round_name(1, 5, "winners") == "Round 1"
    assert round_name(2, 3, "losers") == "Losers Round 2"
    assert round_name(3, 2, "grand_finals") == "Grand Finals"
    assert round_name(4, 2, "grand_finals") == "Grand Finals Reset"
    assert round_name(2, 0, "round_robin") == "Round 2"
