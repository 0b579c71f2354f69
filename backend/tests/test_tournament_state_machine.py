"""Tournament lifecycle: registration, close, start, cancel, completion."""
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from app.exceptions import InsufficientParticipants, InvalidTransition, RegistrationError, TournamentNotFound
from app.services.tournament_state_machine import TournamentEvent, resolve_transition

GUILD = "guild-1"


def _status(runtime, tournament):
    return runtime.state_machine.load(GUILD, tournament.tournament_id).status


# ============================================================================
# Transition table
# ============================================================================


@pytest.mark.parametrize(
    "status,event,expected",
    [
        ("open", TournamentEvent.close_registration, "closed"),
        ("closed", TournamentEvent.start, "active"),
        ("active", TournamentEvent.complete, "completed"),
        ("open", TournamentEvent.cancel, "cancelled"),
        ("closed", TournamentEvent.cancel, "cancelled"),
        ("active", TournamentEvent.cancel, "cancelled"),
    ],
)
def test_allowed_transitions(status, event, expected):
    assert resolve_transition(status, event) == expected


@pytest.mark.parametrize(
    "status,event",
    [
        ("closed", TournamentEvent.close_registration),
        ("active", TournamentEvent.close_registration),
        ("active", TournamentEvent.start),
        ("completed", TournamentEvent.start),
        ("completed", TournamentEvent.complete),
        ("cancelled", TournamentEvent.start),
        ("cancelled", TournamentEvent.cancel),
        ("cancelled", TournamentEvent.complete),
    ],
)
def test_replayed_events_are_no_ops(status, event):
    assert resolve_transition(status, event) is None


@pytest.mark.parametrize(
    "status,event",
    [
        ("open", TournamentEvent.start),
        ("open", TournamentEvent.complete),
        ("closed", TournamentEvent.complete),
        ("completed", TournamentEvent.cancel),
    ],
)
def test_illegal_transitions(status, event):
    with pytest.raises(InvalidTransition):
        resolve_transition(status, event)


# ============================================================================
# Creation
# ============================================================================


def test_create_tournament_derives_close_time_and_arms_timers(runtime, clock, notifier):
    start = clock() + timedelta(hours=2)
    tournament = runtime.create_tournament(
        guild_id=GUILD,
        name="  Friday Cup ",
        tournament_type="double_elim",
        start_time=start,
        creator_id="creator",
        creator_name="Creator",
    )

    assert tournament.name == "Friday Cup"
    assert tournament.status == "open"
    assert tournament.current_round == 0
    assert tournament.registration_close_time == start - timedelta(minutes=15)
    assert runtime.scheduler.pending == [
        (GUILD, tournament.tournament_id, "registration_close"),
        (GUILD, tournament.tournament_id, "start"),
    ]
    assert notifier.tournament_events() == ["created"]


def test_create_tournament_rejects_bad_input(runtime, clock):
    base = dict(guild_id=GUILD, name="x", start_time=clock(), creator_id="c", creator_name="C")
    with pytest.raises(ValueError):
        runtime.create_tournament(tournament_type="swiss", **base)
    with pytest.raises(ValueError):
        runtime.create_tournament(tournament_type="single_elim", team_size=0, **base)
    with pytest.raises(ValueError):
        runtime.create_tournament(
            tournament_type="single_elim",
            registration_close_time=clock() + timedelta(minutes=5),
            **base,
        )


def test_tournaments_are_scoped_by_guild(runtime, make_tournament):
    tournament = make_tournament(count=0)
    with pytest.raises(TournamentNotFound):
        runtime.state_machine.load("other-guild", tournament.tournament_id)


# ============================================================================
# Registration
# ============================================================================


def test_join_and_leave(runtime, make_tournament, notifier):
    tournament = make_tournament(count=2)
    tid = tournament.tournament_id

    participants = runtime.gateway.get_participants(GUILD, tid)
    assert [p.participant_id for p in participants] == ["p1", "p2"]
    assert participants[0].kind == "user"

    runtime.state_machine.leave(GUILD, tid, "p1")
    assert [p.participant_id for p in runtime.gateway.get_participants(GUILD, tid)] == ["p2"]
    assert notifier.tournament_events() == ["created", "participant_joined", "participant_joined", "participant_left"]


def test_join_rejects_duplicates_and_full_tournaments(runtime, clock):
    tournament = runtime.create_tournament(
        guild_id=GUILD,
        name="Small",
        tournament_type="single_elim",
        start_time=clock() + timedelta(hours=1),
        creator_id="c",
        creator_name="C",
        max_participants=2,
    )
    tid = tournament.tournament_id
    runtime.state_machine.join(GUILD, tid, "p1", "Player 1")

    with pytest.raises(RegistrationError):
        runtime.state_machine.join(GUILD, tid, "p1", "Player 1")

    runtime.state_machine.join(GUILD, tid, "p2", "Player 2")
    with pytest.raises(RegistrationError, match="full"):
        runtime.state_machine.join(GUILD, tid, "p3", "Player 3")


def test_solo_tournament_rejects_teammates(runtime, make_tournament):
    tournament = make_tournament(count=0)
    with pytest.raises(RegistrationError):
        runtime.state_machine.join(
            GUILD, tournament.tournament_id, "p1", "Player 1", members=[{"user_id": "p2"}]
        )


def test_team_registration(runtime, clock):
    tournament = runtime.create_tournament(
        guild_id=GUILD,
        name="Duos",
        tournament_type="single_elim",
        start_time=clock() + timedelta(hours=1),
        creator_id="c",
        creator_name="C",
        team_size=2,
    )
    tid = tournament.tournament_id
    sm = runtime.state_machine

    with pytest.raises(RegistrationError, match="team name"):
        sm.join(GUILD, tid, "cap", "Captain", members=[{"user_id": "m1"}])
    with pytest.raises(RegistrationError, match="exactly 2"):
        sm.join(GUILD, tid, "cap", "Captain", team_name="Red")

    team = sm.join(GUILD, tid, "cap", "Captain", team_name="Red", members=[{"user_id": "m1", "username": "Mate"}])
    assert team.kind == "team"
    assert team.display_name == "Red"
    assert team.participant_id != "cap"
    assert team.member_user_ids() == ["cap", "m1"]
    assert team.controlled_by("m1")

    # m1 is already on Red
    with pytest.raises(RegistrationError, match="already registered"):
        sm.join(GUILD, tid, "cap2", "Other", team_name="Blue", members=[{"user_id": "m1"}])

    with pytest.raises(RegistrationError, match="captain"):
        sm.leave(GUILD, tid, "m1")
    with pytest.raises(RegistrationError, match="not registered"):
        sm.leave(GUILD, tid, "stranger")

    sm.leave(GUILD, tid, "cap")
    assert runtime.gateway.get_participants(GUILD, tid) == []


def test_registration_locked_after_close(runtime, make_tournament):
    tournament = make_tournament(count=3)
    runtime.handle_registration_close(GUILD, tournament.tournament_id)

    with pytest.raises(RegistrationError):
        runtime.state_machine.join(GUILD, tournament.tournament_id, "late", "Late")
    with pytest.raises(RegistrationError):
        runtime.state_machine.leave(GUILD, tournament.tournament_id, "p1")


# ============================================================================
# Close & start
# ============================================================================


def test_close_registration_generates_bracket_once(runtime, make_tournament, notifier):
    tournament = make_tournament(count=5)
    tid = tournament.tournament_id

    first = runtime.handle_registration_close(GUILD, tid)
    second = runtime.handle_registration_close(GUILD, tid)

    assert first.changed and first.tournament.status == "closed"
    assert not second.changed
    assert len(runtime.gateway.get_matches(GUILD, tid)) == 7
    assert [p.seed for p in runtime.gateway.get_participants(GUILD, tid)] == [1, 2, 3, 4, 5]
    assert notifier.tournament_events().count("registration_closed") == 1


def test_single_participant_cancels_at_close(runtime, make_tournament, notifier):
    tournament = make_tournament(count=1)
    tid = tournament.tournament_id

    result = runtime.handle_registration_close(GUILD, tid)

    assert result.changed
    assert result.tournament.status == "cancelled"
    assert result.refund_required
    assert runtime.gateway.get_matches(GUILD, tid) == []
    assert runtime.scheduler.pending == []

    # The start timer may still race in; it must not revive the tournament
    late = runtime.handle_tournament_start(GUILD, tid)
    assert not late.changed
    assert _status(runtime, tournament) == "cancelled"
    assert "started" not in notifier.tournament_events()
    cancelled = [s for k, _, s in notifier.of("tournament_update") if s["event"] == "cancelled"]
    assert len(cancelled) == 1
    assert cancelled[0]["refund_required"] is True


def test_start_from_open_closes_first(runtime, make_tournament, notifier):
    tournament = make_tournament(count=4)
    result = runtime.handle_tournament_start(GUILD, tournament.tournament_id)

    assert result.changed
    assert result.previous_status == "open"
    assert result.tournament.status == "active"
    assert result.tournament.current_round == 1
    assert notifier.tournament_events()[-2:] == ["registration_closed", "started"]

    repeat = runtime.handle_tournament_start(GUILD, tournament.tournament_id)
    assert not repeat.changed
    assert notifier.tournament_events().count("started") == 1


def test_force_start_with_too_few_participants_keeps_tournament_open(runtime, make_tournament, notifier):
    tournament = make_tournament(count=2)
    tid = tournament.tournament_id
    runtime.state_machine.leave(GUILD, tid, "p2")

    with pytest.raises(InsufficientParticipants):
        runtime.force_start(GUILD, tid)

    assert _status(runtime, tournament) == "open"
    assert len(runtime.scheduler.pending) == 2
    assert "cancelled" not in notifier.tournament_events()


def test_force_start_counts_participants_under_the_lock(runtime, make_tournament):
    tournament = make_tournament(count=2)
    tid = tournament.tournament_id

    with ThreadPoolExecutor(max_workers=1) as pool:
        with runtime.locks.hold(GUILD, tid):
            pending = pool.submit(runtime.force_start, GUILD, tid)
            # A leave that lands before the start gets the lock
            runtime.gateway.remove_participant(GUILD, tid, "p2")
        with pytest.raises(InsufficientParticipants):
            pending.result(timeout=5)

    assert _status(runtime, tournament) == "open"


def test_start_opens_threads_for_ready_matches(runtime, make_tournament, notifier):
    tournament = make_tournament(count=4)
    runtime.handle_tournament_start(GUILD, tournament.tournament_id)

    created = notifier.of("create_match_thread")
    assert sorted(state["match_id"] for _, _, state in created) == ["w1-1", "w1-2"]
    assert created[0][2]["round_name"] == "Semi-Finals"
    matches = {m.match_id: m for m in runtime.gateway.get_matches(GUILD, tournament.tournament_id)}
    assert matches["w1-1"].status == "in_progress"
    assert matches["w1-1"].thread_ref == "thread-w1-1"
    assert matches["w2-1"].status == "pending"


# ============================================================================
# Cancel & complete
# ============================================================================


def test_cancel_is_idempotent_and_archives_threads(runtime, make_tournament, notifier):
    tournament = make_tournament(count=4)
    tid = tournament.tournament_id
    runtime.handle_tournament_start(GUILD, tid)

    first = runtime.cancel(GUILD, tid, "Venue closed")
    second = runtime.cancel(GUILD, tid)

    assert first.changed and first.refund_required
    assert first.previous_status == "active"
    assert not second.changed
    archived = sorted(ref for _, ref, _ in notifier.of("archive_thread"))
    assert archived == ["thread-w1-1", "thread-w1-2"]
    assert notifier.tournament_events().count("cancelled") == 1


def test_completed_tournament_cannot_be_cancelled(runtime, make_tournament, notifier):
    tournament = make_tournament(count=2)
    tid = tournament.tournament_id
    runtime.force_start(GUILD, tid)

    runtime.progression.report_winner(GUILD, tid, "w1-1", "p1", "p1")
    runtime.progression.confirm_winner(GUILD, tid, "w1-1", "p2")

    done = runtime.state_machine.load(GUILD, tid)
    assert done.status == "completed"
    assert done.winner_id == "p1"
    assert done.winner_name == "Player 1"
    with pytest.raises(InvalidTransition):
        runtime.cancel(GUILD, tid)
    assert notifier.tournament_events().count("completed") == 1
