import gc
import threading

from app.services.tournament_locks import TournamentLocks


def test_same_tournament_shares_a_lock_while_referenced():
    locks = TournamentLocks()
    first = locks.get("g", "t-1")

    assert locks.get("g", "t-1") is first
    assert locks.get("g", "t-2") is not first
    assert locks.get("other", "t-1") is not first


def test_hold_excludes_other_threads():
    locks = TournamentLocks()
    entered = []

    def contender():
        with locks.hold("g", "t-1"):
            entered.append("contender")

    with locks.hold("g", "t-1"):
        worker = threading.Thread(target=contender)
        worker.start()
        worker.join(timeout=0.1)
        assert entered == []
    worker.join(timeout=2)

    assert entered == ["contender"]


def test_unused_locks_are_released():
    locks = TournamentLocks()
    for n in range(50):
        with locks.hold("g", f"t-{n}"):
            pass
    gc.collect()

    assert len(locks) == 0


def test_lock_survives_while_held():
    locks = TournamentLocks()
    with locks.hold("g", "t-1"):
        gc.collect()
        assert len(locks) == 1
        assert locks.get("g", "t-1").locked()
