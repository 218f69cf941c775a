"""Concurrent access to the ledger from many threads."""

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from errors import InsufficientBalance
from ledger import CardLocks
from models import TransactionKind


def _race(workers, fn, *jobs):
    """Start every job at once and collect (ok, value) pairs."""
    barrier = threading.Barrier(len(jobs))

    def run(job):
        barrier.wait()
        try:
            return True, fn(*job)
        except Exception as exc:  # collected for assertions
            return False, exc

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(run, jobs))


def test_two_concurrent_debits_only_one_succeeds(ledger, registry):
    card = ledger.create_card("Ana", "1111", 10)

    results = _race(2, ledger.debit, (card.id, 10, "tagA"), (card.id, 10, "tagB"))

    successes = [value for ok, value in results if ok]
    failures = [value for ok, value in results if not ok]
    assert successes == [Decimal("0.00")]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientBalance)

    debits = [t for t in ledger.history(card.id) if t.kind == TransactionKind.DEBIT]
    assert len(debits) == 1
    assert registry.get(card.id).balance == Decimal("0.00")


def test_many_concurrent_debits_never_overdraw(ledger, registry):
    card = ledger.create_card("Ana", "1111", 10)
    jobs = [(card.id, 1, f"game-{i}") for i in range(25)]

    results = _race(25, ledger.debit, *jobs)

    assert sum(1 for ok, _ in results if ok) == 10
    assert all(isinstance(value, InsufficientBalance) for ok, value in results if not ok)
    assert registry.get(card.id).balance == Decimal("0.00")
    assert ledger.reconcile(card.id).consistent


def test_mixed_recharges_and_debits_keep_ledger_consistent(ledger, registry):
    card = ledger.create_card("Ana", "1111", 5)
    recharges = [(card.id, "1.00", "top-up") for _ in range(10)]
    debits = [(card.id, "1.50", "pacman") for _ in range(10)]

    def apply(card_id, amount, tag):
        if tag == "top-up":
            return ledger.recharge(card_id, amount, tag)
        return ledger.debit(card_id, amount, tag)

    _race(20, apply, *(recharges + debits))

    report = ledger.reconcile(card.id)
    assert report.consistent
    assert report.balance >= 0
    assert report.balance == registry.get(card.id).balance


def test_different_cards_proceed_independently(ledger, registry):
    cards = [ledger.create_card(f"Player {i}", f"num-{i}", 3) for i in range(4)]
    jobs = [(card.id, 3, "racing") for card in cards]

    results = _race(4, ledger.debit, *jobs)

    assert all(ok for ok, _ in results)
    assert all(registry.get(card.id).balance == Decimal("0.00") for card in cards)


def test_card_locks_are_released_when_unused():
    locks = CardLocks()
    with locks.hold(1):
        with locks.hold(2):
            assert len(locks) == 2
    assert len(locks) == 0


def test_card_lock_excludes_same_card_only():
    locks = CardLocks()
    entered = threading.Event()
    release = threading.Event()

    def holder():
        with locks.hold(1):
            entered.set()
            release.wait(5)

    thread = threading.Thread(target=holder)
    thread.start()
    entered.wait(5)

    # another card is not blocked by card 1
    with locks.hold(2):
        pass

    release.set()
    thread.join(5)
    with locks.hold(1):
        pass


def test_separate_ledgers_on_one_database_never_overdraw(engine, registry):
    # two ledgers with their own engines and locks, as two worker processes would have
    from database import make_engine, make_session_factory
    from ledger import Ledger

    other_engine = make_engine(str(engine.url))
    try:
        first = Ledger(make_session_factory(engine))
        second = Ledger(make_session_factory(other_engine))
        card = first.create_card("Ana", "1111", 10)

        def debit(index):
            ledger = first if index % 2 == 0 else second
            return ledger.debit(card.id, 1, f"game-{index}")

        results = _race(20, debit, *[(i,) for i in range(20)])

        assert sum(1 for ok, _ in results if ok) == 10
        assert all(isinstance(value, InsufficientBalance) for ok, value in results if not ok)
        assert registry.get(card.id).balance == Decimal("0.00")
        assert first.reconcile(card.id).consistent
    finally:
        other_engine.dispose()
