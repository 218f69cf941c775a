"""
Balance ledger for prepaid arcade cards.

Every balance change goes through :class:`Ledger`. A change is one database
transaction that updates the card row and appends the matching
``transactions`` row, so readers never see one without the other.

Concurrency
-----------
Mutations of a card run inside that card's lock (:class:`CardLocks`), and
debits use a conditional ``UPDATE ... WHERE balance_cents >= :amount`` so the
balance check and the decrement are a single statement. Other processes
sharing the same database therefore cannot overdraw a card either. Cards do
not share locks, so traffic on different cards runs in parallel.

Conflicts the store reports as rolled back (SQLite "database is locked",
PostgreSQL serialization failures and deadlocks) are retried with backoff
before surfacing as :class:`errors.StoreFailure`. Any other store error,
including a connection lost during COMMIT, surfaces at once: the change may
or may not have been applied, and retrying it here could apply it twice.
There are no idempotency keys, so a caller that retries after such an
ambiguous failure may also apply a change twice.
"""
import logging
import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterator, List, Optional, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from errors import (
    CardNotFound,
    DuplicateCardNumber,
    InsufficientBalance,
    InvalidAmount,
    InvalidInput,
    LedgerError,
    StoreFailure,
)
from models import CENT, Card, Transaction, TransactionKind, from_cents, to_cents

logger = logging.getLogger(__name__)

T = TypeVar("T")

STORE_RETRY_ATTEMPTS = 3
MAX_AMOUNT = Decimal("1000000000.00")
DEFAULT_HISTORY_LIMIT = 200
INITIAL_RECHARGE_NOTE = "Initial recharge"

# serialization_failure, deadlock_detected
ROLLED_BACK_SQLSTATES = frozenset({"40001", "40P01"})
SQLITE_BUSY_MARKERS = ("database is locked", "database table is locked", "database is busy")


def parse_amount(value: Any) -> Decimal:
    """
    Validate a monetary amount and return it quantized to cents.

    Accepts Decimal, int, float and numeric strings. Raises InvalidAmount for
    anything that is not a positive, finite number with at most two decimals.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        if not amount.is_finite():
            raise InvalidAmount(value, "amount must be finite")
        if amount <= 0:
            raise InvalidAmount(value)
        if amount > MAX_AMOUNT:
            raise InvalidAmount(value, f"amount must not exceed {MAX_AMOUNT}")
        if amount != amount.quantize(CENT):
            raise InvalidAmount(value, "amount supports at most two decimal places")
    except (InvalidOperation, ValueError):
        raise InvalidAmount(value, "amount must be numeric") from None
    return amount.quantize(CENT)


def parse_initial_balance(value: Any) -> Decimal:
    """Absent or non-numeric initial balances count as zero; negative ones are rejected."""
    if value is None or isinstance(value, bool):
        return Decimal("0.00")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal("0.00")
    if not amount.is_finite() or amount == 0:
        return Decimal("0.00")
    if amount < 0:
        raise InvalidInput("initialBalance", value, "must not be negative")
    return parse_amount(amount)


def _required_text(field: str, value: Optional[str]) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise InvalidInput(field, value, f"{field} is required")
    return text


class _CardLock:
    __slots__ = ("lock", "__weakref__")

    def __init__(self) -> None:
        self.lock = threading.Lock()


class CardLocks:
    """
    One mutex per card id, created on demand.

    Entries are weakly referenced, so a card's lock disappears once no
    thread holds or waits on it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[int, _CardLock]" = weakref.WeakValueDictionary()

    @contextmanager
    def hold(self, card_id: int) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(card_id)
            if entry is None:
                entry = _CardLock()
                self._locks[card_id] = entry
        with entry.lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def is_rolled_back_conflict(exc: BaseException) -> bool:
    """True for store errors that guarantee the transaction did not commit."""
    if not isinstance(exc, OperationalError) or exc.connection_invalidated:
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in ROLLED_BACK_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(marker in message for marker in SQLITE_BUSY_MARKERS)


@retry(
    stop=stop_after_attempt(STORE_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    retry=retry_if_exception(is_rolled_back_conflict),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
def _with_retries(work: Callable[..., T], *args: Any) -> T:
    return work(*args)


@dataclass(frozen=True)
class Reconciliation:
    card_id: int
    balance: Decimal
    ledger_total: Decimal
    transaction_count: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_total


class Ledger:
    """
    Card balances and their transaction log.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory for sessions on the shared engine. Each operation opens its
        own session, so one Ledger serves any number of threads.
    history_limit : int
        Upper bound (and default) for ``history`` page sizes.
    """

    def __init__(self, session_factory: sessionmaker, history_limit: int = DEFAULT_HISTORY_LIMIT):
        self._session_factory = session_factory
        self._locks = CardLocks()
        self.history_limit = history_limit

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def create_card(self, holder: str, number: str, initial_balance: Any = None) -> Card:
        holder = _required_text("holder", holder)
        number = _required_text("number", number)
        cents = to_cents(parse_initial_balance(initial_balance))

        card = self._execute("create_card", self._create_card, holder, number, cents)
        logger.info(f"Card {card.id} created for {holder} with balance {card.balance}")
        return card

    def recharge(self, card_id: int, amount: Any, note: Optional[str] = None) -> Decimal:
        return self.recharge_card(card_id, amount, note).balance

    def recharge_card(self, card_id: int, amount: Any, note: Optional[str] = None) -> Card:
        """Like ``recharge`` but returns the card row as committed."""
        cents = to_cents(parse_amount(amount))
        note = note.strip() if isinstance(note, str) and note.strip() else None

        with self._locks.hold(card_id):
            card = self._execute("recharge", self._recharge, card_id, cents, note)
        logger.info(f"Card {card_id} recharged {from_cents(cents)}, balance {card.balance}")
        return card

    def debit(self, card_id: int, amount: Any, tag: Optional[str]) -> Decimal:
        return self.debit_card(card_id, amount, tag).balance

    def debit_card(self, card_id: int, amount: Any, tag: Optional[str]) -> Card:
        """Like ``debit`` but returns the card row as committed."""
        cents = to_cents(parse_amount(amount))
        tag = _required_text("tag", tag)

        with self._locks.hold(card_id):
            card = self._execute("debit", self._debit, card_id, cents, tag)
        logger.info(f"Card {card_id} debited {from_cents(cents)} for {tag}, balance {card.balance}")
        return card

    def history(self, card_id: int, limit: Optional[int] = None) -> List[Transaction]:
        """
        Up to ``limit`` transactions, newest first. A limit of zero or less
        yields an empty list; larger limits are capped at ``history_limit``.
        Raises CardNotFound for unknown cards.
        """
        if limit is None:
            limit = self.history_limit
        limit = max(0, min(int(limit), self.history_limit))
        return self._execute("history", self._history, card_id, limit)

    def delete_card(self, card_id: int) -> None:
        with self._locks.hold(card_id):
            self._execute("delete_card", self._delete_card, card_id)
        logger.info(f"Card {card_id} deleted with its transactions")

    def reconcile(self, card_id: int) -> Reconciliation:
        """Compare the stored balance with the sum of the card's transactions."""
        with self._locks.hold(card_id):
            report = self._execute("reconcile", self._reconcile, card_id)
        if not report.consistent:
            logger.error(
                f"Card {card_id} balance {report.balance} does not match ledger total {report.ledger_total}"
            )
        return report

    # ------------------------------------------------------------------
    # Units of work (each runs in its own database transaction)
    # ------------------------------------------------------------------

    def _execute(self, operation: str, work: Callable[..., T], *args: Any) -> T:
        try:
            return _with_retries(work, *args)
        except LedgerError:
            raise
        except SQLAlchemyError as exc:
            logger.error(f"{operation} failed in the store: {exc}")
            raise StoreFailure(operation, exc) from exc

    def _create_card(self, holder: str, number: str, cents: int) -> Card:
        try:
            with self._session_factory.begin() as session:
                card = Card(holder=holder, number=number, balance_cents=cents)
                session.add(card)
                session.flush()
                if cents > 0:
                    self._append(session, card.id, TransactionKind.RECHARGE, cents, INITIAL_RECHARGE_NOTE)
        except IntegrityError as exc:
            raise DuplicateCardNumber(number) from exc
        return card

    def _recharge(self, card_id: int, cents: int, note: Optional[str]) -> Card:
        with self._session_factory.begin() as session:
            result = session.execute(
                update(Card)
                .where(Card.id == card_id)
                .values(balance_cents=Card.balance_cents + cents)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise CardNotFound(card_id)
            self._append(session, card_id, TransactionKind.RECHARGE, cents, note)
            return session.get(Card, card_id, populate_existing=True)

    def _debit(self, card_id: int, cents: int, tag: str) -> Card:
        with self._session_factory.begin() as session:
            result = session.execute(
                update(Card)
                .where(Card.id == card_id, Card.balance_cents >= cents)
                .values(balance_cents=Card.balance_cents - cents)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                available = self._balance_cents(session, card_id)
                if available is None:
                    raise CardNotFound(card_id)
                logger.info(f"Card {card_id} declined {from_cents(cents)} for {tag}: balance {from_cents(available)}")
                raise InsufficientBalance(card_id, from_cents(cents), from_cents(available))
            self._append(session, card_id, TransactionKind.DEBIT, -cents, tag)
            return session.get(Card, card_id, populate_existing=True)

    def _history(self, card_id: int, limit: int) -> List[Transaction]:
        with self._session_factory() as session:
            if session.get(Card, card_id) is None:
                raise CardNotFound(card_id)
            if limit == 0:
                return []
            rows = session.scalars(
                select(Transaction)
                .where(Transaction.card_id == card_id)
                .order_by(Transaction.id.desc())
                .limit(limit)
            )
            return list(rows)

    def _delete_card(self, card_id: int) -> None:
        with self._session_factory.begin() as session:
            session.execute(
                delete(Transaction)
                .where(Transaction.card_id == card_id)
                .execution_options(synchronize_session=False)
            )
            result = session.execute(
                delete(Card).where(Card.id == card_id).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise CardNotFound(card_id)

    def _reconcile(self, card_id: int) -> Reconciliation:
        with self._session_factory.begin() as session:
            balance = self._balance_cents(session, card_id)
            if balance is None:
                raise CardNotFound(card_id)
            total, count = session.execute(
                select(func.coalesce(func.sum(Transaction.amount_cents), 0), func.count(Transaction.id))
                .where(Transaction.card_id == card_id)
            ).one()
            return Reconciliation(
                card_id=card_id,
                balance=from_cents(balance),
                ledger_total=from_cents(int(total)),
                transaction_count=count,
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _append(session: Session, card_id: int, kind: TransactionKind, cents: int, tag: Optional[str]) -> Transaction:
        entry = Transaction(card_id=card_id, kind=kind, amount_cents=cents, tag=tag)
        session.add(entry)
        session.flush()
        return entry

    @staticmethod
    def _balance_cents(session: Session, card_id: int) -> Optional[int]:
        return session.scalar(select(Card.balance_cents).where(Card.id == card_id))


__all__ = [
    "CardLocks",
    "Ledger",
    "Reconciliation",
    "is_rolled_back_conflict",
    "parse_amount",
    "parse_initial_balance",
]
