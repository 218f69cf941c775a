import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import BigInteger, Column, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from database import Base

CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> int:
    return int((amount / CENT).to_integral_value())


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) * CENT).quantize(CENT)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionKind(str, enum.Enum):
    RECHARGE = "recharge"
    DEBIT = "debit"


class Card(Base):
    __tablename__ = "cards"

    id            = Column(Integer, primary_key=True, autoincrement=True)
    holder        = Column(String(128), nullable=False)
    number        = Column(String(64), nullable=False, unique=True)
    balance_cents = Column(BigInteger, nullable=False, default=0)
    created_at    = Column(DateTime, nullable=False, default=_utcnow)

    @property
    def balance(self) -> Decimal:
        return from_cents(self.balance_cents or 0)

    def __repr__(self) -> str:
        return f"<Card {self.id} – {self.holder}>"


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (Index("ix_transactions_card_history", "card_id", "id"),)

    id           = Column(Integer, primary_key=True, autoincrement=True)
    card_id      = Column(Integer, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False)
    kind         = Column(Enum(TransactionKind, values_callable=lambda e: [k.value for k in e]), nullable=False)
    # positive for recharges, negative for debits
    amount_cents = Column(BigInteger, nullable=False)
    tag          = Column(Text, nullable=True)
    created_at   = Column(DateTime, nullable=False, default=_utcnow)

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)

    def __repr__(self) -> str:
        return f"<Transaction {self.id} – card {self.card_id} {self.kind.value} {self.amount}>"
