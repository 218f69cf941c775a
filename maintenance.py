"""
Administrative operations that sit outside the ledger's per-card rules.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from errors import DuplicateCardNumber, StoreFailure
from ledger import Ledger
from models import Card, Transaction
from registry import CardRegistry

logger = logging.getLogger(__name__)

DEMO_HOLDER = "Demo Player"
DEMO_NUMBER = "0000-0000-0000-0001"
DEMO_BALANCE = Decimal("50.00")


def reset_all(session_factory: sessionmaker) -> None:
    """Wipe every card and transaction in one database transaction. Development only."""
    try:
        with session_factory.begin() as session:
            session.execute(delete(Transaction).execution_options(synchronize_session=False))
            session.execute(delete(Card).execution_options(synchronize_session=False))
    except SQLAlchemyError as exc:
        raise StoreFailure("reset_all", exc) from exc
    logger.warning("⚠️ All cards and transactions were deleted")


def seed_demo_card(ledger: Ledger, registry: CardRegistry) -> Optional[Card]:
    """Create the demo card when the store is empty."""
    if registry.count() > 0:
        return None
    try:
        card = ledger.create_card(DEMO_HOLDER, DEMO_NUMBER, DEMO_BALANCE)
    except DuplicateCardNumber:
        # another worker seeded it first
        return None
    logger.info(f"🎮 Demo card created (balance {card.balance})")
    return card
