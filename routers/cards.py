import logging
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from catalog import get_item
from database import SessionLocal
from errors import InvalidInput
from ledger import Ledger
from registry import CardRegistry
from schemas import (
    CardCreate,
    CardRead,
    MessageRead,
    PlayRequest,
    RechargeRequest,
    ReconciliationRead,
    TransactionRead,
)
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cards", tags=["Cards"])

# ------------- Dependencies ---------------

@lru_cache(maxsize=1)
def get_ledger() -> Ledger:
    # One instance per process so every request shares the per-card locks
    return Ledger(SessionLocal, history_limit=get_settings().history_limit)

@lru_cache(maxsize=1)
def get_registry() -> CardRegistry:
    return CardRegistry(SessionLocal)

# ------------- Cards ---------------

@router.get("", response_model=List[CardRead])
def read_cards(registry: CardRegistry = Depends(get_registry)):
    return registry.list()

@router.post("", response_model=CardRead, status_code=201)
def create_card(card: CardCreate, ledger: Ledger = Depends(get_ledger)):
    return ledger.create_card(card.holder, card.number, card.initial_balance)

@router.get("/{card_id}", response_model=CardRead)
def read_card(card_id: int, registry: CardRegistry = Depends(get_registry)):
    return registry.get(card_id)

@router.delete("/{card_id}", response_model=MessageRead)
def delete_card(card_id: int, ledger: Ledger = Depends(get_ledger)):
    ledger.delete_card(card_id)
    return {"message": "Card deleted"}

# ------------- Ledger ---------------

@router.get("/{card_id}/transactions", response_model=List[TransactionRead])
def read_transactions(
    card_id: int,
    limit: Optional[int] = Query(None, ge=1),
    ledger: Ledger = Depends(get_ledger),
):
    return ledger.history(card_id, limit)

@router.get("/{card_id}/reconcile", response_model=ReconciliationRead)
def reconcile_card(card_id: int, ledger: Ledger = Depends(get_ledger)):
    report = ledger.reconcile(card_id)
    return ReconciliationRead(
        card_id=report.card_id,
        balance=report.balance,
        ledger_total=report.ledger_total,
        transaction_count=report.transaction_count,
        consistent=report.consistent,
    )

@router.post("/{card_id}/recharge", response_model=CardRead)
def recharge_card(card_id: int, body: RechargeRequest, ledger: Ledger = Depends(get_ledger)):
    return ledger.recharge_card(card_id, body.amount, body.note)

@router.post("/{card_id}/play", response_model=CardRead)
def play_game(
    card_id: int,
    body: PlayRequest,
    ledger: Ledger = Depends(get_ledger),
    settings: Settings = Depends(get_settings),
):
    item = get_item(body.game_id)
    cost = body.cost

    if settings.enforce_catalog_prices:
        if item is None:
            raise InvalidInput("gameId", body.game_id, "unknown game")
        cost = item.cost
    elif cost is None:
        if item is None:
            raise InvalidInput("cost", cost, "cost is required for games outside the catalog")
        cost = item.cost
    elif item is not None and _price_mismatch(item.cost, cost):
        # The client price is trusted; only flag the mismatch
        logger.warning(f"⚠️ Card {card_id} charged {cost} for {item.id}, catalog price is {item.cost}")

    return ledger.debit_card(card_id, cost, body.game_id)


def _price_mismatch(price: Decimal, cost) -> bool:
    try:
        return Decimal(str(cost).strip()) != price
    except InvalidOperation:
        # malformed costs are rejected by the ledger
        return False
