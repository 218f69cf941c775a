from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Optional

from models import TransactionKind

# Money travels as a JSON number
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CardBase(BaseModel):
    holder: str
    number: str


class CardCreate(CardBase):
    # Parsed by the ledger: absent or non-numeric means 0
    initial_balance: Optional[Any] = Field(None, alias="initialBalance")

    model_config = ConfigDict(populate_by_name=True)


class CardRead(CardBase):
    id: int
    balance: Money
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RechargeRequest(BaseModel):
    amount: Any = None
    note: Optional[str] = None


class PlayRequest(BaseModel):
    game_id: str = Field(..., alias="gameId")
    cost: Optional[Any] = None

    model_config = ConfigDict(populate_by_name=True)


class TransactionRead(BaseModel):
    id: int
    card_id: int
    kind: TransactionKind
    amount: Money
    tag: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReconciliationRead(BaseModel):
    card_id: int
    balance: Money
    ledger_total: Money
    transaction_count: int
    consistent: bool


class CatalogItemRead(BaseModel):
    id: str
    name: str
    cost: Money

    model_config = ConfigDict(from_attributes=True)


class MessageRead(BaseModel):
    message: str
