from typing import List

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from errors import CardNotFound, StoreFailure
from models import Card


class CardRegistry:
    """Read-only access to cards. Balances are only ever written by the Ledger."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, card_id: int) -> Card:
        try:
            with self._session_factory() as session:
                card = session.get(Card, card_id)
        except SQLAlchemyError as exc:
            raise StoreFailure("get", exc) from exc
        if card is None:
            raise CardNotFound(card_id)
        return card

    def list(self) -> List[Card]:
        try:
            with self._session_factory() as session:
                return list(session.scalars(select(Card).order_by(Card.id.asc())))
        except SQLAlchemyError as exc:
            raise StoreFailure("list", exc) from exc

    def count(self) -> int:
        try:
            with self._session_factory() as session:
                return session.scalar(select(func.count(Card.id)))
        except SQLAlchemyError as exc:
            raise StoreFailure("count", exc) from exc
