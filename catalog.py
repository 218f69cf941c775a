from decimal import Decimal
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict


class CatalogItem(BaseModel):
    id: str
    name: str
    cost: Decimal

    model_config = ConfigDict(frozen=True)


GAMES: Tuple[CatalogItem, ...] = (
    CatalogItem(id="pacman", name="Pac-Man", cost=Decimal("2.50")),
    CatalogItem(id="space", name="Space Invaders", cost=Decimal("3.00")),
    CatalogItem(id="donkey", name="Donkey Kong", cost=Decimal("1.50")),
    CatalogItem(id="tetris", name="Tetris", cost=Decimal("2.00")),
    CatalogItem(id="racing", name="Racing X", cost=Decimal("4.00")),
    CatalogItem(id="shoot", name="Galactic Shoot", cost=Decimal("3.50")),
)

_BY_ID = {item.id: item for item in GAMES}


def list_items() -> Tuple[CatalogItem, ...]:
    return GAMES


def get_item(item_id: str) -> Optional[CatalogItem]:
    return _BY_ID.get(item_id)
