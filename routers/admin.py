from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import sessionmaker

from maintenance import reset_all
from catalog import list_items
from database import SessionLocal
from schemas import CatalogItemRead, MessageRead
from settings import Settings, get_settings

router = APIRouter(prefix="/api", tags=["Admin"])


def get_session_factory() -> sessionmaker:
    return SessionLocal


@router.get("/catalog", response_model=List[CatalogItemRead])
def read_catalog():
    return list_items()


@router.post("/reset-all", response_model=MessageRead)
def reset_database(
    settings: Settings = Depends(get_settings),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    if not settings.allow_reset:
        raise HTTPException(status_code=403, detail="Reset is disabled")
    reset_all(session_factory)
    return {"message": "Database reset"}
