from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers import admin, cards
from maintenance import seed_demo_card
from database import engine, Base
from errors import LedgerError
from settings import get_settings
import logging

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def init_store() -> None:
    # DB
    Base.metadata.create_all(engine)
    if settings.seed_demo_card:
        seed_demo_card(cards.get_ledger(), cards.get_registry())


@asynccontextmanager
async def lifespan(app: FastAPI):
    await run_in_threadpool(init_store)
    logger.info(f"✅ Arcade ledger ready ({settings.app_env})")
    yield
    engine.dispose()


app = FastAPI(
    title="Arcade Card Ledger API",
    version="1.0.0",
    description="Prepaid arcade cards with an atomic balance ledger",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include routers
app.include_router(cards.router)
app.include_router(admin.router)

@app.get("/")
async def root():
    return {
        "message": "Arcade Card Ledger API",
        "version": "1.0.0",
        "status": "✅ Ready",
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.app_env == "development")
