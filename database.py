from sqlalchemy import create_engine, event, MetaData
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from settings import DATABASE_URL, get_settings


def make_engine(url: str, echo: bool = False) -> Engine:
    """Build an engine; SQLite connections are shared across request threads."""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 15}

    engine = create_engine(url, echo=echo, connect_args=connect_args)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def make_session_factory(bind: Engine) -> sessionmaker:
    # Ledger results are handed back after commit, so keep them loaded
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


# Create a SQLAlchemy engine and base class
engine = make_engine(DATABASE_URL, echo=get_settings().db_echo)
metadata = MetaData()
Base = declarative_base(metadata=metadata)

# Session factory – we will use this everywhere
SessionLocal = make_session_factory(engine)
