import logging
import os

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# --- Configuration ---
# The default URL is an in-memory SQLite database that lives as long as the process.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite://")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("1", "true", "yes")

logger = logging.getLogger(__name__)

# --- Base for Declarative Models ---
# All SQLAlchemy models will inherit from this Base
Base = declarative_base()


# --- SQLAlchemy Engine Setup ---
def create_store_engine(url: str = DATABASE_URL, echo: bool = SQL_ECHO) -> Engine:
    """
    Creates the engine backing a Storage.
    SQLite engines share a single connection so an in-memory database is
    visible to every session (and every request thread).
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=echo)


# --- SQLAlchemy Session Factory ---
def create_session_factory(engine: Engine) -> sessionmaker:
    # expire_on_commit=False keeps attributes readable after the transaction closes
    return sessionmaker(bind=engine, expire_on_commit=False)


# --- Database Initialization ---
def init_db(engine: Engine) -> None:
    """
    Creates all tables defined in the models.
    This should be called once per engine, before the first session.
    """
    import models  # noqa: F401  registers the tables on Base.metadata

    Base.metadata.create_all(engine)
    logger.info("Database tables created (or already exist).")


# --- Dependency for FastAPI to Get the Store ---
def get_storage(request: Request):
    """
    Returns the Storage built at application startup.
    Handlers receive it through Depends(get_storage) instead of importing a global.
    """
    return request.app.state.storage
