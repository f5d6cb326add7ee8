from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import create_engine, SQLModel, Session

from . import models  # noqa: F401  registers the tables on SQLModel.metadata
from .exceptions import ConfigurationError
from .logger import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(database_url: str) -> Engine:
    """Create an engine for the metadata store; SQLite gets FK enforcement."""
    if not database_url:
        raise ConfigurationError("DATABASE_URL environment variable is not set")

    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    else:
        engine = create_engine(database_url, pool_pre_ping=True)
    return engine


def init_engine(database_url: str) -> Engine:
    global _engine
    _engine = make_engine(database_url)
    logger.info(f"Metadata store engine initialised for dialect '{_engine.dialect.name}'.")
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise ConfigurationError("Metadata store engine has not been initialised")
    return _engine


def create_db_and_tables(engine: Engine | None = None):
    SQLModel.metadata.create_all(engine or get_engine())


def get_session():
    with Session(get_engine()) as session:
        yield session
