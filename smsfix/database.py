"""
Database schema and connection management.

Uses SQLite with SQLAlchemy. The `sms` table mirrors the platform message
store: ids grow with every insert and are never handed out twice.
"""

from pathlib import Path
from sqlalchemy import create_engine, Column, Integer, BigInteger, String, Text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

MESSAGE_TYPE_INBOX = 1
MESSAGE_TYPE_SENT = 2


class Message(Base):
    """A single text message."""

    __tablename__ = "sms"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    type = Column(Integer, nullable=False, default=MESSAGE_TYPE_INBOX)
    address = Column(String, nullable=False, default="")
    body = Column(Text, nullable=False, default="")
    date = Column(BigInteger, nullable=False)  # milliseconds since epoch


class Preference(Base):
    """Persisted key/value setting (e.g. whether the watcher is active)."""

    __tablename__ = "preferences"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)


def create_db_engine(db_path: Path) -> Engine:
    """
    Create an engine for the SQLite file at db_path.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy engine
    """
    return create_engine(f"sqlite:///{db_path}")


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_db_engine(db_path)
    Base.metadata.create_all(engine)
    engine.dispose()


def get_session_factory(engine: Engine) -> sessionmaker:
    """
    Get a session factory bound to engine.

    Loaded objects stay readable after commit, so callers can return them
    once the session is closed.

    Args:
        engine: Engine from create_db_engine

    Returns:
        SQLAlchemy sessionmaker
    """
    return sessionmaker(bind=engine, expire_on_commit=False)
