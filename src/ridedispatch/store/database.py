"""Database engine initialization and connection management."""

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .schema import Base, StoreMetadata

SCHEMA_VERSION = "1.0.0"


def init_database(db_path: str, timeout_seconds: float = 5.0) -> sessionmaker[Any]:
    """Initialize database and return session factory.

    timeout_seconds bounds how long a write waits on a locked database
    before SQLite gives up.
    """
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": timeout_seconds},
    )
    Base.metadata.create_all(engine)

    session_maker = sessionmaker(bind=engine, expire_on_commit=False)

    with session_maker() as session:
        schema_version = session.get(StoreMetadata, "schema_version")
        if not schema_version:
            session.add(StoreMetadata(key="schema_version", value=SCHEMA_VERSION))
            session.commit()

    return session_maker
