"""
Module: hoa_kernel.db.engine
Responsibility: Owns the process-wide SQLAlchemy engine and session factory.
Architecture position: Kernel > DB.  Imports models only inside
    create_tables()/drop_tables() so the metadata is populated.

Sessions are created with ``expire_on_commit=False``: the payment and
compensation services commit and then keep reading the DTOs they built.

SQLite URLs get a StaticPool with ``check_same_thread`` disabled, so an
in-memory database is one database for every session of the process.  Other
backends use a pre-pinged QueuePool at READ COMMITTED, which is the isolation
the row locks taken by the compensation service are written against.

Calling get_engine()/get_session() before init_engine_from_url() raises
RuntimeError.
"""

from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from hoa_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

_POOL_DEFAULTS = {
    "pool_size": 10,
    "max_overflow": 10,
    "pool_pre_ping": True,
    "pool_recycle": 1800,
}


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options: Any) -> Engine:
    """
    Create the engine for ``database_url``, replacing any previous one.

    ``pool_options`` override the QueuePool defaults and are ignored for
    SQLite.
    """
    global _engine, _session_factory
    reset_engine()

    if database_url.startswith("sqlite"):
        _engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            isolation_level="READ COMMITTED",
            **{**_POOL_DEFAULTS, **pool_options},
        )

    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _session_factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _session_factory()


def create_tables() -> None:
    """Create the bill, credit, dues, transaction, account and audit tables."""
    from hoa_kernel.db.base import Base
    import hoa_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    from hoa_kernel.db.base import Base
    import hoa_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
