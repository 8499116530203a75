"""
Module: corebank_kernel.db.engine
Responsibility: Engine construction, session factories and the transactional
    scope used by every unit of work.
Architecture position: Kernel > DB.  May import from db/.  create_tables
    imports the models package so that Base.metadata is complete.

Invariants enforced:
    - PostgreSQL runs at SERIALIZABLE isolation; posting additionally takes
      row locks (SELECT ... FOR UPDATE) on the accounts it touches.
    - In-memory SQLite shares one connection (StaticPool) so every session
      sees the same database.  File SQLite opens a connection per session and
      writers wait up to ``pool_timeout`` seconds on the database lock.
    - Every session factory handed out has the immutability listeners
      registered.

Failure modes:
    - Pool exhaustion (PostgreSQL) when pool_size + max_overflow is exceeded.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from corebank_kernel.db.immutability import register_immutability_listeners
from corebank_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
) -> Engine:
    """Create an engine for PostgreSQL or SQLite."""
    if database_url.startswith("sqlite"):
        if database_url in _MEMORY_URLS or "mode=memory" in database_url:
            return create_engine(
                database_url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": pool_timeout},
        )

    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_pre_ping=True,
        isolation_level="SERIALIZABLE",
    )


def session_factory(engine: Engine) -> sessionmaker[Session]:
    """
    Session factory bound to ``engine``.

    Objects stay readable after commit (``expire_on_commit=False``) so
    services can return ORM rows to callers outside the transaction.
    """
    register_immutability_listeners()
    logger.info(
        "session_factory_ready",
        extra={"dialect": engine.dialect.name, "pool": type(engine.pool).__name__},
    )
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """
    One transaction: commit on normal exit, roll back and re-raise otherwise.

    Usage:
        with session_scope(factory) as session:
            LedgerService(session).post_entry(ctx, lines, effective_date=today)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    from corebank_kernel.db.base import Base
    import corebank_kernel.models  # noqa: F401 -- registers every table

    Base.metadata.create_all(engine)
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables(engine: Engine) -> None:
    """Drop every corebank table.  Test and tooling use only."""
    from corebank_kernel.db.base import Base
    import corebank_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine)
