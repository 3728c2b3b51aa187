"""Engine construction, schema setup and writer serialisation for the ledger store."""

from __future__ import annotations

import logging
import threading
import weakref

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from pension_ledger.ledger.models import Base

logger = logging.getLogger(__name__)

_writer_locks: weakref.WeakKeyDictionary[Engine, threading.RLock] = weakref.WeakKeyDictionary()
_registry_lock = threading.Lock()


def create_ledger_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the ledger store.

    SQLite connections are shared across threads (the HTTP surface runs sync
    handlers in a thread pool). In-memory SQLite uses a single static
    connection so that every session sees the same database.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if _is_sqlite_memory(database_url):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo)


def initialize_schema(engine: Engine) -> None:
    """Create every ledger table that does not exist yet."""
    Base.metadata.create_all(engine)
    logger.info("Ledger schema ready on %s", engine.url.render_as_string(hide_password=True))


def writer_lock(engine: Engine) -> threading.RLock:
    """
    The lock serialising every mutating transaction on ``engine``.

    Counters are read before the first write of a transaction, and SQLite
    only takes its write lock at that first write, so two writers would
    otherwise read the same counter. Every ledger built on the same engine
    receives the same lock.
    """
    with _registry_lock:
        lock = _writer_locks.get(engine)
        if lock is None:
            lock = _writer_locks[engine] = threading.RLock()
        return lock


def _is_sqlite_memory(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url
