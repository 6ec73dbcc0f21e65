from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from typing import Iterator
from ledger_sync.core.config import settings
import threading
import logging

logger = logging.getLogger(__name__)

# SQLite engine shared by the API threads and the sync worker
sync_engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
    echo=settings.DEBUG
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)

Base = declarative_base()


class LocalStore:
    """
    Frontera única de exclusión mutua sobre el almacén local.

    Un solo escritor lógico a la vez: cada bloque `session()` toma el lock,
    confirma al salir y revierte ante cualquier excepción. Nunca se debe
    llamar a la red dentro de un bloque `session()`.
    """

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory
        self._lock = threading.RLock()

    @contextmanager
    def session(self) -> Iterator[Session]:
        with self._lock:
            db = self._session_factory()
            try:
                yield db
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def create_schema(self):
        bind = self._session_factory.kw.get("bind") or sync_engine
        Base.metadata.create_all(bind=bind)


store = LocalStore()


def get_store() -> LocalStore:
    return store
