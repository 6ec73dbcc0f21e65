from fastapi import Depends
from sqlalchemy.orm import Session
from typing import Iterator
from ledger_sync.database.database import LocalStore, get_store


def get_db(local_store: LocalStore = Depends(get_store)) -> Iterator[Session]:
    """Sesión bajo el lock del almacén local; solo para operaciones sin red."""
    with local_store.session() as db:
        yield db
