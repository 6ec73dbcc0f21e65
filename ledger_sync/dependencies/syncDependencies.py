from fastapi import Depends
from ledger_sync.database.database import LocalStore, get_store
from ledger_sync.modules.sync.service import SyncOrchestrator, build_orchestrator


def get_orchestrator(local_store: LocalStore = Depends(get_store)) -> SyncOrchestrator:
    """Orquestador con el gateway configurado; sin sesión abierta (hace llamadas de red)."""
    return build_orchestrator(local_store)
