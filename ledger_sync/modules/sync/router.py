from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ledger_sync.dependencies.dbDependencies import get_db
from ledger_sync.dependencies.syncDependencies import get_orchestrator
from ledger_sync.modules.sync.service import SyncOrchestrator, build_sync_status, sync_in_progress
from ledger_sync.modules.sync.schemas import SyncReport, SyncStatus, RecordOutcome

sync_router = APIRouter(prefix="/sync", tags=["Sync"])


@sync_router.post("/run", response_model=SyncReport)
def run_sync(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """
    Ejecutar una sincronización completa con el ERP.

    Si ya hay una en curso, retorna inmediatamente con `skipped=true`.
    """
    return orchestrator.run_once()


@sync_router.get("/status", response_model=SyncStatus)
def get_sync_status(db: Session = Depends(get_db)):
    """Últimas sincronizaciones y pendientes de envío. No requiere conexión con el ERP."""
    return build_sync_status(db, is_syncing=sync_in_progress())


@sync_router.post("/invoices/{invoice_id}", response_model=RecordOutcome)
def send_invoice(invoice_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Enviar una factura pending al ERP."""
    return orchestrator.send_invoice(invoice_id)


@sync_router.post("/collections/{group_id}", response_model=RecordOutcome)
def send_collection_group(group_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Enviar un recibo pending o failed al ERP."""
    return orchestrator.send_collection_group(group_id)
