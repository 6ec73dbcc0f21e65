"""
Background tasks for ERP synchronization
"""
from ledger_sync.core.celery import celery_app
from ledger_sync.core.exceptions import GatewayNotConfigured
from ledger_sync.database.database import get_store
from ledger_sync.modules.sync.service import build_orchestrator
import logging

logger = logging.getLogger(__name__)


@celery_app.task
def run_sync():
    """
    Periodic task: one full sync run (catalog, balances, invoices, receipts).
    A run already in progress in this worker turns the trigger into a no-op.
    """
    try:
        orchestrator = build_orchestrator(get_store())
    except GatewayNotConfigured:
        logger.warning("Periodic sync skipped: GATEWAY_FACTORY not set")
        return {"skipped": True}
    report = orchestrator.run_once()
    if report.skipped:
        logger.info("Periodic sync skipped: previous run still in progress")
    return report.model_dump(mode="json")
