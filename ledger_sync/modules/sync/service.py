"""
Sincronización con el ERP.

Una corrida (`run_once`) refresca el catálogo y los saldos, envía las
facturas pendientes y luego los recibos pendientes o fallidos. Los recibos
que quedaron en envío tras una caída vuelven a pending y se reintentan con la
verificación de duplicados. Cada registro se procesa de forma aislada: un
error en uno no detiene los demás.

El lock del almacén local nunca se mantiene durante una llamada de red:
cada paso abre su propia sesión corta para leer o persistir el resultado.
"""

from sqlalchemy.orm import Session
from decimal import Decimal
from datetime import timedelta
from typing import Optional
import threading
import logging

from ledger_sync.core.config import settings
from ledger_sync.core.exceptions import LedgerError, LedgerValidationError, IllegalTransition, InsufficientBalance
from ledger_sync.database.database import LocalStore
from ledger_sync.common.mixins import utcnow
from ledger_sync.common.status import ErrorKind
from ledger_sync.modules.balances.service import BalanceReconciler
from ledger_sync.modules.cash_collections.models import Collection, IN_PROGRESS_STATUSES
from ledger_sync.modules.cash_collections.service import CollectionLedger
from ledger_sync.modules.catalog.service import CatalogService
from ledger_sync.modules.invoices.models import Invoice, InvoiceStatus
from ledger_sync.modules.invoices.service import InvoiceLedger
from ledger_sync.modules.sync.gateway import (
    GatewayUnavailable, RemoteSettlementGateway, RemoteBalancePull, CatalogPull, load_gateway_factory
)
from ledger_sync.modules.sync.guard import DuplicateGuard
from ledger_sync.modules.sync.models import SyncMetadata
from ledger_sync.modules.sync.schemas import GatewayResponse, RecordOutcome, SyncReport, SyncStatus, Submission

logger = logging.getLogger(__name__)

# Una sola corrida a la vez por proceso
_run_lock = threading.Lock()


def sync_in_progress() -> bool:
    return _run_lock.locked()


def touch_sync_metadata(db: Session, entity_type: str) -> None:
    meta = db.get(SyncMetadata, entity_type)
    if meta is None:
        meta = SyncMetadata(entity_type=entity_type)
        db.add(meta)
    meta.last_synced_at = utcnow()
    db.flush()


class SyncOrchestrator:
    def __init__(self, store: LocalStore, settlement: RemoteSettlementGateway, balances: RemoteBalancePull,
                 catalog: Optional[CatalogPull] = None, run_lock: Optional[threading.Lock] = None):
        self.store = store
        self.settlement = settlement
        self.balances = balances
        self.catalog = catalog
        self.guard = DuplicateGuard(store, balances)
        self._run_lock = run_lock or _run_lock

    @property
    def is_syncing(self) -> bool:
        return self._run_lock.locked()

    def run_once(self) -> SyncReport:
        """
        Ejecutar una corrida completa.

        Si ya hay una corrida en curso retorna inmediatamente un reporte con
        `skipped=True` sin tocar nada.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info("Sync already running; skipping this trigger")
            now = utcnow()
            return SyncReport(skipped=True, started_at=now, finished_at=now)

        try:
            report = SyncReport(started_at=utcnow())
            logger.info("Sync run started")

            self._pull_catalog(report)
            self._pull_balances(report)

            with self.store.session() as db:
                invoice_ids = InvoiceLedger(db).pending_ids()
            for invoice_id in invoice_ids:
                outcome = self._isolated(self._send_invoice, "invoice", invoice_id)
                report.outcomes.append(outcome)
                if outcome.success:
                    report.invoices_sent += 1
                else:
                    report.invoices_failed += 1

            with self.store.session() as db:
                ledger = CollectionLedger(db)
                recovered = ledger.release_stale_groups(timedelta(seconds=settings.STALE_SENDING_SECONDS))
                group_ids = ledger.sendable_group_ids()
            report.groups_recovered = len(recovered)
            for group_id in group_ids:
                outcome = self._isolated(self._send_group, "receipt_group", group_id)
                report.outcomes.append(outcome)
                if not outcome.success:
                    report.groups_failed += 1
                elif outcome.remote_document_id is None:
                    report.groups_already_settled += 1
                else:
                    report.groups_sent += 1

            report.finished_at = utcnow()
            logger.info(
                f"Sync run finished: invoices sent={report.invoices_sent} failed={report.invoices_failed}, "
                f"receipts sent={report.groups_sent} failed={report.groups_failed} "
                f"already settled={report.groups_already_settled}"
            )
            return report
        finally:
            self._run_lock.release()

    def _isolated(self, send, entity: str, entity_id: str) -> RecordOutcome:
        try:
            return send(entity_id)
        except LedgerError as e:
            logger.warning(f"Sync of {entity} {entity_id} skipped: {e.message}")
            return RecordOutcome(entity=entity, entity_id=entity_id, success=False, message=e.message)
        except Exception as e:
            logger.error(f"Unexpected error syncing {entity} {entity_id}: {e}", exc_info=True)
            return RecordOutcome(entity=entity, entity_id=entity_id, success=False, message=str(e))

    def _pull_catalog(self, report: SyncReport) -> None:
        if self.catalog is None:
            return
        try:
            snapshot = self.catalog.fetch_catalog()
        except Exception as e:
            logger.warning(f"Catalog pull failed: {e}")
            report.catalog_error = str(e)
            return

        with self.store.session() as db:
            CatalogService(db).apply_snapshot(snapshot)
            touch_sync_metadata(db, "partners")
            touch_sync_metadata(db, "products")

    def _pull_balances(self, report: SyncReport) -> None:
        try:
            lines = self.balances.fetch_balances()
        except Exception as e:
            logger.warning(f"Balance pull failed: {e}")
            report.balances_error = str(e)
            return

        with self.store.session() as db:
            BalanceReconciler(db).replace_snapshot(lines)
            touch_sync_metadata(db, "balances")

    def _submit(self, submission: Submission):
        """Llamada de red; retorna (respuesta, error, tipo de error)"""
        try:
            return self.settlement.submit(submission), None, None
        except GatewayUnavailable as e:
            return None, str(e) or "ERP no disponible", ErrorKind.TRANSIENT
        except Exception as e:
            logger.error(f"Unexpected gateway error for {submission.document_type.value} "
                         f"{submission.local_id}: {e}", exc_info=True)
            return None, str(e), ErrorKind.TRANSIENT

    def send_invoice(self, invoice_id: str) -> RecordOutcome:
        """Enviar una sola factura pending (entrada para la capa HTTP)"""
        return self._send_invoice(invoice_id)

    def _send_invoice(self, invoice_id: str) -> RecordOutcome:
        with self.store.session() as db:
            ledger = InvoiceLedger(db)
            try:
                submission = ledger.build_submission(invoice_id)
            except LedgerValidationError as e:
                ledger.record_error(invoice_id, e.message, ErrorKind.VALIDATION)
                return RecordOutcome(entity="invoice", entity_id=invoice_id, success=False, message=e.message)
            ledger.begin_send(invoice_id)

        response, error, kind = self._submit(submission)

        with self.store.session() as db:
            ledger = InvoiceLedger(db)
            if response is not None and response.accepted:
                return self._complete_invoice(ledger, invoice_id, response)

            if response is not None:
                error, kind = response.error_message, ErrorKind.REJECTED
            try:
                ledger.fail_send(invoice_id, error, kind)
            except IllegalTransition:
                logger.info(f"Invoice {invoice_id} was cancelled while sending; keeping operator state")
            return RecordOutcome(entity="invoice", entity_id=invoice_id, success=False, message=error)

    def _complete_invoice(self, ledger: InvoiceLedger, invoice_id: str, response: GatewayResponse) -> RecordOutcome:
        remote_id = response.remote_document_id
        try:
            ledger.complete_send(invoice_id, remote_id)
        except IllegalTransition:
            message = (
                f"El ERP aceptó la factura como documento {remote_id} después de cancelar el envío; "
                f"verifique antes de reenviar"
            )
            logger.error(f"Invoice {invoice_id} accepted remotely ({remote_id}) after local cancellation")
            ledger.record_error(invoice_id, message, ErrorKind.OPERATOR, remote_document_id=remote_id)
            return RecordOutcome(entity="invoice", entity_id=invoice_id, success=False, message=message,
                                 remote_document_id=remote_id)
        return RecordOutcome(entity="invoice", entity_id=invoice_id, success=True, remote_document_id=remote_id)

    def send_collection_group(self, group_id: str) -> RecordOutcome:
        """Enviar un solo recibo pending o failed (entrada para la capa HTTP)"""
        return self._send_group(group_id)

    def _send_group(self, group_id: str) -> RecordOutcome:
        with self.store.session() as db:
            CollectionLedger(db).claim_group(group_id)

        try:
            proceed = self.guard.verify_not_already_settled(group_id)
        except Exception:
            with self.store.session() as db:
                CollectionLedger(db).release_group(group_id, "Error al verificar el saldo remoto", ErrorKind.TRANSIENT)
            raise

        if not proceed:
            return RecordOutcome(entity="receipt_group", entity_id=group_id, success=True,
                                 message="El ERP ya refleja el cobro; no se reenvió")

        with self.store.session() as db:
            ledger = CollectionLedger(db)
            try:
                self._revalidate(db, group_id)
                submission = ledger.build_submission(group_id)
            except LedgerValidationError as e:
                ledger.mark_group_failed(group_id, e.message, ErrorKind.VALIDATION)
                return RecordOutcome(entity="receipt_group", entity_id=group_id, success=False, message=e.message)

        response, error, kind = self._submit(submission)

        with self.store.session() as db:
            ledger = CollectionLedger(db)
            if response is not None and response.accepted:
                ledger.settle_group(group_id, response.remote_document_id)
                return RecordOutcome(entity="receipt_group", entity_id=group_id, success=True,
                                     remote_document_id=response.remote_document_id)

            if response is not None:
                error, kind = response.error_message, ErrorKind.REJECTED
            ledger.release_group(group_id, error, kind)
            return RecordOutcome(entity="receipt_group", entity_id=group_id, success=False, message=error)

    @staticmethod
    def _revalidate(db: Session, group_id: str) -> None:
        """Cada imputación debe seguir cabiendo en el saldo, sin contar el propio recibo"""
        reconciler = BalanceReconciler(db)
        epsilon = settings.COLLECTION_EPSILON
        rows = db.query(Collection).filter(Collection.receipt_group_id == group_id).all()
        for row in rows:
            ref = row.invoice_ref
            remaining = reconciler.remaining_for(row.partner_id, ref, exclude_group_id=group_id)
            if Decimal(row.amount) - remaining > epsilon:
                raise InsufficientBalance(ref.label, remaining, Decimal(row.amount))

    def status(self) -> SyncStatus:
        with self.store.session() as db:
            return build_sync_status(db, self.is_syncing)


def build_sync_status(db: Session, is_syncing: bool = False) -> SyncStatus:
    metadata = {m.entity_type: m.last_synced_at for m in db.query(SyncMetadata).all()}
    pending_invoices = db.query(Invoice).filter(Invoice.status == InvoiceStatus.PENDING).count()
    pending_groups = db.query(Collection.receipt_group_id).filter(
        Collection.status.in_(IN_PROGRESS_STATUSES)
    ).distinct().count()

    return SyncStatus(
        is_first_run=not metadata,
        is_syncing=is_syncing,
        partners_synced_at=metadata.get("partners"),
        products_synced_at=metadata.get("products"),
        balances_synced_at=metadata.get("balances"),
        pending_invoices=pending_invoices,
        pending_collection_groups=pending_groups
    )


def build_orchestrator(store: LocalStore) -> SyncOrchestrator:
    """Orquestador con el cliente del ERP configurado en GATEWAY_FACTORY"""
    client = load_gateway_factory()()
    catalog = client if hasattr(client, "fetch_catalog") else None
    return SyncOrchestrator(store, settlement=client, balances=client, catalog=catalog)
