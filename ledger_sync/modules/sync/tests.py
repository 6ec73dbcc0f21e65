"""
Tests para el módulo de Sincronización

Tests que cubren:
- Envío de facturas: éxito, fallo transitorio, rechazo del ERP, datos incompletos
- Cancelación por el operador mientras el envío está en curso
- Envío de recibos con protección contra duplicados y revalidación de saldo
- Corridas completas: aislamiento por registro y no reentrancia
- Carga del gateway configurado, tarea periódica y endpoints
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from ledger_sync.core.config import settings
from ledger_sync.core.exceptions import GatewayNotConfigured, IllegalTransition
from ledger_sync.common.mixins import utcnow
from ledger_sync.common.status import ErrorKind
from ledger_sync.database.database import LocalStore
from ledger_sync.modules.balances.service import BalanceReconciler
from ledger_sync.modules.cash_collections.models import Collection, CollectionStatus
from ledger_sync.modules.cash_collections.schemas import AllocationCreate, CollectionGroupCreate
from ledger_sync.modules.cash_collections.service import CollectionLedger
from ledger_sync.modules.invoices.models import InvoiceStatus
from ledger_sync.modules.invoices.schemas import InvoiceCreate, InvoiceLineItemCreate
from ledger_sync.modules.invoices.service import InvoiceLedger, OPERATOR_CANCEL_MESSAGE
from ledger_sync.modules.sync import tasks
from ledger_sync.modules.sync.gateway import GatewayUnavailable, load_gateway_factory
from ledger_sync.modules.sync.guard import DuplicateGuard
from ledger_sync.modules.sync.schemas import GatewayResponse, DocumentType
from ledger_sync.modules.sync.service import build_orchestrator


class SettlementOnlyGateway:
    """Cliente mínimo sin catálogo, para probar GATEWAY_FACTORY"""

    def submit(self, submission):
        return GatewayResponse(remote_document_id="ERP-X")

    def fetch_balances(self, partner_id=None):
        return []


def make_gateway():
    return SettlementOnlyGateway()


# ===== HELPERS =====

def create_invoice(store: LocalStore, partner_id: str = "P1", location_id: str = "L1") -> str:
    with store.session() as db:
        invoice = InvoiceLedger(db).create(InvoiceCreate(
            partner_id=partner_id,
            location_id=location_id,
            items=[InvoiceLineItemCreate(product_id="PR1", quantity=Decimal("1"))]
        ))
        return invoice.id


def get_invoice(store: LocalStore, invoice_id: str):
    with store.session() as db:
        invoice = InvoiceLedger(db).get(invoice_id)
        db.expunge(invoice)
        return invoice


def record_group(store: LocalStore, balance_line, rest: str, amount: str, number: str = "500") -> str:
    with store.session() as db:
        BalanceReconciler(db).replace_snapshot([balance_line("P1", number, Decimal(rest))])
        return CollectionLedger(db).record_group(CollectionGroupCreate(
            partner_id="P1",
            allocations=[AllocationCreate(series="FACT", number=number, amount=Decimal(amount))]
        ))


def get_group(store: LocalStore, group_id: str):
    with store.session() as db:
        return CollectionLedger(db).get_group(group_id)


# ===== TESTS DE FACTURAS =====

class TestInvoiceSync:
    """Envío de facturas al ERP"""

    def test_offline_then_online(self, store, erp, orchestrator):
        invoice_id = create_invoice(store)
        erp.responses = [GatewayUnavailable("Sin conexión con el ERP")]

        outcome = orchestrator.send_invoice(invoice_id)

        invoice = get_invoice(store, invoice_id)
        assert outcome.success is False
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.last_error == "Sin conexión con el ERP"
        assert invoice.last_error_kind == ErrorKind.TRANSIENT

        report = orchestrator.run_once()

        invoice = get_invoice(store, invoice_id)
        assert report.invoices_sent == 1
        assert invoice.status == InvoiceStatus.SENT
        assert invoice.sent_at is not None
        assert invoice.remote_document_id == "ERP-2"
        assert invoice.last_error is None

    def test_rejected_stays_pending(self, store, erp, orchestrator):
        invoice_id = create_invoice(store)
        erp.responses = [GatewayResponse(errors=["Partener inexistent", "Cod fiscal invalid"])]

        outcome = orchestrator.send_invoice(invoice_id)

        invoice = get_invoice(store, invoice_id)
        assert outcome.success is False
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.last_error == "Partener inexistent; Cod fiscal invalid"
        assert invoice.last_error_kind == ErrorKind.REJECTED

    def test_submission_content(self, store, erp, orchestrator):
        invoice_id = create_invoice(store)

        orchestrator.send_invoice(invoice_id)

        submission = erp.submissions[0]
        assert submission.document_type == DocumentType.INVOICE
        assert submission.local_id == invoice_id
        assert submission.partner_code == "C001"
        assert submission.number == 1
        assert submission.total == Decimal("11.90")

    def test_missing_partner_code_is_not_sent(self, store, erp, orchestrator):
        invoice_id = create_invoice(store, partner_id="P2", location_id="L2")

        outcome = orchestrator.send_invoice(invoice_id)

        invoice = get_invoice(store, invoice_id)
        assert outcome.success is False
        assert erp.submissions == []
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.last_error_kind == ErrorKind.VALIDATION

    def test_cancel_during_send_then_failure(self, store, erp, orchestrator):
        invoice_id = create_invoice(store)

        def operator_cancels(submission):
            with store.session() as db:
                InvoiceLedger(db).cancel_send(invoice_id)
            raise GatewayUnavailable("timeout")

        erp.on_submit = operator_cancels

        outcome = orchestrator.send_invoice(invoice_id)

        invoice = get_invoice(store, invoice_id)
        assert outcome.success is False
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.last_error == OPERATOR_CANCEL_MESSAGE

    def test_cancel_during_send_then_accepted(self, store, erp, orchestrator):
        invoice_id = create_invoice(store)

        def operator_cancels(submission):
            with store.session() as db:
                InvoiceLedger(db).cancel_send(invoice_id)

        erp.on_submit = operator_cancels

        outcome = orchestrator.send_invoice(invoice_id)

        invoice = get_invoice(store, invoice_id)
        assert outcome.success is False
        assert outcome.remote_document_id == "ERP-1"
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.remote_document_id == "ERP-1"
        assert invoice.last_error_kind == ErrorKind.OPERATOR

        # No se reenvía automáticamente
        erp.on_submit = None
        report = orchestrator.run_once()
        assert report.invoices_sent == 0
        assert len(erp.submissions) == 1

    def test_send_twice_is_refused(self, store, erp, orchestrator):
        invoice_id = create_invoice(store)
        orchestrator.send_invoice(invoice_id)

        with pytest.raises(IllegalTransition):
            orchestrator.send_invoice(invoice_id)
        assert len(erp.submissions) == 1


# ===== TESTS DE RECIBOS =====

class TestCollectionSync:
    """Envío de recibos y protección contra duplicados"""

    def test_group_sent_and_settled(self, store, erp, orchestrator, balance_line):
        group_id = record_group(store, balance_line, rest="100", amount="40")
        erp.balances = [balance_line("P1", "500", Decimal("100"))]

        outcome = orchestrator.send_collection_group(group_id)

        group = get_group(store, group_id)
        assert outcome.success is True
        assert group.status == CollectionStatus.SYNCED
        assert group.remote_document_id == "ERP-1"
        assert erp.submissions[0].document_type == DocumentType.RECEIPT
        assert erp.submissions[0].allocations[0].amount == Decimal("40.00")

    def test_lost_acknowledgement_is_not_resent(self, store, erp, orchestrator, balance_line):
        group_id = record_group(store, balance_line, rest="100", amount="100")
        # El ERP aplicó el cobro pero la respuesta se perdió
        erp.responses = [GatewayUnavailable("timeout")]
        erp.balances = [balance_line("P1", "500", Decimal("100"))]

        first = orchestrator.send_collection_group(group_id)
        assert first.success is False
        assert get_group(store, group_id).status == CollectionStatus.PENDING

        erp.balances = [balance_line("P1", "500", Decimal("0"))]
        report = orchestrator.run_once()

        group = get_group(store, group_id)
        assert report.groups_already_settled == 1
        assert report.groups_sent == 0
        assert len(erp.submissions) == 1
        assert group.status == CollectionStatus.SYNCED
        assert "ya refleja" in group.sync_note
        assert group.last_error is None

    def test_synced_payment_not_counted_twice_after_fresh_pull(self, store, erp, orchestrator, balance_line):
        first = record_group(store, balance_line, rest="100", amount="40")
        erp.balances = [balance_line("P1", "500", Decimal("100"))]
        orchestrator.send_collection_group(first)
        with store.session() as db:
            second = CollectionLedger(db).record_group(CollectionGroupCreate(
                partner_id="P1",
                allocations=[AllocationCreate(series="FACT", number="500", amount=Decimal("50"))]
            ))

        # El ERP ya aplicó el primer cobro
        erp.balances = [balance_line("P1", "500", Decimal("60"))]
        report = orchestrator.run_once()

        group = get_group(store, second)
        assert report.groups_sent == 1
        assert group.status == CollectionStatus.SYNCED
        assert group.last_error is None
        assert len(erp.submissions) == 2

    def test_receipt_on_sent_invoice_is_sent(self, store, erp, orchestrator, balance_line):
        invoice_id = create_invoice(store)
        orchestrator.run_once()
        number = str(get_invoice(store, invoice_id).number)
        # El ERP reporta la factura enviada con su propio código de documento
        erp.balances = [balance_line("P1", number, Decimal("11.90"), document_code="ERP-1")]
        with store.session() as db:
            BalanceReconciler(db).replace_snapshot(erp.balances)
            group_id = CollectionLedger(db).record_from_invoice(invoice_id, Decimal("5"))

        report = orchestrator.run_once()

        group = get_group(store, group_id)
        assert report.groups_sent == 1
        assert report.groups_already_settled == 0
        assert group.status == CollectionStatus.SYNCED
        assert group.remote_document_id == "ERP-2"
        assert [s.document_type for s in erp.submissions] == [DocumentType.INVOICE, DocumentType.RECEIPT]

    def test_stale_sending_group_is_recovered(self, store, erp, orchestrator, balance_line):
        group_id = record_group(store, balance_line, rest="100", amount="40")
        erp.balances = [balance_line("P1", "500", Decimal("100"))]
        with store.session() as db:
            CollectionLedger(db).claim_group(group_id)
            db.execute(
                update(Collection)
                .where(Collection.receipt_group_id == group_id)
                .values(updated_at=utcnow() - timedelta(hours=1))
            )

        report = orchestrator.run_once()

        assert report.groups_recovered == 1
        assert report.groups_sent == 1
        assert get_group(store, group_id).status == CollectionStatus.SYNCED

    def test_recent_sending_group_is_left_alone(self, store, erp, orchestrator, balance_line):
        group_id = record_group(store, balance_line, rest="100", amount="40")
        with store.session() as db:
            CollectionLedger(db).claim_group(group_id)

        report = orchestrator.run_once()

        assert report.groups_recovered == 0
        assert erp.submissions == []
        assert get_group(store, group_id).status == CollectionStatus.SENDING

    def test_guard_on_synced_group_makes_no_remote_call(self, store, erp, balance_line):
        group_id = record_group(store, balance_line, rest="100", amount="100")
        guard = DuplicateGuard(store, erp)

        assert guard.verify_not_already_settled(group_id) is False
        assert erp.balance_calls == ["P1"]

        assert guard.verify_not_already_settled(group_id) is False
        assert guard.verify_not_already_settled(group_id) is False
        assert erp.balance_calls == ["P1"]

    def test_guard_proceeds_when_remote_check_fails(self, store, erp, orchestrator, balance_line):
        group_id = record_group(store, balance_line, rest="100", amount="40")
        erp.balance_error = GatewayUnavailable("timeout")

        assert DuplicateGuard(store, erp).verify_not_already_settled(group_id) is True

        report = orchestrator.run_once()

        assert report.balances_error == "timeout"
        assert report.groups_sent == 1
        assert get_group(store, group_id).status == CollectionStatus.SYNCED

    def test_guard_ignores_local_unsent_invoices(self, store, erp, orchestrator):
        invoice_id = create_invoice(store)
        with store.session() as db:
            group_id = CollectionLedger(db).record_from_invoice(invoice_id, Decimal("11.90"))

        assert DuplicateGuard(store, erp).verify_not_already_settled(group_id) is True
        assert erp.balance_calls == []

    def test_revalidation_failure_marks_group_failed(self, store, erp, orchestrator, balance_line):
        group_id = record_group(store, balance_line, rest="100", amount="40")
        with store.session() as db:
            BalanceReconciler(db).replace_snapshot([balance_line("P1", "500", Decimal("30"))])
        erp.balances = [balance_line("P1", "500", Decimal("100"))]

        outcome = orchestrator.send_collection_group(group_id)

        group = get_group(store, group_id)
        assert outcome.success is False
        assert "FACT 500" in outcome.message
        assert group.status == CollectionStatus.FAILED
        assert group.last_error_kind == ErrorKind.VALIDATION
        assert erp.submissions == []

    def test_rejected_group_released(self, store, erp, orchestrator, balance_line):
        group_id = record_group(store, balance_line, rest="100", amount="40")
        erp.balances = [balance_line("P1", "500", Decimal("100"))]
        erp.responses = [GatewayResponse(errors=["Chitanță duplicată"])]

        outcome = orchestrator.send_collection_group(group_id)

        group = get_group(store, group_id)
        assert outcome.success is False
        assert group.status == CollectionStatus.PENDING
        assert group.last_error == "Chitanță duplicată"
        assert group.last_error_kind == ErrorKind.REJECTED

    def test_guard_error_releases_claim(self, store, erp, orchestrator, balance_line, monkeypatch):
        group_id = record_group(store, balance_line, rest="100", amount="40")

        def broken(group_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(orchestrator.guard, "verify_not_already_settled", broken)

        with pytest.raises(RuntimeError):
            orchestrator.send_collection_group(group_id)
        assert get_group(store, group_id).status == CollectionStatus.PENDING


# ===== TESTS DE CORRIDAS =====

class TestSyncRun:
    """Corridas completas del orquestador"""

    def test_run_is_not_reentrant(self, store, erp, orchestrator, run_lock):
        create_invoice(store)

        with run_lock:
            assert orchestrator.is_syncing is True
            report = orchestrator.run_once()

        assert report.skipped is True
        assert erp.submissions == []
        assert orchestrator.is_syncing is False

    def test_per_record_isolation(self, store, erp, orchestrator, balance_line):
        first = create_invoice(store)
        broken = create_invoice(store, partner_id="P2", location_id="L2")
        third = create_invoice(store)
        group_id = record_group(store, balance_line, rest="100", amount="40")
        erp.balances = [balance_line("P1", "500", Decimal("100"))]
        erp.responses = [RuntimeError("respuesta inesperada")]

        report = orchestrator.run_once()

        assert report.invoices_sent == 1
        assert report.invoices_failed == 2
        assert report.groups_sent == 1
        assert get_invoice(store, first).last_error == "respuesta inesperada"
        assert get_invoice(store, broken).last_error_kind == ErrorKind.VALIDATION
        assert get_invoice(store, third).status == InvoiceStatus.SENT
        assert get_group(store, group_id).status == CollectionStatus.SYNCED

    def test_failed_groups_are_retried(self, store, erp, orchestrator, balance_line):
        group_id = record_group(store, balance_line, rest="100", amount="40")
        with store.session() as db:
            BalanceReconciler(db).replace_snapshot([balance_line("P1", "500", Decimal("30"))])
        erp.balances = [balance_line("P1", "500", Decimal("100"))]
        orchestrator.send_collection_group(group_id)
        assert get_group(store, group_id).status == CollectionStatus.FAILED

        # La siguiente corrida trae el saldo actualizado y reintenta
        report = orchestrator.run_once()

        assert report.groups_sent == 1
        assert get_group(store, group_id).status == CollectionStatus.SYNCED

    def test_catalog_failure_does_not_stop_run(self, store, erp, orchestrator):
        create_invoice(store)
        erp.catalog_error = GatewayUnavailable("catálogo no disponible")

        report = orchestrator.run_once()

        assert report.catalog_error == "catálogo no disponible"
        assert report.invoices_sent == 1

    def test_status(self, store, orchestrator):
        create_invoice(store)
        before = orchestrator.status()

        orchestrator.run_once()
        after = orchestrator.status()

        assert before.is_first_run is True
        assert before.pending_invoices == 1
        assert after.is_first_run is False
        assert after.partners_synced_at is not None
        assert after.balances_synced_at is not None
        assert after.pending_invoices == 0


# ===== TESTS DE CONFIGURACIÓN Y TAREAS =====

class TestGatewayFactory:
    """Carga del cliente del ERP desde GATEWAY_FACTORY"""

    def test_not_configured(self, monkeypatch):
        monkeypatch.setattr(settings, "GATEWAY_FACTORY", None)

        with pytest.raises(GatewayNotConfigured):
            load_gateway_factory()

    def test_invalid_path(self):
        with pytest.raises(GatewayNotConfigured):
            load_gateway_factory("ledger_sync.modules.sync.tests")

    def test_build_orchestrator_without_catalog(self, store, monkeypatch):
        monkeypatch.setattr(settings, "GATEWAY_FACTORY", "ledger_sync.modules.sync.tests:make_gateway")

        orchestrator = build_orchestrator(store)

        assert type(orchestrator.settlement).__name__ == "SettlementOnlyGateway"
        assert orchestrator.catalog is None

    def test_periodic_task(self, orchestrator, monkeypatch):
        monkeypatch.setattr(tasks, "build_orchestrator", lambda store: orchestrator)

        result = tasks.run_sync()

        assert result["skipped"] is False
        assert result["invoices_sent"] == 0

    def test_periodic_task_without_gateway(self, monkeypatch):
        monkeypatch.setattr(settings, "GATEWAY_FACTORY", None)

        assert tasks.run_sync() == {"skipped": True}


class TestSyncAPI:
    """Tests de integración para los endpoints de sincronización"""

    def test_run_endpoint(self, client, store):
        create_invoice(store)

        response = client.post("/sync/run")

        assert response.status_code == 200
        assert response.json()["invoices_sent"] == 1

    def test_status_endpoint(self, client):
        response = client.get("/sync/status")

        assert response.status_code == 200
        assert response.json()["is_first_run"] is True
        assert response.json()["is_syncing"] is False

    def test_send_invoice_endpoint(self, client, store):
        invoice_id = create_invoice(store)

        response = client.post(f"/sync/invoices/{invoice_id}")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert client.get(f"/invoices/{invoice_id}").json()["status"] == "sent"

    def test_send_unknown_group(self, client):
        assert client.post("/sync/collections/missing").status_code == 404

    def test_gateway_not_configured_returns_503(self, client, monkeypatch):
        from ledger_sync.main import app
        from ledger_sync.dependencies.syncDependencies import get_orchestrator

        monkeypatch.setattr(settings, "GATEWAY_FACTORY", None)
        app.dependency_overrides.pop(get_orchestrator)

        response = client.post("/sync/run")

        assert response.status_code == 503
