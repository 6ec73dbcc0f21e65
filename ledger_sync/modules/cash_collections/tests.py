"""
Tests para el módulo de Cobros

Tests que cubren:
- Registro de recibos con una o varias facturas (todo o nada)
- Rechazo por saldo insuficiente, cobro en proceso y datos mal formados
- Estado agregado del recibo y transiciones condicionadas
- Endpoints REST
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from ledger_sync.core.exceptions import (
    LedgerValidationError, InsufficientBalance, CollectionInProgress, IllegalTransition, NotFound
)
from ledger_sync.common.mixins import utcnow
from ledger_sync.common.status import ErrorKind
from ledger_sync.modules.balances.service import BalanceReconciler
from ledger_sync.modules.cash_collections.models import Collection, CollectionStatus
from ledger_sync.modules.cash_collections.schemas import AllocationCreate, CollectionGroupCreate
from ledger_sync.modules.cash_collections.service import CollectionLedger, aggregate_status, OPERATOR_CANCEL_MESSAGE
from ledger_sync.modules.invoices.schemas import InvoiceCreate, InvoiceLineItemCreate
from ledger_sync.modules.invoices.service import InvoiceLedger
from ledger_sync.modules.numbering.models import CounterKind
from ledger_sync.modules.numbering.service import NumberAllocator
from ledger_sync.modules.sync.schemas import DocumentType


# ===== FIXTURES =====

@pytest.fixture
def remote_balances(db_session: Session, balance_line):
    """Saldos remotos de P1: X = 100, Y = 30, Z = 20"""
    BalanceReconciler(db_session).replace_snapshot([
        balance_line("P1", "500", Decimal("100")),
        balance_line("P1", "501", Decimal("30")),
        balance_line("P1", "502", Decimal("20")),
    ])


def group_for(*allocations, partner_id="P1") -> CollectionGroupCreate:
    return CollectionGroupCreate(
        partner_id=partner_id,
        allocations=[AllocationCreate(series="FACT", number=number, amount=Decimal(amount))
                     for number, amount in allocations]
    )


# ===== TESTS DEL SERVICIO =====

class TestRecordGroup:
    """Tests para CollectionLedger.record_group"""

    def test_single_allocation(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)

        group_id = ledger.record_group(group_for(("500", "40")))
        group = ledger.get_group(group_id)

        assert group.status == CollectionStatus.PENDING
        assert group.receipt_series == "CH"
        assert group.receipt_number == 1
        assert group.total == Decimal("40.00")
        assert group.partner_name == "Alfa Distribuție SRL"

    def test_group_receipt_across_invoices(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)

        group_id = ledger.record_group(group_for(("501", "30"), ("502", "20")))

        rows = db_session.query(Collection).filter(Collection.receipt_group_id == group_id).all()
        assert len(rows) == 2
        assert {r.receipt_number for r in rows} == {1}
        assert {r.invoice_number for r in rows} == {"501", "502"}
        assert NumberAllocator(db_session).peek(CounterKind.RECEIPT).current == 2

    def test_insufficient_balance_names_invoice(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)
        ledger.record_group(group_for(("500", "40")))

        with pytest.raises(InsufficientBalance) as exc:
            ledger.record_group(group_for(("500", "70")))

        assert exc.value.invoice_label == "FACT 500"
        assert exc.value.remaining == Decimal("60.00")
        assert "60.00" in exc.value.message
        assert db_session.query(Collection).count() == 1

    def test_one_bad_allocation_rejects_whole_batch(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)

        with pytest.raises(InsufficientBalance):
            ledger.record_group(group_for(("501", "30"), ("502", "25")))

        assert db_session.query(Collection).count() == 0
        assert NumberAllocator(db_session).peek(CounterKind.RECEIPT).current == 1

    def test_epsilon_tolerance(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)

        group_id = ledger.record_group(group_for(("502", "20.01")))

        assert ledger.get_group(group_id).total == Decimal("20.01")

    def test_collection_in_progress(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)
        ledger.record_group(group_for(("500", "40")))

        with pytest.raises(CollectionInProgress) as exc:
            ledger.record_group(group_for(("500", "10")))

        assert exc.value.invoice_label == "FACT 500"

    def test_document_code_does_not_bypass_in_progress_check(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)
        ledger.record_group(group_for(("500", "40")))
        data = CollectionGroupCreate(partner_id="P1", allocations=[
            AllocationCreate(series="FACT", number="500", document_code="ERP-500", amount=Decimal("10"))
        ])

        with pytest.raises(CollectionInProgress):
            ledger.record_group(data)

    def test_duplicate_invoice_in_batch(self, db_session: Session, remote_balances):
        with pytest.raises(LedgerValidationError):
            CollectionLedger(db_session).record_group(group_for(("500", "10"), ("500", "10")))

    def test_allocation_without_reference(self, db_session: Session, remote_balances):
        data = CollectionGroupCreate(partner_id="P1", allocations=[AllocationCreate(amount=Decimal("5"))])

        with pytest.raises(LedgerValidationError):
            CollectionLedger(db_session).record_group(data)

    def test_malformed_input_rejected_by_schema(self):
        with pytest.raises(ValueError):
            AllocationCreate(series="FACT", number="500", amount=Decimal("0"))
        with pytest.raises(ValueError):
            CollectionGroupCreate(partner_id="  ", allocations=[
                AllocationCreate(series="FACT", number="500", amount=Decimal("1"))
            ])
        with pytest.raises(ValueError):
            CollectionGroupCreate(partner_id="P1", allocations=[])

    def test_unknown_invoice_has_no_balance(self, db_session: Session, remote_balances):
        with pytest.raises(InsufficientBalance):
            CollectionLedger(db_session).record_group(group_for(("999", "1")))

    def test_record_from_local_invoice(self, db_session: Session):
        invoice = InvoiceLedger(db_session).create(InvoiceCreate(
            partner_id="P1", location_id="L1",
            items=[InvoiceLineItemCreate(product_id="PR1", quantity=Decimal("1"))]
        ))
        ledger = CollectionLedger(db_session)

        group = ledger.get_group(ledger.record_from_invoice(invoice.id, Decimal("11.90")))

        assert group.total == Decimal("11.90")
        assert group.collections[0].invoice_number == str(invoice.number)

        with pytest.raises(NotFound):
            ledger.record_from_invoice("missing", Decimal("1"))


class TestGroupStatus:
    """Estado agregado y transiciones del recibo"""

    def test_aggregate_status_precedence(self):
        S = CollectionStatus
        assert aggregate_status([S.SYNCED, S.PENDING]) == S.PENDING
        assert aggregate_status([S.PENDING, S.FAILED]) == S.FAILED
        assert aggregate_status([S.FAILED, S.SENDING]) == S.SENDING
        assert aggregate_status([S.SYNCED, S.SYNCED]) == S.SYNCED

    def test_claim_settle(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)
        group_id = ledger.record_group(group_for(("501", "30"), ("502", "20")))

        ledger.claim_group(group_id)
        assert ledger.get_group(group_id).status == CollectionStatus.SENDING
        assert ledger.sendable_group_ids() == []

        ledger.settle_group(group_id, "ERP-R1")
        group = ledger.get_group(group_id)

        assert group.status == CollectionStatus.SYNCED
        assert group.remote_document_id == "ERP-R1"
        assert all(c.synced_at is not None for c in group.collections)

    def test_claim_twice_refused(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)
        group_id = ledger.record_group(group_for(("500", "10")))
        ledger.claim_group(group_id)

        with pytest.raises(IllegalTransition):
            ledger.claim_group(group_id)

    def test_release_and_fail_are_retried(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)
        group_id = ledger.record_group(group_for(("500", "10")))

        ledger.claim_group(group_id)
        ledger.release_group(group_id, "timeout")
        group = ledger.get_group(group_id)
        assert group.status == CollectionStatus.PENDING
        assert group.last_error_kind == ErrorKind.TRANSIENT

        ledger.claim_group(group_id)
        ledger.mark_group_failed(group_id, "saldo insuficiente")
        assert ledger.get_group(group_id).status == CollectionStatus.FAILED
        assert ledger.sendable_group_ids() == [group_id]

    def test_synced_is_terminal(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)
        group_id = ledger.record_group(group_for(("500", "10")))
        ledger.mark_group_synced(group_id, "ya cobrado")

        with pytest.raises(IllegalTransition):
            ledger.claim_group(group_id)

    def test_already_settled_note_is_not_an_error(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)
        group_id = ledger.record_group(group_for(("500", "10")))
        ledger.claim_group(group_id)
        ledger.release_group(group_id, "timeout")

        ledger.mark_group_synced(group_id, "El ERP ya refleja el cobro")
        group = ledger.get_group(group_id)

        assert group.status == CollectionStatus.SYNCED
        assert group.sync_note == "El ERP ya refleja el cobro"
        assert group.last_error is None
        assert group.last_error_kind is None

    def test_operator_cancels_stuck_sending(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)
        group_id = ledger.record_group(group_for(("500", "10")))
        ledger.claim_group(group_id)

        ledger.cancel_send(group_id)
        group = ledger.get_group(group_id)

        assert group.status == CollectionStatus.PENDING
        assert group.last_error == OPERATOR_CANCEL_MESSAGE
        assert group.last_error_kind == ErrorKind.OPERATOR
        assert ledger.sendable_group_ids() == [group_id]
        with pytest.raises(IllegalTransition):
            ledger.cancel_send(group_id)

    def test_release_stale_groups(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)
        stale = ledger.record_group(group_for(("500", "10")))
        recent = ledger.record_group(group_for(("501", "10")))
        ledger.claim_group(stale)
        ledger.claim_group(recent)
        db_session.execute(
            update(Collection)
            .where(Collection.receipt_group_id == stale)
            .values(updated_at=utcnow() - timedelta(hours=1))
        )

        released = ledger.release_stale_groups(timedelta(minutes=15))

        assert released == [stale]
        assert ledger.get_group(stale).status == CollectionStatus.PENDING
        assert ledger.get_group(stale).last_error_kind == ErrorKind.TRANSIENT
        assert ledger.get_group(recent).status == CollectionStatus.SENDING

    def test_delete_group(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)
        pending = ledger.record_group(group_for(("500", "10")))
        synced = ledger.record_group(group_for(("501", "10")))
        ledger.claim_group(synced)
        ledger.settle_group(synced, "ERP-R1")

        ledger.delete_group(pending)
        with pytest.raises(LedgerValidationError):
            ledger.delete_group(synced)
        with pytest.raises(NotFound):
            ledger.get_group(pending)

    def test_build_submission(self, db_session: Session, remote_balances):
        ledger = CollectionLedger(db_session)
        group_id = ledger.record_group(group_for(("501", "30"), ("502", "20")))

        submission = ledger.build_submission(group_id)

        assert submission.document_type == DocumentType.RECEIPT
        assert submission.local_id == group_id
        assert submission.partner_code == "C001"
        assert submission.total == Decimal("50.00")
        assert len(submission.allocations) == 2


# ===== TESTS DE ENDPOINTS =====

class TestCollectionsAPI:
    """Tests de integración para los endpoints de cobros"""

    @pytest.fixture
    def seeded(self, store, balance_line):
        with store.session() as db:
            BalanceReconciler(db).replace_snapshot([
                balance_line("P1", "500", Decimal("100")),
                balance_line("P1", "501", Decimal("30")),
            ])

    def test_record_group_endpoint(self, client, seeded):
        response = client.post("/collections/", json={
            "partner_id": "P1",
            "allocations": [
                {"series": "FACT", "number": "500", "amount": "60"},
                {"series": "FACT", "number": "501", "amount": "30"}
            ]
        })

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert Decimal(data["total"]) == Decimal("90")
        assert len(data["collections"]) == 2

    def test_insufficient_balance_returns_400(self, client, seeded):
        response = client.post("/collections/", json={
            "partner_id": "P1",
            "allocations": [{"series": "FACT", "number": "501", "amount": "31"}]
        })

        assert response.status_code == 400
        assert "FACT 501" in response.json()["detail"]

    def test_from_invoice_and_list(self, client):
        invoice = client.post("/invoices/", json={
            "partner_id": "P1", "location_id": "L1",
            "items": [{"product_id": "PR1", "quantity": "1"}]
        }).json()

        created = client.post(f"/collections/from-invoice/{invoice['id']}", json={"amount": "5"})
        listed = client.get("/collections/", params={"status": "pending"}).json()

        assert created.status_code == 201
        assert listed["total"] == 1
        assert listed["groups"][0]["receipt_group_id"] == created.json()["receipt_group_id"]

    def test_delete_group_endpoint(self, client, seeded):
        group_id = client.post("/collections/", json={
            "partner_id": "P1",
            "allocations": [{"series": "FACT", "number": "500", "amount": "10"}]
        }).json()["receipt_group_id"]

        assert client.delete(f"/collections/{group_id}").status_code == 204
        assert client.get(f"/collections/{group_id}").status_code == 404

    def test_cancel_send_endpoint(self, client, store, seeded):
        group_id = client.post("/collections/", json={
            "partner_id": "P1",
            "allocations": [{"series": "FACT", "number": "500", "amount": "10"}]
        }).json()["receipt_group_id"]

        assert client.post(f"/collections/{group_id}/cancel-send").status_code == 409

        with store.session() as db:
            CollectionLedger(db).claim_group(group_id)
        response = client.post(f"/collections/{group_id}/cancel-send")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["last_error_kind"] == "operator"
