"""
Tests para el módulo de Facturación

Tests que cubren:
- Emisión con numeración secuencial y cálculo de totales por línea
- Validaciones de partner, sede y productos (sin consumir número)
- Máquina de estados pending -> sending -> {sent, pending}
- Cancelación de envío por el operador
- Endpoints REST
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from ledger_sync.core.exceptions import LedgerValidationError, IllegalTransition, NotFound
from ledger_sync.common.status import ErrorKind
from ledger_sync.modules.invoices.models import Invoice, InvoiceLineItem, InvoiceStatus
from ledger_sync.modules.invoices.schemas import InvoiceCreate, InvoiceLineItemCreate
from ledger_sync.modules.invoices.service import InvoiceLedger, OPERATOR_CANCEL_MESSAGE
from ledger_sync.modules.numbering.models import CounterKind
from ledger_sync.modules.numbering.service import NumberAllocator
from ledger_sync.modules.sync.schemas import DocumentType


# ===== FIXTURES =====

@pytest.fixture
def invoice_data():
    """Factura para P1: 2 x agua (19%) y 3 x pan a precio de oferta (9%)"""
    return InvoiceCreate(
        partner_id="P1",
        location_id="L1",
        notes="Entrega matinal",
        items=[
            InvoiceLineItemCreate(product_id="PR1", quantity=Decimal("2")),
            InvoiceLineItemCreate(product_id="PR2", quantity=Decimal("3")),
        ]
    )


@pytest.fixture
def invoice_payload():
    return {
        "partner_id": "P1",
        "location_id": "L1",
        "items": [{"product_id": "PR1", "quantity": "2"}]
    }


# ===== TESTS DE TOTALES =====

class TestInvoiceTotals:
    """Impuesto por línea a su propia tasa, redondeado half-up a centavos"""

    def test_tax_rounded_per_line(self):
        items = [
            InvoiceLineItem(quantity=Decimal("1"), unit_price=Decimal("0.50"), tax_rate=Decimal("9")),
            InvoiceLineItem(quantity=Decimal("1"), unit_price=Decimal("0.50"), tax_rate=Decimal("9")),
        ]

        totals = InvoiceLedger.calculate_totals(items)

        # 0.045 -> 0.05 por línea; sobre el neto agregado serían 0.09
        assert totals.subtotal == Decimal("1.00")
        assert totals.taxes_total == Decimal("0.10")
        assert totals.total_amount == Decimal("1.10")
        assert items[0].line_total == Decimal("0.55")

    def test_mixed_rates(self):
        items = [
            InvoiceLineItem(quantity=Decimal("2"), unit_price=Decimal("10.00"), tax_rate=Decimal("19")),
            InvoiceLineItem(quantity=Decimal("3"), unit_price=Decimal("4.50"), tax_rate=Decimal("9")),
        ]

        totals = InvoiceLedger.calculate_totals(items)

        assert totals.subtotal == Decimal("33.50")
        assert totals.taxes_total == Decimal("5.02")
        assert totals.total_amount == Decimal("38.52")


# ===== TESTS DEL SERVICIO =====

class TestInvoiceLedger:
    """Tests para InvoiceLedger"""

    def test_create_invoice(self, db_session: Session, invoice_data):
        invoice = InvoiceLedger(db_session).create(invoice_data)

        assert invoice.number == 1
        assert invoice.series == "FACT"
        assert invoice.number_managed is True
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.currency == "RON"
        assert invoice.total_amount == Decimal("38.52")
        assert [li.unit_price for li in invoice.line_items] == [Decimal("10.00"), Decimal("4.50")]
        assert invoice.due_date == invoice.created_at + timedelta(days=30)

    def test_numbers_strictly_increasing(self, db_session: Session, invoice_data):
        ledger = InvoiceLedger(db_session)

        numbers = [ledger.create(invoice_data).number for _ in range(3)]

        assert numbers == [1, 2, 3]

    def test_location_must_belong_to_partner(self, db_session: Session, invoice_data):
        invoice_data.location_id = "L2"

        with pytest.raises(LedgerValidationError):
            InvoiceLedger(db_session).create(invoice_data)

    def test_unpriced_product_does_not_consume_number(self, db_session: Session, invoice_data):
        invoice_data.items.append(InvoiceLineItemCreate(product_id="PR3", quantity=Decimal("1")))

        with pytest.raises(LedgerValidationError):
            InvoiceLedger(db_session).create(invoice_data)

        assert NumberAllocator(db_session).peek(CounterKind.INVOICE).current == 1
        assert db_session.query(Invoice).count() == 0

    def test_unknown_partner(self, db_session: Session, invoice_data):
        invoice_data.partner_id = "NOPE"

        with pytest.raises(LedgerValidationError):
            InvoiceLedger(db_session).create(invoice_data)

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValueError):
            InvoiceLineItemCreate(product_id="PR1", quantity=Decimal("0"))

    def test_send_lifecycle(self, db_session: Session, invoice_data):
        ledger = InvoiceLedger(db_session)
        invoice = ledger.create(invoice_data)

        ledger.begin_send(invoice.id)
        sent = ledger.complete_send(invoice.id, "ERP-77")

        assert sent.status == InvoiceStatus.SENT
        assert sent.sent_at is not None
        assert sent.remote_document_id == "ERP-77"

        with pytest.raises(IllegalTransition):
            ledger.fail_send(invoice.id, "tarde")
        assert ledger.get(invoice.id).status == InvoiceStatus.SENT

    def test_fail_send_returns_to_pending(self, db_session: Session, invoice_data):
        ledger = InvoiceLedger(db_session)
        invoice = ledger.create(invoice_data)

        ledger.begin_send(invoice.id)
        failed = ledger.fail_send(invoice.id, "timeout", ErrorKind.TRANSIENT)

        assert failed.status == InvoiceStatus.PENDING
        assert failed.last_error == "timeout"
        assert failed.last_error_kind == ErrorKind.TRANSIENT

    def test_begin_send_twice_is_refused(self, db_session: Session, invoice_data):
        ledger = InvoiceLedger(db_session)
        invoice = ledger.create(invoice_data)
        ledger.begin_send(invoice.id)

        with pytest.raises(IllegalTransition):
            ledger.begin_send(invoice.id)

    def test_cancel_send_only_from_sending(self, db_session: Session, invoice_data):
        ledger = InvoiceLedger(db_session)
        invoice = ledger.create(invoice_data)

        with pytest.raises(IllegalTransition):
            ledger.cancel_send(invoice.id)
        assert ledger.get(invoice.id).status == InvoiceStatus.PENDING
        assert ledger.get(invoice.id).last_error is None

        ledger.begin_send(invoice.id)
        cancelled = ledger.cancel_send(invoice.id)

        assert cancelled.status == InvoiceStatus.PENDING
        assert cancelled.last_error == OPERATOR_CANCEL_MESSAGE
        assert cancelled.last_error_kind == ErrorKind.OPERATOR

    def test_transition_unknown_invoice(self, db_session: Session):
        with pytest.raises(NotFound):
            InvoiceLedger(db_session).begin_send("missing")

    def test_delete_pending_keeps_number_consumed(self, db_session: Session, invoice_data):
        ledger = InvoiceLedger(db_session)
        first = ledger.create(invoice_data)

        ledger.delete(first.id)
        second = ledger.create(invoice_data)

        assert second.number == 2
        assert db_session.query(InvoiceLineItem).count() == 2

    def test_delete_sent_refused(self, db_session: Session, invoice_data):
        ledger = InvoiceLedger(db_session)
        invoice = ledger.create(invoice_data)
        ledger.begin_send(invoice.id)
        ledger.complete_send(invoice.id, "ERP-1")

        with pytest.raises(LedgerValidationError):
            ledger.delete(invoice.id)

    def test_pending_ids(self, db_session: Session, invoice_data):
        ledger = InvoiceLedger(db_session)
        a = ledger.create(invoice_data)
        b = ledger.create(invoice_data)
        c = ledger.create(invoice_data)
        ledger.begin_send(b.id)
        ledger.record_error(c.id, "aceptada tras cancelar", ErrorKind.OPERATOR, remote_document_id="ERP-9")

        assert ledger.pending_ids() == [a.id]

    def test_build_submission(self, db_session: Session, invoice_data):
        ledger = InvoiceLedger(db_session)
        invoice = ledger.create(invoice_data)

        submission = ledger.build_submission(invoice.id)

        assert submission.document_type == DocumentType.INVOICE
        assert submission.partner_code == "C001"
        assert submission.remote_site_id == "S1"
        assert submission.total == Decimal("38.52")
        assert len(submission.lines) == 2

    def test_build_submission_requires_partner_code(self, db_session: Session):
        ledger = InvoiceLedger(db_session)
        invoice = ledger.create(InvoiceCreate(
            partner_id="P2", location_id="L2",
            items=[InvoiceLineItemCreate(product_id="PR1", quantity=Decimal("1"))]
        ))

        with pytest.raises(LedgerValidationError):
            ledger.build_submission(invoice.id)


# ===== TESTS DE ENDPOINTS =====

class TestInvoiceAPI:
    """Tests de integración para los endpoints de facturas"""

    def test_create_invoice_endpoint(self, client, invoice_payload):
        response = client.post("/invoices/", json=invoice_payload)

        assert response.status_code == 201
        data = response.json()
        assert data["number"] == 1
        assert data["status"] == "pending"
        assert data["item_count"] == 1
        assert Decimal(data["total_amount"]) == Decimal("23.80")

    def test_get_invoice_detail(self, client, invoice_payload):
        invoice_id = client.post("/invoices/", json=invoice_payload).json()["id"]

        response = client.get(f"/invoices/{invoice_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["partner_name"] == "Alfa Distribuție SRL"
        assert data["location_name"] == "Depozit Central"
        assert len(data["line_items"]) == 1

    def test_list_invoices_by_status(self, client, invoice_payload):
        client.post("/invoices/", json=invoice_payload)
        client.post("/invoices/", json=invoice_payload)

        pending = client.get("/invoices/", params={"status": "pending"}).json()
        sent = client.get("/invoices/", params={"status": "sent"}).json()

        assert pending["total"] == 2
        assert sent["total"] == 0

    def test_cancel_send_on_pending_conflicts(self, client, invoice_payload):
        invoice_id = client.post("/invoices/", json=invoice_payload).json()["id"]

        response = client.post(f"/invoices/{invoice_id}/cancel-send")

        assert response.status_code == 409
        assert "pending" in response.json()["detail"]

    def test_invalid_product_returns_400(self, client, invoice_payload):
        invoice_payload["items"][0]["product_id"] = "PR3"

        response = client.post("/invoices/", json=invoice_payload)

        assert response.status_code == 400

    def test_zero_quantity_returns_422(self, client, invoice_payload):
        invoice_payload["items"][0]["quantity"] = "0"

        response = client.post("/invoices/", json=invoice_payload)

        assert response.status_code == 422

    def test_delete_invoice(self, client, invoice_payload):
        invoice_id = client.post("/invoices/", json=invoice_payload).json()["id"]

        assert client.delete(f"/invoices/{invoice_id}").status_code == 204
        assert client.get(f"/invoices/{invoice_id}").status_code == 404
