"""
Tests para el módulo de Reportes

- Ventas por partner, por estado y por producto
- Cobros por partner y estado
- Exportación CSV y validación del rango de fechas
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from ledger_sync.modules.balances.service import BalanceReconciler
from ledger_sync.modules.cash_collections.schemas import AllocationCreate, CollectionGroupCreate
from ledger_sync.modules.cash_collections.service import CollectionLedger
from ledger_sync.modules.invoices.models import InvoiceStatus
from ledger_sync.modules.invoices.schemas import InvoiceCreate, InvoiceLineItemCreate
from ledger_sync.modules.invoices.service import InvoiceLedger
from ledger_sync.modules.reports.service import ReportService


# ===== FIXTURES =====

@pytest.fixture
def period():
    today = date.today()
    return today - timedelta(days=1), today + timedelta(days=1)


@pytest.fixture
def activity(store, balance_line):
    """Dos facturas de P1 (una enviada), una de P2 y un cobro de P1"""
    with store.session() as db:
        ledger = InvoiceLedger(db)
        sent = ledger.create(InvoiceCreate(
            partner_id="P1", location_id="L1",
            items=[InvoiceLineItemCreate(product_id="PR1", quantity=Decimal("2"))]
        ))
        ledger.create(InvoiceCreate(
            partner_id="P1", location_id="L1",
            items=[InvoiceLineItemCreate(product_id="PR2", quantity=Decimal("3"))]
        ))
        ledger.create(InvoiceCreate(
            partner_id="P2", location_id="L2",
            items=[InvoiceLineItemCreate(product_id="PR1", quantity=Decimal("1"))]
        ))
        ledger.begin_send(sent.id)
        ledger.complete_send(sent.id, "ERP-1")

        BalanceReconciler(db).replace_snapshot([balance_line("P1", "500", Decimal("100"))])
        CollectionLedger(db).record_group(CollectionGroupCreate(
            partner_id="P1",
            allocations=[AllocationCreate(series="FACT", number="500", amount=Decimal("35.50"))]
        ))


class TestReportService:
    """Tests para ReportService"""

    def test_sales_report(self, db_session, activity, period):
        report = ReportService(db_session).get_sales_report(*period)

        assert report.total_invoices == 3
        # P1: 23.80 + 14.72; P2: 11.90
        assert report.total_amount == Decimal("50.42")
        assert report.partners[0].partner_id == "P1"
        assert report.partners[0].invoice_count == 2
        by_status = {s.status: s.invoice_count for s in report.by_status}
        assert by_status == {InvoiceStatus.SENT: 1, InvoiceStatus.PENDING: 2}

    def test_sales_by_product(self, db_session, activity, period):
        report = ReportService(db_session).get_sales_by_product(*period)

        products = {p.product_id: p for p in report.products}
        assert products["PR1"].quantity_sold == Decimal("3")
        assert products["PR1"].subtotal == Decimal("30.00")
        assert products["PR2"].total_amount == Decimal("14.72")

    def test_collections_report(self, db_session, activity, period):
        report = ReportService(db_session).get_collections_report(*period)

        assert len(report.items) == 1
        assert report.items[0].partner_id == "P1"
        assert report.items[0].collection_count == 1
        assert report.total_amount == Decimal("35.50")

    def test_empty_period(self, db_session, activity):
        past = date.today() - timedelta(days=30)

        report = ReportService(db_session).get_sales_report(past, past)

        assert report.total_invoices == 0
        assert report.partners == []


class TestReportsAPI:
    """Tests de integración para los endpoints de reportes"""

    def test_sales_endpoint(self, client, activity, period):
        response = client.get("/reports/sales", params={"start_date": str(period[0]), "end_date": str(period[1])})

        assert response.status_code == 200
        assert response.json()["total_invoices"] == 3

    def test_sales_csv_export(self, client, activity, period):
        response = client.get("/reports/sales", params={
            "start_date": str(period[0]), "end_date": str(period[1]), "export": "csv"
        })

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("Partner,Facturas")
        assert len(lines) == 3

    def test_collections_csv_export(self, client, activity, period):
        response = client.get("/reports/collections", params={
            "start_date": str(period[0]), "end_date": str(period[1]), "export": "csv"
        })

        assert response.status_code == 200
        assert "pending" in response.text

    def test_invalid_range(self, client, period):
        response = client.get("/reports/sales/products", params={
            "start_date": str(period[1]), "end_date": str(period[0])
        })

        assert response.status_code == 422
