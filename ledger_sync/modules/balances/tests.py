"""
Tests para el módulo de Saldos

- Saldo efectivo: saldo remoto (o factura local no enviada) menos cobros locales
- Nunca negativo
- Reemplazo completo de la copia remota
- Listado con vencidos primero
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from ledger_sync.common.references import InvoiceRef
from ledger_sync.modules.balances.models import RemoteBalanceLine
from ledger_sync.modules.balances.schemas import RemoteBalance
from ledger_sync.modules.balances.service import BalanceReconciler
from ledger_sync.modules.cash_collections.schemas import AllocationCreate, CollectionGroupCreate
from ledger_sync.modules.cash_collections.service import CollectionLedger
from ledger_sync.modules.invoices.schemas import InvoiceCreate, InvoiceLineItemCreate
from ledger_sync.modules.invoices.service import InvoiceLedger


# ===== FIXTURES =====

@pytest.fixture
def invoice_x():
    return InvoiceRef(series="FACT", number="500")


def collect(db: Session, partner_id: str, ref: InvoiceRef, amount: str) -> str:
    return CollectionLedger(db).record_group(CollectionGroupCreate(
        partner_id=partner_id,
        allocations=[AllocationCreate(
            series=ref.series, number=ref.number, document_code=ref.document_code, amount=Decimal(amount)
        )]
    ))


def local_invoice(db: Session):
    return InvoiceLedger(db).create(InvoiceCreate(
        partner_id="P1", location_id="L1",
        items=[InvoiceLineItemCreate(product_id="PR1", quantity=Decimal("2"))]
    ))


# ===== TESTS DE PARSEO =====

class TestRemoteBalanceSchema:
    """El ERP envía montos con coma decimal y fechas dd.mm.yyyy"""

    def test_parses_erp_formats(self):
        line = RemoteBalance(partner_id=" P1 ", rest="12,50", value="100", due_date="31.12.2025",
                             issue_date="2025-11-30")

        assert line.partner_id == "P1"
        assert line.rest == Decimal("12.50")
        assert line.value == Decimal("100")
        assert line.due_date == date(2025, 12, 31)
        assert line.issue_date == date(2025, 11, 30)

    def test_empty_values(self):
        line = RemoteBalance(partner_id="P1", rest="", due_date="")

        assert line.rest == Decimal("0")
        assert line.due_date is None


# ===== TESTS DEL SERVICIO =====

class TestBalanceReconciler:
    """Tests para BalanceReconciler"""

    def test_remote_balance_minus_pending_collection(self, db_session: Session, balance_line, invoice_x):
        reconciler = BalanceReconciler(db_session)
        reconciler.replace_snapshot([balance_line("P1", "500", Decimal("100"))])

        collect(db_session, "P1", invoice_x, "40")

        assert reconciler.remaining_for("P1", invoice_x) == Decimal("60.00")

    def test_unknown_reference_has_no_balance(self, db_session: Session, invoice_x):
        assert BalanceReconciler(db_session).remaining_for("P1", invoice_x) == Decimal("0")

    def test_reference_is_normalized(self, db_session: Session, balance_line):
        reconciler = BalanceReconciler(db_session)
        reconciler.replace_snapshot([balance_line("P1", "500", Decimal("100"))])

        assert reconciler.remaining_for("P1 ", InvoiceRef(series=" FACT", number="500 ")) == Decimal("100.00")
        assert reconciler.remaining_for("P2", InvoiceRef(series="FACT", number="500")) == Decimal("0")

    def test_never_negative(self, db_session: Session, balance_line, invoice_x):
        reconciler = BalanceReconciler(db_session)
        reconciler.replace_snapshot([balance_line("P1", "500", Decimal("30"))])
        collect(db_session, "P1", invoice_x, "30")

        # El ERP reporta un saldo menor al ya cobrado localmente
        reconciler.replace_snapshot([balance_line("P1", "500", Decimal("10"))])

        assert reconciler.remaining_for("P1", invoice_x) == Decimal("0")

    def test_exclude_own_group(self, db_session: Session, balance_line, invoice_x):
        reconciler = BalanceReconciler(db_session)
        reconciler.replace_snapshot([balance_line("P1", "500", Decimal("100"))])
        group_id = collect(db_session, "P1", invoice_x, "40")

        assert reconciler.remaining_for("P1", invoice_x, exclude_group_id=group_id) == Decimal("100.00")

    def test_local_unsent_invoice_is_provisional_balance(self, db_session: Session):
        invoice = local_invoice(db_session)
        reconciler = BalanceReconciler(db_session)

        assert reconciler.remaining_for("P1", invoice.reference) == Decimal("23.80")

        collect(db_session, "P1", invoice.reference, "10")

        assert reconciler.remaining_for("P1", invoice.reference) == Decimal("13.80")
        assert reconciler.is_local_unsent("P1", "FACT", str(invoice.number), str(invoice.number))

    def test_sent_invoice_waits_for_remote_balance(self, db_session: Session):
        invoice = local_invoice(db_session)
        ledger = InvoiceLedger(db_session)
        ledger.begin_send(invoice.id)
        ledger.complete_send(invoice.id, "ERP-1")

        assert BalanceReconciler(db_session).remaining_for("P1", invoice.reference) == Decimal("0")

    def test_synced_collection_not_counted_twice_after_fresh_snapshot(self, db_session: Session, balance_line,
                                                                      invoice_x):
        reconciler = BalanceReconciler(db_session)
        reconciler.replace_snapshot([balance_line("P1", "500", Decimal("100"))])
        group_id = collect(db_session, "P1", invoice_x, "40")
        ledger = CollectionLedger(db_session)
        ledger.claim_group(group_id)
        ledger.settle_group(group_id, "ERP-R1")

        # El ERP ya descontó el cobro sincronizado
        reconciler.replace_snapshot([balance_line("P1", "500", Decimal("60"))])

        assert reconciler.remaining_for("P1", invoice_x) == Decimal("60.00")
        listed = reconciler.list_balances("P1").balances
        assert listed[0].remaining == Decimal("60.00")
        assert listed[0].collected == Decimal("0")

    def test_pending_collection_still_counted_after_fresh_snapshot(self, db_session: Session, balance_line,
                                                                   invoice_x):
        reconciler = BalanceReconciler(db_session)
        reconciler.replace_snapshot([balance_line("P1", "500", Decimal("100"))])
        collect(db_session, "P1", invoice_x, "40")

        reconciler.replace_snapshot([balance_line("P1", "500", Decimal("100"))])

        assert reconciler.remaining_for("P1", invoice_x) == Decimal("60.00")

    def test_sent_invoice_matches_remote_line_by_series_and_number(self, db_session: Session, balance_line):
        invoice = local_invoice(db_session)
        invoice_ledger = InvoiceLedger(db_session)
        invoice_ledger.begin_send(invoice.id)
        invoice_ledger.complete_send(invoice.id, "ERP-1")
        reconciler = BalanceReconciler(db_session)
        # El ERP reporta la factura con su propio código de documento
        reconciler.replace_snapshot([
            balance_line("P1", str(invoice.number), Decimal("23.80"), document_code="ERP-1")
        ])

        assert reconciler.remaining_for("P1", invoice.reference) == Decimal("23.80")

        group_id = CollectionLedger(db_session).record_from_invoice(invoice.id, Decimal("10"))

        assert CollectionLedger(db_session).get_group(group_id).total == Decimal("10.00")
        assert reconciler.remaining_for("P1", invoice.reference) == Decimal("13.80")
        listed = reconciler.list_balances("P1")
        assert [line.source for line in listed.balances] == ["remote"]
        assert listed.total_remaining == Decimal("13.80")

    def test_unsent_invoice_reported_remotely_is_listed_once(self, db_session: Session, balance_line):
        invoice = local_invoice(db_session)
        reconciler = BalanceReconciler(db_session)
        reconciler.replace_snapshot([balance_line("P1", str(invoice.number), Decimal("23.80"))])

        listed = reconciler.list_balances("P1")

        assert [line.source for line in listed.balances] == ["remote"]

    def test_replace_snapshot_discards_settled_lines(self, db_session: Session, balance_line):
        reconciler = BalanceReconciler(db_session)
        reconciler.replace_snapshot([balance_line("P1", "1", Decimal("5")), balance_line("P1", "2", Decimal("5"))])

        result = reconciler.replace_snapshot([
            balance_line("P1", "3", Decimal("50")),
            balance_line("P1", "4", Decimal("0")),
        ])

        assert result.received == 2
        assert result.stored == 1
        assert [line.number for line in db_session.query(RemoteBalanceLine).all()] == ["3"]

    def test_list_balances_orders_overdue_first(self, db_session: Session, balance_line, invoice_x):
        today = date.today()
        reconciler = BalanceReconciler(db_session)
        reconciler.replace_snapshot([
            balance_line("P1", "500", Decimal("100"), due_date=today + timedelta(days=10)),
            balance_line("P1", "400", Decimal("70"), due_date=today - timedelta(days=3)),
            balance_line("P1", "300", Decimal("20"), due_date=today - timedelta(days=40)),
            balance_line("P2", "900", Decimal("15")),
        ])
        collect(db_session, "P1", InvoiceRef(series="FACT", number="300"), "20")
        invoice = local_invoice(db_session)

        result = reconciler.list_balances("P1")

        numbers = [line.number for line in result.balances]
        # 300 queda en cero y se oculta; la factura local vence en 30 días
        assert numbers == ["400", "500", str(invoice.number)]
        assert result.balances[0].is_overdue is True
        assert result.balances[-1].source == "local"
        assert result.total_remaining == Decimal("193.80")


# ===== TESTS DE ENDPOINTS =====

class TestBalancesAPI:
    """Tests de integración para los endpoints de saldos"""

    def test_remaining_endpoint(self, client, store, balance_line, invoice_x):
        with store.session() as db:
            BalanceReconciler(db).replace_snapshot([balance_line("P1", "500", Decimal("100"))])
            collect(db, "P1", invoice_x, "40")

        response = client.get("/balances/remaining", params={"partner_id": "P1", "series": "FACT", "number": "500"})

        assert response.status_code == 200
        assert Decimal(str(response.json()["remaining"])) == Decimal("60")
        assert response.json()["invoice"] == "FACT 500"

    def test_list_endpoint(self, client, store, balance_line):
        with store.session() as db:
            BalanceReconciler(db).replace_snapshot([
                balance_line("P1", "500", Decimal("100")),
                balance_line("P2", "900", Decimal("15")),
            ])

        response = client.get("/balances/", params={"partner_id": "P2"})

        assert response.status_code == 200
        data = response.json()
        assert len(data["balances"]) == 1
        assert Decimal(data["total_remaining"]) == Decimal("15")
