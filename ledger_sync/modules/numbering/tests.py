"""
Tests para el módulo de Numeración

- Emisión secuencial sin huecos
- Agotamiento del rango y contador no configurado
- Numeración de respaldo (no gestionada)
- Configuración de rangos y endpoints
"""

from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from ledger_sync.core.exceptions import NumberRangeExhausted, NumberRangeNotConfigured, LedgerValidationError
from ledger_sync.modules.numbering.models import CounterKind, NumberRange
from ledger_sync.modules.numbering.schemas import NumberRangeConfigure
from ledger_sync.modules.numbering.service import NumberAllocator
from ledger_sync.modules.invoices.schemas import InvoiceCreate, InvoiceLineItemCreate
from ledger_sync.modules.invoices.service import InvoiceLedger


# ===== TESTS DEL ASIGNADOR =====

class TestNumberAllocator:
    """Tests para NumberAllocator"""

    def test_allocate_is_sequential_and_gap_free(self, db_session: Session):
        allocator = NumberAllocator(db_session)

        values = [allocator.allocate(CounterKind.INVOICE).value for _ in range(5)]

        assert values == [1, 2, 3, 4, 5]
        assert allocator.peek(CounterKind.INVOICE).current == 6

    def test_counters_are_independent(self, db_session: Session):
        allocator = NumberAllocator(db_session)

        allocator.allocate(CounterKind.INVOICE)
        allocator.allocate(CounterKind.INVOICE)
        receipt = allocator.allocate(CounterKind.RECEIPT)

        assert receipt.value == 1
        assert receipt.series == "CH"
        assert receipt.managed is True

    def test_allocate_until_exhausted(self, db_session: Session):
        allocator = NumberAllocator(db_session)
        allocator.configure(CounterKind.INVOICE, NumberRangeConfigure(start=10, end=11, series="FACT"))

        assert allocator.allocate(CounterKind.INVOICE).value == 10
        assert allocator.allocate(CounterKind.INVOICE).value == 11

        with pytest.raises(NumberRangeExhausted):
            allocator.allocate(CounterKind.INVOICE)

        # El contador queda en end + 1, sin avanzar más
        assert allocator.peek(CounterKind.INVOICE).current == 12
        assert allocator.peek(CounterKind.INVOICE).is_exhausted

    def test_missing_counter_without_fallback(self, db_session: Session):
        db_session.query(NumberRange).filter(NumberRange.kind == CounterKind.RECEIPT).delete()

        with pytest.raises(NumberRangeNotConfigured):
            NumberAllocator(db_session, allow_unmanaged=False).allocate(CounterKind.RECEIPT)

    def test_missing_counter_with_unmanaged_fallback(self, db_session: Session):
        db_session.query(NumberRange).filter(NumberRange.kind == CounterKind.RECEIPT).delete()
        allocator = NumberAllocator(db_session, allow_unmanaged=True)

        first = allocator.allocate(CounterKind.RECEIPT)
        second = allocator.allocate(CounterKind.RECEIPT)

        assert first.managed is False
        assert first.series is None
        assert second.value > first.value

    def test_configure_cannot_move_back_in_same_series(self, db_session: Session):
        allocator = NumberAllocator(db_session)
        allocator.allocate(CounterKind.INVOICE)
        allocator.allocate(CounterKind.INVOICE)

        with pytest.raises(LedgerValidationError):
            allocator.configure(CounterKind.INVOICE, NumberRangeConfigure(start=1, end=100, series="FACT"))

    def test_configure_new_series_restarts(self, db_session: Session):
        allocator = NumberAllocator(db_session)
        allocator.allocate(CounterKind.INVOICE)

        allocator.configure(CounterKind.INVOICE, NumberRangeConfigure(start=1, end=50, series="FACT2"))
        allocated = allocator.allocate(CounterKind.INVOICE)

        assert allocated.value == 1
        assert allocated.label == "FACT2 1"

    def test_new_invoice_series_cannot_reuse_issued_numbers(self, db_session: Session):
        ledger = InvoiceLedger(db_session)
        data = InvoiceCreate(
            partner_id="P1", location_id="L1",
            items=[InvoiceLineItemCreate(product_id="PR1", quantity=Decimal("1"))]
        )
        first = ledger.create(data)
        allocator = NumberAllocator(db_session)

        with pytest.raises(LedgerValidationError):
            allocator.configure(CounterKind.INVOICE, NumberRangeConfigure(start=1, end=50, series="NEW"))

        allocator.configure(CounterKind.INVOICE, NumberRangeConfigure(start=first.number + 1, end=50, series="NEW"))
        second = ledger.create(data)

        assert second.series == "NEW"
        assert second.number == first.number + 1

    def test_configure_rejects_invalid_bounds(self):
        with pytest.raises(ValueError):
            NumberRangeConfigure(start=10, end=5)
        with pytest.raises(ValueError):
            NumberRangeConfigure(start=1, end=5, current=7)


# ===== TESTS DE ENDPOINTS =====

class TestNumberingAPI:
    """Tests de integración para los endpoints de numeración"""

    def test_list_ranges(self, client):
        response = client.get("/number-ranges/")

        assert response.status_code == 200
        kinds = {r["kind"] for r in response.json()["ranges"]}
        assert kinds == {"invoice", "receipt"}

    def test_peek_does_not_consume(self, client):
        first = client.get("/number-ranges/invoice").json()
        second = client.get("/number-ranges/invoice").json()

        assert first["current"] == second["current"] == 1
        assert first["remaining"] == 100

    def test_configure_range(self, client):
        response = client.put("/number-ranges/receipt", json={"start": 500, "end": 999, "series": "CHN"})

        assert response.status_code == 200
        assert response.json()["current"] == 500
        assert response.json()["series"] == "CHN"

    def test_configure_invalid_range(self, client):
        response = client.put("/number-ranges/receipt", json={"start": 10, "end": 1})

        assert response.status_code == 422

    def test_restart_below_issued_invoice_returns_400(self, client):
        client.post("/invoices/", json={
            "partner_id": "P1", "location_id": "L1",
            "items": [{"product_id": "PR1", "quantity": "1"}]
        })

        response = client.put("/number-ranges/invoice", json={"start": 1, "end": 50, "series": "NEW"})

        assert response.status_code == 400
        assert "ya fue usado" in response.json()["detail"]
