"""
Fixtures compartidas para los tests de todos los módulos.

Cada test usa una base SQLite en memoria nueva (StaticPool: una sola
conexión compartida entre el TestClient y el test) y un ERP simulado.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import threading
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ledger_sync.main import app
from ledger_sync.database.database import Base, LocalStore, get_store
from ledger_sync.dependencies.syncDependencies import get_orchestrator
from ledger_sync.modules.balances.schemas import RemoteBalance
from ledger_sync.modules.catalog.schemas import (
    CatalogSnapshot, PartnerSnapshot, LocationSnapshot, ProductSnapshot, PartnerPriceSnapshot
)
from ledger_sync.modules.catalog.service import CatalogService
from ledger_sync.modules.numbering.models import CounterKind
from ledger_sync.modules.numbering.schemas import NumberRangeConfigure
from ledger_sync.modules.numbering.service import NumberAllocator
from ledger_sync.modules.sync.gateway import RemoteSettlementGateway, RemoteBalancePull, CatalogPull
from ledger_sync.modules.sync.schemas import GatewayResponse
from ledger_sync.modules.sync.service import SyncOrchestrator


def build_catalog() -> CatalogSnapshot:
    return CatalogSnapshot(
        partners=[
            PartnerSnapshot(
                id="P1", name="Alfa Distribuție SRL", code="C001", tax_id="RO123456",
                payment_term_days=30, currency="RON",
                locations=[LocationSnapshot(id="L1", name="Depozit Central", address="Str. Lungă 10",
                                            remote_site_id="S1")]
            ),
            PartnerSnapshot(
                id="P2", name="Beta Market", code=None, payment_term_days=15,
                locations=[LocationSnapshot(id="L2", name="Magazin Beta")]
            ),
        ],
        products=[
            ProductSnapshot(id="PR1", name="Apă minerală 2L", unit_of_measure="BUC",
                            price=Decimal("10.00"), tax_rate=Decimal("19")),
            ProductSnapshot(id="PR2", name="Pâine albă", unit_of_measure="BUC",
                            price=Decimal("5.00"), tax_rate=Decimal("9")),
            ProductSnapshot(id="PR3", name="Produs fără preț", price=None, tax_rate=Decimal("19")),
        ],
        prices=[PartnerPriceSnapshot(partner_id="P1", product_id="PR2", price=Decimal("4.50"))]
    )


def remote_line(partner_id: str, number: str, rest, series: str = "FACT", document_code=None,
                due_date=None) -> RemoteBalance:
    return RemoteBalance(
        partner_id=partner_id,
        partner_name=f"Partner {partner_id}",
        document_type="FACTURA",
        series=series,
        number=number,
        document_code=document_code,
        value=rest,
        rest=rest,
        currency="RON",
        due_date=due_date
    )


class FakeErp(RemoteSettlementGateway, RemoteBalancePull, CatalogPull):
    """ERP simulado: registra envíos y responde según la cola `responses`"""

    def __init__(self):
        self.submissions = []
        self.responses = []  # GatewayResponse o excepción, en orden
        self.balances = []
        self.balance_error = None
        self.balance_calls = []
        self.catalog = build_catalog()
        self.catalog_error = None
        self.on_submit = None  # se ejecuta durante la llamada de red, sin el lock del almacén

    def submit(self, submission):
        self.submissions.append(submission)
        if self.on_submit is not None:
            self.on_submit(submission)
        if self.responses:
            outcome = self.responses.pop(0)
        else:
            outcome = GatewayResponse(remote_document_id=f"ERP-{len(self.submissions)}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def fetch_balances(self, partner_id=None):
        self.balance_calls.append(partner_id)
        if self.balance_error is not None:
            raise self.balance_error
        return [line for line in self.balances if partner_id is None or line.partner_id == partner_id]

    def fetch_catalog(self):
        if self.catalog_error is not None:
            raise self.catalog_error
        return self.catalog


# ===== FIXTURES =====

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def store(engine):
    """Almacén local con catálogo y rangos de numeración cargados"""
    local_store = LocalStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    with local_store.session() as db:
        CatalogService(db).apply_snapshot(build_catalog())
        allocator = NumberAllocator(db)
        allocator.configure(CounterKind.INVOICE, NumberRangeConfigure(start=1, end=100, series="FACT"))
        allocator.configure(CounterKind.RECEIPT, NumberRangeConfigure(start=1, end=100, series="CH"))
    return local_store


@pytest.fixture
def db_session(store):
    """Sesión sin commit automático para tests de servicio"""
    with store.session() as db:
        yield db
        db.rollback()


@pytest.fixture
def catalog_snapshot():
    return build_catalog()


@pytest.fixture
def balance_line():
    """Fábrica de líneas de saldo remoto"""
    return remote_line


@pytest.fixture
def erp():
    return FakeErp()


@pytest.fixture
def run_lock():
    return threading.Lock()


@pytest.fixture
def orchestrator(store, erp, run_lock):
    return SyncOrchestrator(store, settlement=erp, balances=erp, catalog=erp, run_lock=run_lock)


@pytest.fixture
def client(store, orchestrator):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
