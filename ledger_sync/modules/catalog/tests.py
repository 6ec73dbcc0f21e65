"""
Tests para el módulo de Catálogo

- Aplicación de la copia remota (alta, actualización, reemplazo de sedes y precios)
- Resolución de precio: oferta del cliente antes que precio de lista
"""

from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from ledger_sync.core.exceptions import NotFound
from ledger_sync.modules.catalog.models import Partner, Location, Product, PartnerPrice
from ledger_sync.modules.catalog.schemas import LocationSnapshot
from ledger_sync.modules.catalog.service import CatalogService


class TestCatalogService:
    """Tests para CatalogService"""

    def test_seed_snapshot_applied(self, db_session: Session):
        assert db_session.query(Partner).count() == 2
        assert db_session.query(Location).count() == 2
        assert db_session.query(Product).count() == 3
        assert db_session.query(PartnerPrice).count() == 1

    def test_apply_snapshot_updates_in_place(self, db_session: Session, catalog_snapshot):
        snapshot = catalog_snapshot
        snapshot.partners[0].name = "Alfa Distribuție SA"
        snapshot.partners[0].code = "  C009 "
        snapshot.partners[0].locations = [
            LocationSnapshot(id="L1", name="Depozit Central"),
            LocationSnapshot(id="L3", name="Punct de lucru Nord"),
        ]
        snapshot.prices = []

        result = CatalogService(db_session).apply_snapshot(snapshot)

        partner = db_session.get(Partner, "P1")
        assert partner.name == "Alfa Distribuție SA"
        assert partner.code == "C009"
        assert {loc.id for loc in partner.locations} == {"L1", "L3"}
        assert db_session.query(PartnerPrice).count() == 0
        assert result.locations == 3

    def test_resolve_price_prefers_offer(self, db_session: Session):
        service = CatalogService(db_session)

        bread = db_session.get(Product, "PR2")
        water = db_session.get(Product, "PR1")

        assert service.resolve_price("P1", bread) == Decimal("4.50")
        assert service.resolve_price("P2", bread) == Decimal("5.00")
        assert service.resolve_price("P1", water) == Decimal("10.00")

    def test_resolve_price_missing(self, db_session: Session):
        unpriced = db_session.get(Product, "PR3")

        assert CatalogService(db_session).resolve_price("P1", unpriced) is None

    def test_get_partner_not_found(self, db_session: Session):
        with pytest.raises(NotFound):
            CatalogService(db_session).get_partner("NOPE")

    def test_list_partners_search(self, db_session: Session):
        partners = CatalogService(db_session).list_partners("beta")

        assert [p.id for p in partners] == ["P2"]


class TestCatalogAPI:
    """Tests de integración para los endpoints de catálogo"""

    def test_list_partners(self, client):
        response = client.get("/partners")

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 2
        alfa = next(p for p in data if p["id"] == "P1")
        assert alfa["locations"][0]["id"] == "L1"

    def test_list_products(self, client):
        response = client.get("/products", params={"search": "pâine"})

        assert response.status_code == 200
        assert [p["id"] for p in response.json()] == ["PR2"]
