from sqlalchemy.orm import Session, selectinload
from decimal import Decimal
from typing import List, Optional
import logging

from ledger_sync.core.exceptions import NotFound
from ledger_sync.modules.catalog.models import Partner, Location, Product, PartnerPrice
from ledger_sync.modules.catalog.schemas import CatalogSnapshot, CatalogApplyResult

logger = logging.getLogger(__name__)


class CatalogService:
    def __init__(self, db: Session):
        self.db = db

    def apply_snapshot(self, snapshot: CatalogSnapshot) -> CatalogApplyResult:
        """
        Refrescar la caché local con la copia remota.

        Partners y productos se actualizan in situ (las facturas los referencian);
        las sedes de cada partner recibido y los precios de oferta se reemplazan.
        """
        location_count = 0
        for p in snapshot.partners:
            partner = self.db.get(Partner, p.id)
            if partner is None:
                partner = Partner(id=p.id)
                self.db.add(partner)
            partner.name = p.name
            partner.code = p.code.strip() if p.code else None
            partner.tax_id = p.tax_id
            partner.trade_register = p.trade_register
            partner.payment_term_days = p.payment_term_days
            partner.currency = p.currency
            partner.is_blocked = p.is_blocked

            self.db.query(Location).filter(Location.partner_id == p.id).delete()
            for loc in p.locations:
                self.db.add(Location(
                    id=loc.id,
                    partner_id=p.id,
                    name=loc.name,
                    address=loc.address,
                    remote_site_id=loc.remote_site_id
                ))
                location_count += 1

        for item in snapshot.products:
            product = self.db.get(Product, item.id)
            if product is None:
                product = Product(id=item.id)
                self.db.add(product)
            product.name = item.name
            product.unit_of_measure = item.unit_of_measure
            product.price = item.price
            product.tax_rate = item.tax_rate
            product.is_active = True

        self.db.flush()

        self.db.query(PartnerPrice).delete()
        for price in snapshot.prices:
            self.db.add(PartnerPrice(
                partner_id=price.partner_id,
                product_id=price.product_id,
                price=price.price
            ))

        self.db.flush()
        self.db.expire_all()

        result = CatalogApplyResult(
            partners=len(snapshot.partners),
            locations=location_count,
            products=len(snapshot.products),
            prices=len(snapshot.prices)
        )
        logger.info(f"Catalog snapshot applied: {result.model_dump()}")
        return result

    def get_partner(self, partner_id: str) -> Partner:
        partner = self.db.get(Partner, partner_id)
        if not partner:
            raise NotFound(f"Partner {partner_id} no encontrado")
        return partner

    def list_partners(self, search: Optional[str] = None) -> List[Partner]:
        query = self.db.query(Partner).options(selectinload(Partner.locations))
        if search:
            query = query.filter(Partner.name.ilike(f"%{search.strip()}%"))
        return query.order_by(Partner.name).all()

    def list_products(self, search: Optional[str] = None) -> List[Product]:
        query = self.db.query(Product).filter(Product.is_active.is_(True))
        if search:
            query = query.filter(Product.name.ilike(f"%{search.strip()}%"))
        return query.order_by(Product.name).all()

    def resolve_price(self, partner_id: str, product: Product) -> Optional[Decimal]:
        """Precio de oferta del cliente si existe; si no, el precio de lista."""
        offer = self.db.get(PartnerPrice, (partner_id, product.id))
        if offer is not None:
            logger.debug(f"Using offer price {offer.price} for product {product.id} (partner {partner_id})")
            return Decimal(offer.price)
        return Decimal(product.price) if product.price is not None else None
