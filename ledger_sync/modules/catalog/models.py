from ledger_sync.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Numeric, Text
from sqlalchemy.orm import relationship
from ledger_sync.common.mixins import TimestampMixin


# Caché local del catálogo remoto; se refresca completo desde el ERP (solo lectura aquí)


class Partner(Base, TimestampMixin):
    __tablename__ = "partners"

    id = Column(String(64), primary_key=True)  # ID del partner en el ERP
    name = Column(String(200), nullable=False)
    code = Column(String(50), nullable=True)  # Código interno requerido para enviar documentos
    tax_id = Column(String(50), nullable=True)
    trade_register = Column(String(50), nullable=True)
    payment_term_days = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=True)
    is_blocked = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    locations = relationship("Location", back_populates="partner", cascade="all, delete-orphan")


class Location(Base):
    __tablename__ = "locations"

    id = Column(String(64), primary_key=True)
    partner_id = Column(String(64), ForeignKey("partners.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    address = Column(String(255), nullable=True)
    remote_site_id = Column(String(64), nullable=True)  # ID de sede en el ERP

    partner = relationship("Partner", back_populates="locations")


class Product(Base, TimestampMixin):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    unit_of_measure = Column(String(20), nullable=False, default="BUC")
    price = Column(Numeric(15, 2), nullable=True)  # Precio sin impuestos
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)  # Porcentaje, ej: 19.00
    is_active = Column(Boolean, nullable=False, default=True)


class PartnerPrice(Base):
    """Precio de oferta por cliente; tiene prioridad sobre Product.price"""
    __tablename__ = "partner_prices"

    partner_id = Column(String(64), ForeignKey("partners.id", ondelete="CASCADE"), primary_key=True)
    product_id = Column(String(64), ForeignKey("products.id", ondelete="CASCADE"), primary_key=True)
    price = Column(Numeric(15, 2), nullable=False)
