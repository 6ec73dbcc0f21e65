from ledger_sync.database.database import Base
from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Text
from sqlalchemy.orm import relationship
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4
from ledger_sync.common.mixins import TimestampMixin
from ledger_sync.common.references import InvoiceRef
from ledger_sync.common.status import ErrorKind
from ledger_sync.core.config import settings
import enum


class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"    # Creada localmente, aún no aceptada por el ERP
    SENDING = "sending"    # Envío en curso
    SENT = "sent"          # Confirmada por el ERP con número de documento (terminal)


INVOICE_TRANSITIONS = {
    InvoiceStatus.PENDING: frozenset({InvoiceStatus.SENDING}),
    InvoiceStatus.SENDING: frozenset({InvoiceStatus.SENT, InvoiceStatus.PENDING}),
    InvoiceStatus.SENT: frozenset(),
}


def _new_id() -> str:
    return str(uuid4())


class Invoice(Base, TimestampMixin):
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=_new_id)

    # References
    partner_id = Column(String(64), ForeignKey("partners.id"), nullable=False, index=True)
    location_id = Column(String(64), ForeignKey("locations.id"), nullable=False)

    # Invoice data
    number = Column(BigInteger, nullable=False, unique=True)  # Asignado una sola vez al crear
    number_managed = Column(Boolean, nullable=False, default=True)  # False = numeración de respaldo
    series = Column(String(20), nullable=True)
    status = Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.PENDING, index=True)

    # Content
    notes = Column(Text, nullable=True)
    currency = Column(String(3), nullable=False, default="RON")

    # Totals (calculated)
    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    taxes_total = Column(Numeric(15, 2), nullable=False, default=0)
    total_amount = Column(Numeric(15, 2), nullable=False, default=0)  # Bruto (con impuestos)

    # Remote state
    sent_at = Column(DateTime(timezone=True), nullable=True)
    remote_document_id = Column(String(100), nullable=True)
    last_error = Column(Text, nullable=True)
    last_error_kind = Column(Enum(ErrorKind), nullable=True)

    # Relationships
    partner = relationship("Partner")
    location = relationship("Location")
    line_items = relationship("InvoiceLineItem", back_populates="invoice", cascade="all, delete-orphan",
                              order_by="InvoiceLineItem.position")

    @property
    def reference(self) -> InvoiceRef:
        """Cómo se referencia esta factura en saldos y cobros"""
        return InvoiceRef(series=self.series, number=str(self.number))

    @property
    def item_count(self) -> int:
        return len(self.line_items)

    @property
    def due_date(self) -> Optional[datetime]:
        if self.created_at is None:
            return None
        days = None
        if self.partner is not None and self.partner.payment_term_days is not None:
            days = self.partner.payment_term_days
        return self.created_at + timedelta(days=days if days is not None else settings.DEFAULT_PAYMENT_TERM_DAYS)


class InvoiceLineItem(Base):
    __tablename__ = "invoice_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(64), ForeignKey("products.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    # Snapshot data (para preservar información si el producto cambia)
    name = Column(String(200), nullable=False)
    unit_of_measure = Column(String(20), nullable=False)

    # Line calculations
    quantity = Column(Numeric(10, 3), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)  # Precio sin impuestos
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)  # Tasa propia de la línea
    line_subtotal = Column(Numeric(15, 2), nullable=False)  # quantity * unit_price
    line_tax = Column(Numeric(15, 2), nullable=False)
    line_total = Column(Numeric(15, 2), nullable=False)  # line_subtotal + line_tax

    # Relationships
    invoice = relationship("Invoice", back_populates="line_items")
