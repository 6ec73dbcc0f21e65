from ledger_sync.database.database import Base
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Text
from uuid import uuid4
from ledger_sync.common.mixins import TimestampMixin, utcnow
from ledger_sync.common.references import InvoiceRef
from ledger_sync.common.status import ErrorKind
import enum


class CollectionStatus(str, enum.Enum):
    PENDING = "pending"    # Registrado localmente
    SENDING = "sending"    # Recibo en envío al ERP
    SYNCED = "synced"      # Confirmado por el ERP (o detectado como ya saldado)
    FAILED = "failed"      # Rechazado al revalidar; se reintenta en la próxima sincronización


COLLECTION_TRANSITIONS = {
    CollectionStatus.PENDING: frozenset({CollectionStatus.SENDING, CollectionStatus.SYNCED}),
    CollectionStatus.FAILED: frozenset({CollectionStatus.SENDING, CollectionStatus.SYNCED}),
    CollectionStatus.SENDING: frozenset({
        CollectionStatus.SYNCED, CollectionStatus.PENDING, CollectionStatus.FAILED
    }),
    CollectionStatus.SYNCED: frozenset(),
}

# Estados que consumen saldo de la factura
BALANCE_CONSUMING_STATUSES = (CollectionStatus.PENDING, CollectionStatus.SENDING, CollectionStatus.SYNCED)

# Estados que bloquean un nuevo cobro sobre la misma factura
IN_PROGRESS_STATUSES = (CollectionStatus.PENDING, CollectionStatus.SENDING)


def _new_id() -> str:
    return str(uuid4())


class Collection(Base, TimestampMixin):
    """Imputación de un cobro a una factura. Las filas con el mismo receipt_group_id forman un recibo."""
    __tablename__ = "collections"

    id = Column(String(36), primary_key=True, default=_new_id)
    receipt_group_id = Column(String(36), nullable=True, index=True)

    # Partner
    partner_id = Column(String(64), ForeignKey("partners.id"), nullable=False, index=True)
    partner_name = Column(String(200), nullable=True)  # Snapshot al registrar

    # Invoice reference (serie + número, o código de documento externo)
    invoice_series = Column(String(20), nullable=True)
    invoice_number = Column(String(50), nullable=True)
    document_code = Column(String(50), nullable=True)
    ref_key = Column(String(255), nullable=False, index=True)  # partner|serie|número|código
    match_key = Column(String(255), nullable=False, index=True)  # partner|serie|número, para conciliar

    # Receipt
    receipt_series = Column(String(20), nullable=True)
    receipt_number = Column(BigInteger, nullable=False)
    number_managed = Column(Boolean, nullable=False, default=True)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="RON")
    collected_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Remote state
    status = Column(Enum(CollectionStatus), nullable=False, default=CollectionStatus.PENDING, index=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)
    remote_document_id = Column(String(100), nullable=True)
    last_error = Column(Text, nullable=True)
    last_error_kind = Column(Enum(ErrorKind), nullable=True)
    sync_note = Column(Text, nullable=True)  # Ej: marcado como ya cobrado en el ERP

    @property
    def invoice_ref(self) -> InvoiceRef:
        return InvoiceRef(series=self.invoice_series, number=self.invoice_number, document_code=self.document_code)
