from ledger_sync.database.database import Base
from sqlalchemy import Column, Integer, String, Date, DateTime, Numeric
from ledger_sync.common.mixins import utcnow


class RemoteBalanceLine(Base):
    """
    Copia de solo lectura de los saldos pendientes reportados por el ERP.
    Se reemplaza completa en cada sincronización.
    """
    __tablename__ = "remote_balances"

    id = Column(Integer, primary_key=True, autoincrement=True)

    partner_id = Column(String(64), nullable=False, index=True)
    partner_name = Column(String(200), nullable=True)
    tax_id = Column(String(50), nullable=True)

    # Invoice reference
    document_type = Column(String(50), nullable=True)
    series = Column(String(20), nullable=True)
    number = Column(String(50), nullable=True)
    document_code = Column(String(50), nullable=True)
    ref_key = Column(String(255), nullable=False, index=True)
    match_key = Column(String(255), nullable=False, index=True)  # partner|serie|número

    value = Column(Numeric(15, 2), nullable=True)  # Valor original del documento
    rest = Column(Numeric(15, 2), nullable=False)  # Saldo pendiente según el ERP
    currency = Column(String(3), nullable=True)
    issue_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    location_name = Column(String(200), nullable=True)

    pulled_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
