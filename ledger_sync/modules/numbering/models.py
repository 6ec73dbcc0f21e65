from ledger_sync.database.database import Base
from sqlalchemy import Column, Integer, String, DateTime, Enum, CheckConstraint
from ledger_sync.common.mixins import utcnow
import enum


class CounterKind(str, enum.Enum):
    INVOICE = "invoice"    # Facturas
    RECEIPT = "receipt"    # Chitanțe / recibos de cobro


class NumberRange(Base):
    """Rango de numeración por tipo de documento: start <= current <= end + 1"""
    __tablename__ = "number_ranges"

    kind = Column(Enum(CounterKind), primary_key=True)
    series = Column(String(20), nullable=True)  # Ej: "FACTURA", "CH"
    start = Column(Integer, nullable=False)
    end = Column(Integer, nullable=False)
    current = Column(Integer, nullable=False)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint('"start" <= "current"', name="ck_number_ranges_current_ge_start"),
        CheckConstraint('"current" <= "end" + 1', name="ck_number_ranges_current_le_end"),
    )

    @property
    def is_exhausted(self) -> bool:
        return self.current > self.end

    @property
    def remaining(self) -> int:
        return max(0, self.end - self.current + 1)
