from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from datetime import datetime
from enum import Enum


class DocumentType(str, Enum):
    INVOICE = "invoice"
    RECEIPT = "receipt"


# Submission Schemas (documento que se envía al ERP)
class SubmissionLine(BaseModel):
    product_id: str
    name: str
    unit_of_measure: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    line_total: Decimal


class SubmissionAllocation(BaseModel):
    """Imputación de un recibo a una factura"""
    series: Optional[str] = None
    number: Optional[str] = None
    document_code: Optional[str] = None
    amount: Decimal


class Submission(BaseModel):
    document_type: DocumentType
    local_id: str = Field(..., description="ID local (factura o grupo de recibo)")
    partner_id: str
    partner_code: Optional[str] = None
    location_id: Optional[str] = None
    remote_site_id: Optional[str] = None
    series: Optional[str] = None
    number: int
    currency: str
    issued_at: datetime
    due_at: Optional[datetime] = None
    notes: Optional[str] = None
    total: Decimal
    lines: List[SubmissionLine] = []
    allocations: List[SubmissionAllocation] = []


class GatewayResponse(BaseModel):
    """Respuesta del ERP: número de documento o errores estructurados"""
    remote_document_id: Optional[str] = None
    errors: List[str] = []

    @property
    def accepted(self) -> bool:
        return not self.errors and bool(self.remote_document_id)

    @property
    def error_message(self) -> str:
        if self.errors:
            return "; ".join(self.errors)
        return "El ERP no devolvió número de documento"


# Sync run Schemas
class RecordOutcome(BaseModel):
    entity: str
    entity_id: str
    success: bool
    message: Optional[str] = None
    remote_document_id: Optional[str] = None


class SyncReport(BaseModel):
    skipped: bool = False
    started_at: datetime
    finished_at: Optional[datetime] = None
    catalog_error: Optional[str] = None
    balances_error: Optional[str] = None
    invoices_sent: int = 0
    invoices_failed: int = 0
    groups_sent: int = 0
    groups_failed: int = 0
    groups_already_settled: int = 0
    groups_recovered: int = 0  # Recibos atascados en envío devueltos a pending
    outcomes: List[RecordOutcome] = []


class SyncStatus(BaseModel):
    is_first_run: bool
    is_syncing: bool
    partners_synced_at: Optional[datetime] = None
    products_synced_at: Optional[datetime] = None
    balances_synced_at: Optional[datetime] = None
    pending_invoices: int
    pending_collection_groups: int
