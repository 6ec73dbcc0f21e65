from pydantic import BaseModel, Field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List
from datetime import datetime
from ledger_sync.common.references import InvoiceRef
from ledger_sync.common.status import ErrorKind
from ledger_sync.modules.cash_collections.models import CollectionStatus


# Allocation Schemas
class AllocationCreate(BaseModel):
    """Monto cobrado sobre una factura (serie + número, o código de documento)"""
    series: Optional[str] = Field(None, max_length=20)
    number: Optional[str] = Field(None, max_length=50)
    document_code: Optional[str] = Field(None, max_length=50)
    amount: Decimal = Field(..., description="Monto debe ser mayor a 0")

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, v):
        if v <= 0:
            raise ValueError('El monto debe ser mayor a 0')
        return v

    @property
    def invoice_ref(self) -> InvoiceRef:
        return InvoiceRef(series=self.series, number=self.number, document_code=self.document_code)


class CollectionGroupCreate(BaseModel):
    partner_id: str
    partner_name: Optional[str] = Field(None, max_length=200)
    allocations: List[AllocationCreate] = Field(..., min_length=1, description="Al menos una factura es requerida")

    @model_validator(mode='after')
    def validate_partner(self):
        if not self.partner_id or not self.partner_id.strip():
            raise ValueError('El partner es requerido')
        return self


class CollectionFromInvoice(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Monto cobrado")


# Output Schemas
class CollectionOut(BaseModel):
    id: str
    receipt_group_id: Optional[str] = None
    partner_id: str
    partner_name: Optional[str] = None
    invoice_series: Optional[str] = None
    invoice_number: Optional[str] = None
    document_code: Optional[str] = None
    receipt_series: Optional[str] = None
    receipt_number: int
    amount: Decimal
    currency: str
    status: CollectionStatus
    collected_at: datetime
    synced_at: Optional[datetime] = None
    remote_document_id: Optional[str] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[ErrorKind] = None
    sync_note: Optional[str] = None

    class Config:
        from_attributes = True


class CollectionGroupOut(BaseModel):
    receipt_group_id: str
    partner_id: str
    partner_name: Optional[str] = None
    receipt_series: Optional[str] = None
    receipt_number: int
    number_managed: bool
    status: CollectionStatus
    total: Decimal
    currency: str
    collected_at: datetime
    synced_at: Optional[datetime] = None
    remote_document_id: Optional[str] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[ErrorKind] = None
    sync_note: Optional[str] = None
    collections: List[CollectionOut] = []


class CollectionGroupList(BaseModel):
    groups: List[CollectionGroupOut]
    total: int
