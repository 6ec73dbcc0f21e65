from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from datetime import datetime
from ledger_sync.common.status import ErrorKind
from ledger_sync.modules.invoices.models import InvoiceStatus


# Invoice Line Item Schemas
class InvoiceLineItemCreate(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., description="Cantidad debe ser mayor a 0")

    @field_validator('quantity')
    @classmethod
    def validate_quantity(cls, v):
        if v <= 0:
            raise ValueError('La cantidad debe ser mayor a 0')
        return v


class InvoiceLineItemOut(BaseModel):
    id: str
    product_id: str
    name: str
    unit_of_measure: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    line_subtotal: Decimal
    line_tax: Decimal
    line_total: Decimal

    class Config:
        from_attributes = True


# Invoice Schemas
class InvoiceCreate(BaseModel):
    partner_id: str = Field(..., min_length=1)
    location_id: str = Field(..., min_length=1)
    notes: Optional[str] = None
    items: List[InvoiceLineItemCreate] = Field(..., min_length=1, description="Al menos un item es requerido")

    @field_validator('items')
    @classmethod
    def validate_items(cls, v):
        if not v:
            raise ValueError('La factura debe tener al menos un item')
        return v


class InvoiceTotals(BaseModel):
    subtotal: Decimal
    taxes_total: Decimal
    total_amount: Decimal


class InvoiceOut(BaseModel):
    id: str
    number: int
    series: Optional[str] = None
    number_managed: bool
    partner_id: str
    location_id: str
    status: InvoiceStatus
    currency: str
    notes: Optional[str] = None
    subtotal: Decimal
    taxes_total: Decimal
    total_amount: Decimal
    item_count: int
    created_at: datetime
    sent_at: Optional[datetime] = None
    remote_document_id: Optional[str] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[ErrorKind] = None

    class Config:
        from_attributes = True


class InvoiceDetail(InvoiceOut):
    partner_name: str
    partner_tax_id: Optional[str] = None
    location_name: str
    location_address: Optional[str] = None
    due_date: Optional[datetime] = None
    line_items: List[InvoiceLineItemOut] = []


class InvoiceList(BaseModel):
    invoices: List[InvoiceOut]
    total: int
    limit: int
    offset: int
