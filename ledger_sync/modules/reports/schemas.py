from pydantic import BaseModel
from decimal import Decimal
from typing import List
from datetime import date
from ledger_sync.modules.cash_collections.models import CollectionStatus
from ledger_sync.modules.invoices.models import InvoiceStatus


class SalesByPartner(BaseModel):
    partner_id: str
    partner_name: str
    invoice_count: int
    total_quantity: Decimal
    subtotal: Decimal
    taxes_total: Decimal
    total_amount: Decimal


class SalesByStatus(BaseModel):
    status: InvoiceStatus
    invoice_count: int
    total_amount: Decimal


class SalesReport(BaseModel):
    period_start: date
    period_end: date
    partners: List[SalesByPartner]
    by_status: List[SalesByStatus]
    total_invoices: int
    total_amount: Decimal


class SalesByProduct(BaseModel):
    product_id: str
    product_name: str
    unit_of_measure: str
    quantity_sold: Decimal
    subtotal: Decimal
    total_amount: Decimal


class SalesByProductReport(BaseModel):
    period_start: date
    period_end: date
    products: List[SalesByProduct]


class CollectionsByPartner(BaseModel):
    partner_id: str
    partner_name: str
    status: CollectionStatus
    collection_count: int
    total_amount: Decimal


class CollectionsReport(BaseModel):
    period_start: date
    period_end: date
    items: List[CollectionsByPartner]
    total_amount: Decimal
