from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from datetime import date, datetime
from ledger_sync.common.money import to_decimal


class RemoteBalance(BaseModel):
    """Saldo de una factura tal como lo reporta el ERP"""
    partner_id: str
    partner_name: Optional[str] = None
    tax_id: Optional[str] = None
    document_type: Optional[str] = None
    series: Optional[str] = None
    number: Optional[str] = None
    document_code: Optional[str] = None
    value: Optional[Decimal] = None
    rest: Decimal = Decimal("0")
    currency: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    location_name: Optional[str] = None

    @field_validator('partner_id', mode='before')
    @classmethod
    def strip_partner(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator('value', mode='before')
    @classmethod
    def parse_value(cls, v):
        return to_decimal(v)

    @field_validator('rest', mode='before')
    @classmethod
    def parse_rest(cls, v):
        return to_decimal(v, Decimal("0"))

    @field_validator('issue_date', 'due_date', mode='before')
    @classmethod
    def parse_date(cls, v):
        if isinstance(v, str):
            text = v.strip()
            if not text:
                return None
            # El ERP envía dd.mm.yyyy o ISO
            if "." in text[:6]:
                return datetime.strptime(text[:10], "%d.%m.%Y").date()
            return text[:10]
        if isinstance(v, datetime):
            return v.date()
        return v


class BalanceLineOut(BaseModel):
    """Saldo efectivo: saldo remoto (o factura local aún no enviada) menos cobros locales"""
    source: str = Field(..., description="remote | local")
    partner_id: str
    partner_name: Optional[str] = None
    document_type: Optional[str] = None
    series: Optional[str] = None
    number: Optional[str] = None
    document_code: Optional[str] = None
    value: Optional[Decimal] = None
    rest: Decimal
    collected: Decimal
    remaining: Decimal
    currency: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    is_overdue: bool = False


class BalanceList(BaseModel):
    balances: List[BalanceLineOut]
    total_remaining: Decimal


class SnapshotResult(BaseModel):
    received: int
    stored: int
