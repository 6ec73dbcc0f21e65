from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List


class LocationSnapshot(BaseModel):
    id: str
    name: str
    address: Optional[str] = None
    remote_site_id: Optional[str] = None


class PartnerSnapshot(BaseModel):
    id: str
    name: str
    code: Optional[str] = None
    tax_id: Optional[str] = None
    trade_register: Optional[str] = None
    payment_term_days: Optional[int] = Field(None, ge=0)
    currency: Optional[str] = Field(None, max_length=3)
    is_blocked: bool = False
    locations: List[LocationSnapshot] = []


class ProductSnapshot(BaseModel):
    id: str
    name: str
    unit_of_measure: str = "BUC"
    price: Optional[Decimal] = Field(None, ge=0)
    tax_rate: Decimal = Field(Decimal("0"), ge=0)


class PartnerPriceSnapshot(BaseModel):
    partner_id: str
    product_id: str
    price: Decimal = Field(..., ge=0)


class CatalogSnapshot(BaseModel):
    """Copia completa del catálogo remoto"""
    partners: List[PartnerSnapshot] = []
    products: List[ProductSnapshot] = []
    prices: List[PartnerPriceSnapshot] = []


class CatalogApplyResult(BaseModel):
    partners: int
    locations: int
    products: int
    prices: int


class LocationOut(BaseModel):
    id: str
    name: str
    address: Optional[str] = None

    class Config:
        from_attributes = True


class PartnerOut(BaseModel):
    id: str
    name: str
    code: Optional[str] = None
    tax_id: Optional[str] = None
    payment_term_days: Optional[int] = None
    currency: Optional[str] = None
    is_blocked: bool
    locations: List[LocationOut] = []

    class Config:
        from_attributes = True


class ProductOut(BaseModel):
    id: str
    name: str
    unit_of_measure: str
    price: Optional[Decimal] = None
    tax_rate: Decimal

    class Config:
        from_attributes = True
