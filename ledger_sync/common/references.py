"""
Referencia a una factura tal como la conoce el ERP: serie + número, o un
código de documento externo. La clave normalizada
`partner|serie|número|código` identifica la referencia tal como se registró.

Para conciliar saldos remotos con cobros y facturas locales se usa la clave de
conciliación `partner|serie|número`: el código de documento que asigna el ERP
no participa cuando hay número, y solo identifica la factura cuando falta.
"""
from pydantic import BaseModel, ConfigDict
from typing import Optional


def _norm(value: Optional[str]) -> str:
    return value.strip() if value else ""


def build_invoice_key(partner_id: str, series: Optional[str], number: Optional[str],
                      document_code: Optional[str]) -> str:
    return f"{_norm(partner_id)}|{_norm(series)}|{_norm(number)}|{_norm(document_code)}"


def build_match_key(partner_id: str, series: Optional[str], number: Optional[str],
                    document_code: Optional[str]) -> str:
    if _norm(number):
        return f"{_norm(partner_id)}|{_norm(series)}|{_norm(number)}"
    return build_invoice_key(partner_id, series, number, document_code)


class InvoiceRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    series: Optional[str] = None
    number: Optional[str] = None
    document_code: Optional[str] = None

    def key(self, partner_id: str) -> str:
        return build_invoice_key(partner_id, self.series, self.number, self.document_code)

    def match_key(self, partner_id: str) -> str:
        return build_match_key(partner_id, self.series, self.number, self.document_code)

    @property
    def is_empty(self) -> bool:
        return not (_norm(self.series) or _norm(self.number) or _norm(self.document_code))

    @property
    def label(self) -> str:
        parts = [p for p in (_norm(self.series), _norm(self.number)) if p]
        return " ".join(parts) if parts else _norm(self.document_code)
