"""
Helpers de montos: todo el dinero se maneja como Decimal a dos decimales.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Convierte a Decimal aceptando coma decimal ("12,50") como lo envía el ERP.
    Retorna `default` si el valor está vacío o no es numérico.
    """
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).strip().replace(",", ".")
    if not text:
        return default
    try:
        return Decimal(text)
    except InvalidOperation:
        return default


def quantize(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def clamp_zero(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO
