from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from ledger_sync.modules.numbering.models import CounterKind


class AllocatedNumber(BaseModel):
    """Número emitido por el asignador. managed=False indica numeración de respaldo."""
    kind: CounterKind
    value: int
    series: Optional[str] = None
    managed: bool = True

    @property
    def label(self) -> str:
        return f"{self.series} {self.value}" if self.series else str(self.value)


class NumberRangeConfigure(BaseModel):
    start: int = Field(..., ge=1)
    end: int = Field(..., ge=1)
    current: Optional[int] = Field(None, ge=1, description="Próximo número a emitir; por defecto start")
    series: Optional[str] = Field(None, max_length=20)

    @model_validator(mode='after')
    def validate_bounds(self):
        if self.start > self.end:
            raise ValueError('El inicio del rango no puede ser mayor que el final')
        current = self.current if self.current is not None else self.start
        if not self.start <= current <= self.end + 1:
            raise ValueError('El número actual debe estar entre el inicio y el final + 1')
        return self


class NumberRangeOut(BaseModel):
    kind: CounterKind
    series: Optional[str] = None
    start: int
    end: int
    current: int
    remaining: int
    is_exhausted: bool

    class Config:
        from_attributes = True


class NumberRangeList(BaseModel):
    ranges: List[NumberRangeOut]
