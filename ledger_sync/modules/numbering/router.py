from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ledger_sync.dependencies.dbDependencies import get_db
from ledger_sync.core.exceptions import NotFound
from ledger_sync.modules.numbering.models import CounterKind
from ledger_sync.modules.numbering.service import NumberAllocator
from ledger_sync.modules.numbering.schemas import NumberRangeConfigure, NumberRangeOut, NumberRangeList

numbering_router = APIRouter(prefix="/number-ranges", tags=["Numbering"])


@numbering_router.get("/", response_model=NumberRangeList)
def list_number_ranges(db: Session = Depends(get_db)):
    """Listar los contadores configurados (facturas y recibos)."""
    return NumberRangeList(ranges=NumberAllocator(db).get_ranges())


@numbering_router.get("/{kind}", response_model=NumberRangeOut)
def get_number_range(kind: CounterKind, db: Session = Depends(get_db)):
    """Consultar el próximo número sin consumirlo."""
    number_range = NumberAllocator(db).peek(kind)
    if number_range is None:
        raise NotFound(f"No hay rango de numeración configurado para '{kind.value}'")
    return NumberRangeOut.model_validate(number_range)


@numbering_router.put("/{kind}", response_model=NumberRangeOut, status_code=status.HTTP_200_OK)
def configure_number_range(kind: CounterKind, data: NumberRangeConfigure, db: Session = Depends(get_db)):
    """
    Configurar el rango [start, end] de un contador.

    No se permite retroceder `current` dentro de la misma serie.
    """
    number_range = NumberAllocator(db).configure(kind, data)
    return NumberRangeOut.model_validate(number_range)
