"""
Asignador de números de documento (facturas y recibos).

Cada contador vive en una fila de `number_ranges`. El incremento es un
compare-and-set: se lee `current` y se actualiza con
`WHERE current = <leído>`; si otra sesión se adelantó, el UPDATE no afecta
filas y se reintenta. Nunca hay contador en memoria para la numeración
gestionada, así que un reinicio no reutiliza números.
"""

from sqlalchemy.orm import Session
from sqlalchemy import select, update, func
from typing import List, Optional
from datetime import datetime
import threading
import logging

from ledger_sync.core.config import settings
from ledger_sync.core.exceptions import (
    LedgerError, LedgerValidationError, NumberRangeExhausted, NumberRangeNotConfigured
)
from ledger_sync.common.mixins import utcnow
from ledger_sync.modules.invoices.models import Invoice
from ledger_sync.modules.numbering.models import NumberRange, CounterKind
from ledger_sync.modules.numbering.schemas import (
    AllocatedNumber, NumberRangeConfigure, NumberRangeOut
)

logger = logging.getLogger(__name__)

_unmanaged_lock = threading.Lock()
_last_unmanaged = {}


def _unmanaged_number(kind: CounterKind) -> int:
    """Número derivado de la hora local (YYYYmmddHHMMSS), estrictamente creciente en el proceso."""
    candidate = int(datetime.now().strftime("%Y%m%d%H%M%S"))
    with _unmanaged_lock:
        last = _last_unmanaged.get(kind)
        if last is not None and candidate <= last:
            candidate = last + 1
        _last_unmanaged[kind] = candidate
    return candidate


class NumberAllocator:
    MAX_CAS_ATTEMPTS = 5

    def __init__(self, db: Session, allow_unmanaged: Optional[bool] = None):
        self.db = db
        self.allow_unmanaged = (
            settings.ALLOW_UNMANAGED_NUMBERING if allow_unmanaged is None else allow_unmanaged
        )

    def allocate(self, kind: CounterKind) -> AllocatedNumber:
        """
        Emitir el siguiente número del contador.

        Returns:
            El valor previo al incremento.

        Raises:
            NumberRangeExhausted: current > end.
            NumberRangeNotConfigured: no hay fila y la numeración de respaldo está deshabilitada.
        """
        for _ in range(self.MAX_CAS_ATTEMPTS):
            row = self.db.execute(
                select(NumberRange.current, NumberRange.end, NumberRange.series)
                .where(NumberRange.kind == kind)
            ).first()

            if row is None:
                return self._allocate_unmanaged(kind)

            if row.current > row.end:
                logger.warning(f"Number range exhausted for {kind.value}: current={row.current}, end={row.end}")
                raise NumberRangeExhausted(kind, row.end)

            result = self.db.execute(
                update(NumberRange)
                .where(NumberRange.kind == kind, NumberRange.current == row.current)
                .values(current=row.current + 1, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                logger.info(f"Allocated {kind.value} number {row.current} (next: {row.current + 1})")
                return AllocatedNumber(kind=kind, value=row.current, series=row.series, managed=True)

            logger.debug(f"Concurrent allocation on {kind.value}; retrying")

        raise LedgerError(f"No se pudo asignar un número para '{kind.value}' por contención")

    def _allocate_unmanaged(self, kind: CounterKind) -> AllocatedNumber:
        if not self.allow_unmanaged:
            raise NumberRangeNotConfigured(kind)

        value = _unmanaged_number(kind)
        logger.warning(f"No number range for {kind.value}; using unmanaged number {value}")
        return AllocatedNumber(kind=kind, value=value, series=None, managed=False)

    def peek(self, kind: CounterKind) -> Optional[NumberRange]:
        """Consultar el contador sin consumir un número."""
        return self.db.query(NumberRange).filter(NumberRange.kind == kind).populate_existing().first()

    def get_ranges(self) -> List[NumberRangeOut]:
        ranges = self.db.query(NumberRange).order_by(NumberRange.kind).all()
        return [NumberRangeOut.model_validate(r) for r in ranges]

    def configure(self, kind: CounterKind, data: NumberRangeConfigure) -> NumberRange:
        """
        Crear o reemplazar el rango de un contador.

        Bajar `current` en la misma serie reutilizaría números ya emitidos,
        por eso solo se permite cuando cambia la serie (talonario nuevo). El
        número de factura es único entre todas las series: un talonario de
        facturas nuevo debe empezar después de la última factura emitida.
        """
        current = data.current if data.current is not None else data.start
        if kind == CounterKind.INVOICE:
            issued = self.db.query(func.max(Invoice.number)).scalar()
            if issued is not None and current <= issued:
                raise LedgerValidationError(
                    f"El número actual ({current}) ya fue usado: la última factura emitida es la {issued}"
                )

        number_range = self.peek(kind)

        if number_range is None:
            number_range = NumberRange(
                kind=kind,
                series=data.series,
                start=data.start,
                end=data.end,
                current=current
            )
            self.db.add(number_range)
        else:
            same_series = (number_range.series or "") == (data.series or "")
            if same_series and current < number_range.current:
                raise LedgerValidationError(
                    f"El número actual ({current}) es menor que el ya emitido "
                    f"({number_range.current}) para la serie '{data.series or ''}'"
                )
            number_range.series = data.series
            number_range.start = data.start
            number_range.end = data.end
            number_range.current = current

        self.db.flush()
        logger.info(f"Configured {kind.value} range [{data.start}, {data.end}] current={current} series={data.series}")
        return number_range
