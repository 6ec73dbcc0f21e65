"""
Registro de cobros agrupados en recibos.

Un recibo (receipt group) es el conjunto de filas `collections` que comparten
`receipt_group_id`: un número de recibo, un partner, una imputación por
factura. El conjunto es inmutable una vez creado; solo cambia el estado de
sus miembros, siempre con UPDATE condicionados al estado actual.
"""

from sqlalchemy.orm import Session
from sqlalchemy import update, func
from decimal import Decimal
from datetime import timedelta
from typing import Iterable, List, Optional
from uuid import uuid4
import logging

from ledger_sync.core.config import settings
from ledger_sync.core.exceptions import (
    LedgerValidationError, NotFound, IllegalTransition, InsufficientBalance, CollectionInProgress
)
from ledger_sync.common.mixins import utcnow
from ledger_sync.common.money import ZERO, quantize
from ledger_sync.common.status import ErrorKind, transition_allowed
from ledger_sync.modules.balances.service import BalanceReconciler
from ledger_sync.modules.catalog.models import Partner
from ledger_sync.modules.cash_collections.models import (
    Collection, CollectionStatus, COLLECTION_TRANSITIONS, IN_PROGRESS_STATUSES
)
from ledger_sync.modules.cash_collections.schemas import (
    AllocationCreate, CollectionGroupCreate, CollectionGroupOut, CollectionOut
)
from ledger_sync.modules.invoices.models import Invoice
from ledger_sync.modules.numbering.models import CounterKind
from ledger_sync.modules.numbering.service import NumberAllocator
from ledger_sync.modules.sync.schemas import Submission, SubmissionAllocation, DocumentType

logger = logging.getLogger(__name__)

OPERATOR_CANCEL_MESSAGE = "Envío cancelado por el operador"
STALE_SENDING_MESSAGE = "Envío interrumpido; se reintenta con verificación de duplicados"


def aggregate_status(statuses: Iterable[CollectionStatus]) -> CollectionStatus:
    """Estado del recibo: sending > failed > pending > synced"""
    statuses = set(statuses)
    for candidate in (CollectionStatus.SENDING, CollectionStatus.FAILED, CollectionStatus.PENDING):
        if candidate in statuses:
            return candidate
    return CollectionStatus.SYNCED


class CollectionLedger:
    def __init__(self, db: Session, allocator: Optional[NumberAllocator] = None,
                 reconciler: Optional[BalanceReconciler] = None):
        self.db = db
        self.allocator = allocator or NumberAllocator(db)
        self.reconciler = reconciler or BalanceReconciler(db)

    def record_group(self, data: CollectionGroupCreate) -> str:
        """
        Registrar un recibo con una o varias facturas.

        Todo o nada: si una sola imputación es inválida no se escribe nada
        (el número de recibo tampoco se consume).

        Returns:
            receipt_group_id

        Raises:
            InsufficientBalance: el monto supera el saldo disponible de una factura.
            CollectionInProgress: la factura ya tiene un cobro pendiente o en envío.
            LedgerValidationError: datos mal formados.
        """
        partner_id = (data.partner_id or "").strip()
        if not partner_id:
            raise LedgerValidationError("Partner inválido para el cobro")
        if not data.allocations:
            raise LedgerValidationError("Seleccione al menos una factura")

        seen = set()
        for allocation in data.allocations:
            if allocation.amount is None or allocation.amount <= 0:
                raise LedgerValidationError("El monto de cada factura debe ser mayor a 0")
            ref = allocation.invoice_ref
            if ref.is_empty:
                raise LedgerValidationError("Cada imputación debe indicar la factura")
            key = ref.match_key(partner_id)
            if key in seen:
                raise LedgerValidationError(f"La factura {ref.label} aparece más de una vez en el recibo")
            seen.add(key)

        epsilon = settings.COLLECTION_EPSILON
        for allocation in data.allocations:
            ref = allocation.invoice_ref
            remaining = self.reconciler.remaining_for(partner_id, ref)
            if allocation.amount - remaining > epsilon:
                raise InsufficientBalance(ref.label, remaining, allocation.amount)

        in_progress = self.db.query(Collection.match_key).filter(
            Collection.match_key.in_(seen),
            Collection.status.in_(IN_PROGRESS_STATUSES)
        ).first()
        if in_progress is not None:
            label = next(a.invoice_ref.label for a in data.allocations
                         if a.invoice_ref.match_key(partner_id) == in_progress.match_key)
            raise CollectionInProgress(label)

        partner = self.db.get(Partner, partner_id)
        partner_name = data.partner_name or (partner.name if partner else None)
        currency = ((partner.currency if partner else None) or "").strip() or settings.DEFAULT_CURRENCY

        allocated = self.allocator.allocate(CounterKind.RECEIPT)
        receipt_series = allocated.series or settings.DEFAULT_RECEIPT_SERIES
        group_id = str(uuid4())
        collected_at = utcnow()

        for allocation in data.allocations:
            ref = allocation.invoice_ref
            self.db.add(Collection(
                receipt_group_id=group_id,
                partner_id=partner_id,
                partner_name=partner_name,
                invoice_series=ref.series,
                invoice_number=ref.number,
                document_code=ref.document_code,
                ref_key=ref.key(partner_id),
                match_key=ref.match_key(partner_id),
                receipt_series=receipt_series,
                receipt_number=allocated.value,
                number_managed=allocated.managed,
                amount=quantize(allocation.amount),
                currency=currency,
                collected_at=collected_at,
                status=CollectionStatus.PENDING
            ))
        self.db.flush()

        total = sum((quantize(a.amount) for a in data.allocations), ZERO)
        logger.info(
            f"Receipt {receipt_series} {allocated.value} recorded for partner {partner_id} "
            f"(group={group_id}, invoices={len(data.allocations)}, total={total})"
        )
        return group_id

    def record_from_invoice(self, invoice_id: str, amount: Decimal) -> str:
        """Cobro sobre una sola factura local"""
        invoice = self.db.get(Invoice, invoice_id)
        if not invoice:
            raise NotFound("Factura no encontrada")

        ref = invoice.reference
        return self.record_group(CollectionGroupCreate(
            partner_id=invoice.partner_id,
            partner_name=invoice.partner.name if invoice.partner else None,
            allocations=[AllocationCreate(
                series=ref.series,
                number=ref.number,
                document_code=ref.document_code,
                amount=amount
            )]
        ))

    def _rows(self, group_id: str) -> List[Collection]:
        return self.db.query(Collection).filter(
            Collection.receipt_group_id == group_id
        ).order_by(Collection.created_at, Collection.id).populate_existing().all()

    def _to_group(self, rows: List[Collection]) -> CollectionGroupOut:
        first = rows[0]
        failed = next((r for r in rows if r.last_error), None)
        return CollectionGroupOut(
            receipt_group_id=first.receipt_group_id or first.id,
            partner_id=first.partner_id,
            partner_name=first.partner_name,
            receipt_series=first.receipt_series,
            receipt_number=first.receipt_number,
            number_managed=first.number_managed,
            status=aggregate_status(r.status for r in rows),
            total=sum((Decimal(r.amount) for r in rows), ZERO),
            currency=first.currency,
            collected_at=first.collected_at,
            synced_at=max((r.synced_at for r in rows if r.synced_at), default=None),
            remote_document_id=next((r.remote_document_id for r in rows if r.remote_document_id), None),
            last_error=failed.last_error if failed else None,
            last_error_kind=failed.last_error_kind if failed else None,
            sync_note=next((r.sync_note for r in rows if r.sync_note), None),
            collections=[CollectionOut.model_validate(r) for r in rows]
        )

    def get_group(self, group_id: str) -> CollectionGroupOut:
        rows = self._rows(group_id)
        if not rows:
            raise NotFound("Recibo no encontrado")
        return self._to_group(rows)

    def list_groups(self, status: Optional[CollectionStatus] = None,
                    partner_id: Optional[str] = None) -> List[CollectionGroupOut]:
        query = self.db.query(Collection)
        if partner_id:
            query = query.filter(Collection.partner_id == partner_id)

        groups = {}
        for row in query.order_by(Collection.collected_at.desc(), Collection.id).all():
            groups.setdefault(row.receipt_group_id or row.id, []).append(row)

        result = [self._to_group(rows) for rows in groups.values()]
        if status:
            result = [g for g in result if g.status == status]
        return result

    def sendable_group_ids(self) -> List[str]:
        """Recibos con miembros pending o failed y ninguno en envío"""
        rows = self.db.query(Collection.receipt_group_id, Collection.status).filter(
            Collection.receipt_group_id.isnot(None)
        ).order_by(Collection.receipt_number).all()

        statuses = {}
        for group_id, status in rows:
            statuses.setdefault(group_id, set()).add(status)
        return [
            group_id for group_id, values in statuses.items()
            if aggregate_status(values) in (CollectionStatus.PENDING, CollectionStatus.FAILED)
        ]

    def _transition_group(self, group_id: str, sources, target: CollectionStatus, **values) -> List[Collection]:
        """Mover todos los miembros del recibo desde `sources` a `target` en un solo UPDATE"""
        for source in sources:
            if not transition_allowed(COLLECTION_TRANSITIONS, source, target):
                raise IllegalTransition("Recibo", group_id, source, target)

        total = self.db.query(func.count(Collection.id)).filter(
            Collection.receipt_group_id == group_id
        ).scalar()
        if not total:
            raise NotFound("Recibo no encontrado")

        result = self.db.execute(
            update(Collection)
            .where(Collection.receipt_group_id == group_id, Collection.status.in_(tuple(sources)))
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != total:
            rows = self._rows(group_id)
            current = aggregate_status(r.status for r in rows)
            raise IllegalTransition("Recibo", group_id, current, target)

        return self.db.query(Collection).filter(
            Collection.receipt_group_id == group_id
        ).populate_existing().all()

    def claim_group(self, group_id: str) -> List[Collection]:
        """pending/failed -> sending; falla si otro proceso ya lo tomó"""
        rows = self._transition_group(
            group_id, (CollectionStatus.PENDING, CollectionStatus.FAILED), CollectionStatus.SENDING
        )
        logger.info(f"Receipt group {group_id} claimed for sending")
        return rows

    def settle_group(self, group_id: str, remote_document_id: Optional[str] = None) -> List[Collection]:
        rows = self._transition_group(
            group_id, (CollectionStatus.SENDING,), CollectionStatus.SYNCED,
            synced_at=utcnow(),
            remote_document_id=remote_document_id,
            last_error=None,
            last_error_kind=None
        )
        logger.info(f"Receipt group {group_id} synced (remote document {remote_document_id})")
        return rows

    def mark_group_synced(self, group_id: str, note: str) -> List[Collection]:
        """Marcar como sincronizado un recibo que el ERP ya refleja como cobrado"""
        rows = self._transition_group(
            group_id,
            (CollectionStatus.PENDING, CollectionStatus.FAILED, CollectionStatus.SENDING),
            CollectionStatus.SYNCED,
            synced_at=utcnow(),
            last_error=None,
            last_error_kind=None,
            sync_note=note
        )
        logger.warning(f"Receipt group {group_id} marked as synced without sending: {note}")
        return rows

    def release_group(self, group_id: str, reason: str, kind: ErrorKind = ErrorKind.TRANSIENT) -> List[Collection]:
        """sending -> pending con el error; se reintenta en la próxima sincronización"""
        rows = self._transition_group(
            group_id, (CollectionStatus.SENDING,), CollectionStatus.PENDING,
            last_error=reason,
            last_error_kind=kind
        )
        logger.warning(f"Receipt group {group_id} send failed ({kind.value}): {reason}")
        return rows

    def mark_group_failed(self, group_id: str, reason: str,
                          kind: ErrorKind = ErrorKind.VALIDATION) -> List[Collection]:
        rows = self._transition_group(
            group_id, (CollectionStatus.SENDING,), CollectionStatus.FAILED,
            last_error=reason,
            last_error_kind=kind
        )
        logger.warning(f"Receipt group {group_id} failed validation: {reason}")
        return rows

    def cancel_send(self, group_id: str) -> List[Collection]:
        """sending -> pending por decisión del operador (recibo atascado en envío)"""
        rows = self._transition_group(
            group_id, (CollectionStatus.SENDING,), CollectionStatus.PENDING,
            last_error=OPERATOR_CANCEL_MESSAGE,
            last_error_kind=ErrorKind.OPERATOR
        )
        logger.info(f"Receipt group {group_id} sending cancelled by operator")
        return rows

    def release_stale_groups(self, older_than: timedelta) -> List[str]:
        """
        Devolver a pending los recibos que quedaron en envío (proceso caído
        entre el envío y el registro del resultado). El siguiente envío pasa
        por la verificación de duplicados.
        """
        cutoff = utcnow() - older_than
        group_ids = [
            group_id for (group_id,) in self.db.query(Collection.receipt_group_id).filter(
                Collection.receipt_group_id.isnot(None),
                Collection.status == CollectionStatus.SENDING,
                Collection.updated_at < cutoff
            ).distinct().all()
        ]

        released = []
        for group_id in group_ids:
            try:
                self.release_group(group_id, STALE_SENDING_MESSAGE, ErrorKind.TRANSIENT)
            except IllegalTransition as e:
                logger.warning(f"Stale receipt group {group_id} not released: {e.message}")
                continue
            released.append(group_id)
        return released

    def delete_group(self, group_id: str) -> None:
        """Eliminar un recibo que nunca llegó al ERP"""
        rows = self._rows(group_id)
        if not rows:
            raise NotFound("Recibo no encontrado")

        blocked = [r for r in rows if r.status in (CollectionStatus.SYNCED, CollectionStatus.SENDING)]
        if blocked:
            raise LedgerValidationError("No se puede eliminar un recibo sincronizado o en envío")

        for row in rows:
            self.db.delete(row)
        self.db.flush()
        logger.info(f"Receipt group {group_id} deleted ({len(rows)} collections)")

    def build_submission(self, group_id: str) -> Submission:
        """
        Recibo a enviar al ERP.

        Raises:
            LedgerValidationError: el partner no existe localmente o no tiene código en el ERP.
        """
        rows = self._rows(group_id)
        if not rows:
            raise NotFound("Recibo no encontrado")
        first = rows[0]

        partner = self.db.get(Partner, first.partner_id)
        partner_code = ((partner.code if partner else None) or "").strip()
        if not partner_code:
            name = partner.name if partner else first.partner_id
            raise LedgerValidationError(f"El partner {name} no tiene código configurado en el ERP")

        return Submission(
            document_type=DocumentType.RECEIPT,
            local_id=group_id,
            partner_id=first.partner_id,
            partner_code=partner_code,
            series=first.receipt_series,
            number=first.receipt_number,
            currency=first.currency,
            issued_at=first.collected_at,
            total=sum((Decimal(r.amount) for r in rows), ZERO),
            allocations=[
                SubmissionAllocation(
                    series=r.invoice_series,
                    number=r.invoice_number,
                    document_code=r.document_code,
                    amount=r.amount
                )
                for r in rows
            ]
        )
