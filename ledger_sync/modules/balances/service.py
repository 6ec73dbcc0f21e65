"""
Conciliación de saldos.

El saldo efectivo de una factura es el saldo remoto (o, si el ERP aún no la
conoce, el total bruto de la factura local no enviada) menos los cobros
locales pendientes, en envío o sincronizados que la referencian. Nunca es
negativo.

Un cobro sincronizado antes de la última descarga de saldos ya está incluido
en el saldo remoto y no se vuelve a descontar. Los saldos remotos se unen con
facturas y cobros por la clave de conciliación `partner|serie|número`.
"""

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func, or_
from decimal import Decimal
from datetime import date, datetime, timezone
from typing import Dict, List, Optional
import logging

from ledger_sync.common.money import ZERO, quantize, clamp_zero
from ledger_sync.common.references import InvoiceRef, build_invoice_key, build_match_key
from ledger_sync.common.mixins import utcnow
from ledger_sync.modules.balances.models import RemoteBalanceLine
from ledger_sync.modules.balances.schemas import RemoteBalance, BalanceLineOut, BalanceList, SnapshotResult
from ledger_sync.modules.cash_collections.models import Collection, CollectionStatus, BALANCE_CONSUMING_STATUSES
from ledger_sync.modules.invoices.models import Invoice, InvoiceStatus

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None) if value.tzinfo else value


def reflected_remotely(status: CollectionStatus, synced_at: Optional[datetime],
                       pulled_at: Optional[datetime]) -> bool:
    """True si el cobro se sincronizó antes de la descarga del saldo remoto"""
    if status != CollectionStatus.SYNCED or synced_at is None or pulled_at is None:
        return False
    return _as_utc(synced_at) <= _as_utc(pulled_at)


class BalanceReconciler:
    def __init__(self, db: Session):
        self.db = db

    def replace_snapshot(self, lines: List[RemoteBalance]) -> SnapshotResult:
        """Reemplazar la copia local de saldos; se descartan las líneas sin saldo"""
        pulled_at = utcnow()
        self.db.query(RemoteBalanceLine).delete()

        stored = 0
        for line in lines:
            if line.rest <= ZERO:
                continue
            self.db.add(RemoteBalanceLine(
                partner_id=line.partner_id,
                partner_name=line.partner_name,
                tax_id=line.tax_id,
                document_type=line.document_type,
                series=line.series,
                number=line.number,
                document_code=line.document_code,
                ref_key=build_invoice_key(line.partner_id, line.series, line.number, line.document_code),
                match_key=build_match_key(line.partner_id, line.series, line.number, line.document_code),
                value=line.value,
                rest=quantize(line.rest),
                currency=line.currency,
                issue_date=line.issue_date,
                due_date=line.due_date,
                location_name=line.location_name,
                pulled_at=pulled_at
            ))
            stored += 1

        self.db.flush()
        logger.info(f"Remote balance snapshot replaced: received={len(lines)}, stored={stored}")
        return SnapshotResult(received=len(lines), stored=stored)

    def _collected(self, match_key: str, pulled_at: Optional[datetime] = None,
                   exclude_group_id: Optional[str] = None) -> Decimal:
        """Cobros locales que todavía consumen saldo de la factura"""
        query = self.db.query(Collection.amount, Collection.status, Collection.synced_at).filter(
            Collection.match_key == match_key,
            Collection.status.in_(BALANCE_CONSUMING_STATUSES)
        )
        if exclude_group_id:
            query = query.filter(or_(
                Collection.receipt_group_id.is_(None),
                Collection.receipt_group_id != exclude_group_id
            ))
        return sum(
            (Decimal(amount) for amount, status, synced_at in query.all()
             if not reflected_remotely(status, synced_at, pulled_at)),
            ZERO
        )

    def _local_invoice(self, partner_id: str, invoice_ref: InvoiceRef) -> Optional[Invoice]:
        """Factura local aún no enviada que corresponde a la referencia"""
        number = (invoice_ref.number or "").strip()
        if not number.isdigit():
            return None

        key = invoice_ref.match_key(partner_id)
        candidates = self.db.query(Invoice).filter(
            Invoice.partner_id == partner_id,
            Invoice.number == int(number),
            Invoice.status != InvoiceStatus.SENT
        ).all()
        for invoice in candidates:
            if invoice.reference.match_key(partner_id) == key:
                return invoice
        return None

    def is_local_unsent(self, partner_id: str, series: Optional[str], number: Optional[str],
                        document_code: Optional[str]) -> bool:
        ref = InvoiceRef(series=series, number=number, document_code=document_code)
        return self._local_invoice(partner_id, ref) is not None

    def remaining_for(self, partner_id: str, invoice_ref: InvoiceRef,
                      exclude_group_id: Optional[str] = None) -> Decimal:
        """
        Saldo disponible para cobrar sobre una factura.

        Args:
            exclude_group_id: recibo cuyas filas no se descuentan (revalidación del propio recibo).

        Returns:
            Decimal >= 0; 0 si la referencia no corresponde a ningún saldo conocido.
        """
        key = invoice_ref.match_key(partner_id)

        remote_rest, pulled_at = self.db.query(
            func.sum(RemoteBalanceLine.rest), func.max(RemoteBalanceLine.pulled_at)
        ).filter(RemoteBalanceLine.match_key == key).one()

        if remote_rest is not None:
            base = Decimal(remote_rest)
        else:
            invoice = self._local_invoice(partner_id, invoice_ref)
            if invoice is None:
                logger.debug(f"No balance known for {key}")
                return ZERO
            base = Decimal(invoice.total_amount)
            pulled_at = None

        return clamp_zero(quantize(base - self._collected(key, pulled_at, exclude_group_id)))

    def _collected_by_key(self, pulled: Dict[str, datetime], partner_id: Optional[str] = None) -> Dict[str, Decimal]:
        query = self.db.query(
            Collection.match_key, Collection.amount, Collection.status, Collection.synced_at
        ).filter(Collection.status.in_(BALANCE_CONSUMING_STATUSES))
        if partner_id:
            query = query.filter(Collection.partner_id == partner_id)

        totals: Dict[str, Decimal] = {}
        for key, amount, status, synced_at in query.all():
            if reflected_remotely(status, synced_at, pulled.get(key)):
                continue
            totals[key] = totals.get(key, ZERO) + Decimal(amount)
        return totals

    def list_balances(self, partner_id: Optional[str] = None) -> BalanceList:
        """
        Saldos efectivos: líneas remotas más facturas locales que el ERP aún no
        reporta. Se omiten los saldos en cero; primero los vencidos, luego por
        fecha de vencimiento.
        """
        today = date.today()
        lines: List[BalanceLineOut] = []

        remote_query = self.db.query(RemoteBalanceLine)
        if partner_id:
            remote_query = remote_query.filter(RemoteBalanceLine.partner_id == partner_id)
        remote_lines = remote_query.all()

        pulled: Dict[str, datetime] = {}
        for line in remote_lines:
            previous = pulled.get(line.match_key)
            if previous is None or _as_utc(line.pulled_at) > _as_utc(previous):
                pulled[line.match_key] = line.pulled_at
        # Lo cobrado se reparte entre las líneas remotas de la misma factura
        unapplied = self._collected_by_key(pulled, partner_id)

        for line in remote_lines:
            rest = Decimal(line.rest)
            taken = min(rest, unapplied.get(line.match_key, ZERO))
            if taken:
                unapplied[line.match_key] -= taken
            lines.append(BalanceLineOut(
                source="remote",
                partner_id=line.partner_id,
                partner_name=line.partner_name,
                document_type=line.document_type,
                series=line.series,
                number=line.number,
                document_code=line.document_code,
                value=line.value,
                rest=line.rest,
                collected=taken,
                remaining=clamp_zero(quantize(rest - taken)),
                currency=line.currency,
                issue_date=line.issue_date,
                due_date=line.due_date,
                is_overdue=line.due_date is not None and line.due_date < today
            ))

        invoice_query = self.db.query(Invoice).options(selectinload(Invoice.partner)).filter(
            Invoice.status != InvoiceStatus.SENT
        )
        if partner_id:
            invoice_query = invoice_query.filter(Invoice.partner_id == partner_id)

        for invoice in invoice_query.all():
            ref = invoice.reference
            key = ref.match_key(invoice.partner_id)
            if key in pulled:
                continue
            taken = unapplied.get(key, ZERO)
            due_at = invoice.due_date
            due_date = due_at.date() if due_at else None
            lines.append(BalanceLineOut(
                source="local",
                partner_id=invoice.partner_id,
                partner_name=invoice.partner.name,
                document_type="FACTURA",
                series=ref.series,
                number=ref.number,
                document_code=ref.document_code,
                value=invoice.total_amount,
                rest=invoice.total_amount,
                collected=taken,
                remaining=clamp_zero(quantize(Decimal(invoice.total_amount) - taken)),
                currency=invoice.currency,
                issue_date=invoice.created_at.date() if invoice.created_at else None,
                due_date=due_date,
                is_overdue=due_date is not None and due_date < today
            ))

        lines = [line for line in lines if line.remaining > ZERO]
        lines.sort(key=lambda line: (0 if line.is_overdue else 1, line.due_date or date.max))

        return BalanceList(
            balances=lines,
            total_remaining=sum((line.remaining for line in lines), ZERO)
        )
