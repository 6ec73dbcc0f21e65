from sqlalchemy.orm import Session, selectinload
from sqlalchemy import update, desc
from decimal import Decimal
from typing import List, Optional
import logging

from ledger_sync.core.config import settings
from ledger_sync.core.exceptions import LedgerValidationError, NotFound, IllegalTransition
from ledger_sync.common.mixins import utcnow
from ledger_sync.common.money import ZERO, quantize
from ledger_sync.common.status import ErrorKind, transition_allowed
from ledger_sync.modules.catalog.models import Partner, Location, Product
from ledger_sync.modules.catalog.service import CatalogService
from ledger_sync.modules.invoices.models import Invoice, InvoiceLineItem, InvoiceStatus, INVOICE_TRANSITIONS
from ledger_sync.modules.invoices.schemas import InvoiceCreate, InvoiceTotals, InvoiceDetail, InvoiceLineItemOut
from ledger_sync.modules.numbering.models import CounterKind
from ledger_sync.modules.numbering.service import NumberAllocator
from ledger_sync.modules.sync.schemas import Submission, SubmissionLine, DocumentType

logger = logging.getLogger(__name__)

OPERATOR_CANCEL_MESSAGE = "Envío cancelado por el operador"


class InvoiceLedger:
    """
    Facturas locales y su ciclo de envío al ERP.

    Estados: pending -> sending -> {sent, pending}. Cada transición es un
    UPDATE condicionado al estado actual; si otra sesión cambió la factura
    primero, el UPDATE no afecta filas y se lanza IllegalTransition.
    """

    def __init__(self, db: Session, allocator: Optional[NumberAllocator] = None):
        self.db = db
        self.allocator = allocator or NumberAllocator(db)

    @staticmethod
    def calculate_totals(items: List[InvoiceLineItem]) -> InvoiceTotals:
        """Calcular totales: impuesto por línea a su propia tasa, redondeado a centavos"""
        subtotal = ZERO
        taxes_total = ZERO

        for item in items:
            item.line_subtotal = quantize(Decimal(item.quantity) * Decimal(item.unit_price))
            item.line_tax = quantize(item.line_subtotal * Decimal(item.tax_rate or 0) / Decimal("100"))
            item.line_total = item.line_subtotal + item.line_tax

            subtotal += item.line_subtotal
            taxes_total += item.line_tax

        return InvoiceTotals(
            subtotal=subtotal,
            taxes_total=taxes_total,
            total_amount=subtotal + taxes_total
        )

    def create(self, invoice_data: InvoiceCreate) -> Invoice:
        """
        Emitir una factura en estado pending.

        El número se asigna en la misma transacción que la factura; si la
        transacción se revierte, el incremento también.

        Raises:
            LedgerValidationError: partner, sede o producto inválidos.
            NumberRangeExhausted / NumberRangeNotConfigured: sin numeración disponible.
        """
        partner = self.db.get(Partner, invoice_data.partner_id)
        if not partner:
            raise LedgerValidationError(f"El partner {invoice_data.partner_id} no existe")

        location = self.db.get(Location, invoice_data.location_id)
        if not location or location.partner_id != partner.id:
            raise LedgerValidationError(
                f"La sede {invoice_data.location_id} no existe o no pertenece al partner {partner.name}"
            )

        catalog = CatalogService(self.db)
        line_items = []
        for position, item_data in enumerate(invoice_data.items):
            if item_data.quantity <= 0:
                raise LedgerValidationError("La cantidad debe ser mayor a 0")

            product = self.db.get(Product, item_data.product_id)
            if not product or not product.is_active:
                raise LedgerValidationError(f"El producto {item_data.product_id} no existe")

            price = catalog.resolve_price(partner.id, product)
            if price is None:
                raise LedgerValidationError(f"El producto {product.name} no tiene precio configurado")

            line_items.append(InvoiceLineItem(
                product_id=product.id,
                position=position,
                name=product.name,
                unit_of_measure=product.unit_of_measure,
                quantity=item_data.quantity,
                unit_price=price,
                tax_rate=Decimal(product.tax_rate or 0)
            ))

        totals = self.calculate_totals(line_items)

        allocated = self.allocator.allocate(CounterKind.INVOICE)

        invoice = Invoice(
            partner_id=partner.id,
            location_id=location.id,
            number=allocated.value,
            number_managed=allocated.managed,
            series=allocated.series or settings.DEFAULT_INVOICE_SERIES,
            status=InvoiceStatus.PENDING,
            currency=(partner.currency or "").strip() or settings.DEFAULT_CURRENCY,
            notes=invoice_data.notes,
            subtotal=totals.subtotal,
            taxes_total=totals.taxes_total,
            total_amount=totals.total_amount,
            line_items=line_items
        )
        self.db.add(invoice)
        self.db.flush()

        logger.info(
            f"Invoice {invoice.series} {invoice.number} created for partner {partner.id} "
            f"(items={len(line_items)}, total={totals.total_amount}, managed={allocated.managed})"
        )
        return invoice

    def get(self, invoice_id: str) -> Invoice:
        invoice = self.db.get(Invoice, invoice_id)
        if not invoice:
            raise NotFound("Factura no encontrada")
        return invoice

    def get_detail(self, invoice_id: str) -> InvoiceDetail:
        """Factura con partner, sede y líneas"""
        invoice = self.db.query(Invoice).options(
            selectinload(Invoice.partner),
            selectinload(Invoice.location),
            selectinload(Invoice.line_items)
        ).filter(Invoice.id == invoice_id).first()

        if not invoice:
            raise NotFound("Factura no encontrada")

        base = InvoiceDetail.model_fields.keys()
        data = {name: getattr(invoice, name) for name in base if hasattr(invoice, name)}
        data.update(
            partner_name=invoice.partner.name,
            partner_tax_id=invoice.partner.tax_id,
            location_name=invoice.location.name,
            location_address=invoice.location.address,
            due_date=invoice.due_date,
            line_items=[InvoiceLineItemOut.model_validate(li) for li in invoice.line_items]
        )
        return InvoiceDetail(**data)

    def list(self, status: Optional[InvoiceStatus] = None, partner_id: Optional[str] = None,
             limit: int = 100, offset: int = 0) -> dict:
        query = self.db.query(Invoice)
        if status:
            query = query.filter(Invoice.status == status)
        if partner_id:
            query = query.filter(Invoice.partner_id == partner_id)

        total = query.count()
        invoices = query.order_by(desc(Invoice.created_at), desc(Invoice.number)).offset(offset).limit(limit).all()
        return {
            "invoices": invoices,
            "total": total,
            "limit": limit,
            "offset": offset
        }

    def pending_ids(self) -> List[str]:
        """Facturas a enviar en la sincronización automática"""
        rows = self.db.query(Invoice.id).filter(
            Invoice.status == InvoiceStatus.PENDING,
            Invoice.remote_document_id.is_(None)
        ).order_by(Invoice.number).all()
        return [row.id for row in rows]

    def _transition(self, invoice_id: str, current: InvoiceStatus, target: InvoiceStatus, **values) -> Invoice:
        if not transition_allowed(INVOICE_TRANSITIONS, current, target):
            raise IllegalTransition("Factura", invoice_id, current, target)

        result = self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.status == current)
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        invoice = self.db.get(Invoice, invoice_id, populate_existing=True)
        if result.rowcount != 1:
            if invoice is None:
                raise NotFound("Factura no encontrada")
            raise IllegalTransition("Factura", invoice_id, invoice.status, target)
        return invoice

    def begin_send(self, invoice_id: str) -> Invoice:
        invoice = self._transition(invoice_id, InvoiceStatus.PENDING, InvoiceStatus.SENDING)
        logger.info(f"Invoice {invoice.number} marked as sending")
        return invoice

    def cancel_send(self, invoice_id: str) -> Invoice:
        """Devolver a pending una factura que quedó en envío; solo válido desde sending"""
        invoice = self._transition(
            invoice_id, InvoiceStatus.SENDING, InvoiceStatus.PENDING,
            last_error=OPERATOR_CANCEL_MESSAGE,
            last_error_kind=ErrorKind.OPERATOR
        )
        logger.info(f"Invoice {invoice.number} sending cancelled by operator")
        return invoice

    def complete_send(self, invoice_id: str, remote_document_id: str) -> Invoice:
        invoice = self._transition(
            invoice_id, InvoiceStatus.SENDING, InvoiceStatus.SENT,
            sent_at=utcnow(),
            remote_document_id=remote_document_id,
            last_error=None,
            last_error_kind=None
        )
        logger.info(f"Invoice {invoice.number} sent (remote document {remote_document_id})")
        return invoice

    def fail_send(self, invoice_id: str, reason: str, kind: ErrorKind = ErrorKind.TRANSIENT) -> Invoice:
        invoice = self._transition(
            invoice_id, InvoiceStatus.SENDING, InvoiceStatus.PENDING,
            last_error=reason,
            last_error_kind=kind
        )
        logger.warning(f"Invoice {invoice.number} send failed ({kind.value}): {reason}")
        return invoice

    def record_error(self, invoice_id: str, reason: str, kind: ErrorKind = ErrorKind.VALIDATION,
                     remote_document_id: Optional[str] = None) -> Invoice:
        """Anotar un error sin cambiar el estado (solo pending)"""
        values = dict(last_error=reason, last_error_kind=kind, updated_at=utcnow())
        if remote_document_id:
            values["remote_document_id"] = remote_document_id
        result = self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.status == InvoiceStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        invoice = self.db.get(Invoice, invoice_id, populate_existing=True)
        if result.rowcount != 1:
            if invoice is None:
                raise NotFound("Factura no encontrada")
            raise IllegalTransition("Factura", invoice_id, invoice.status, InvoiceStatus.PENDING)
        logger.warning(f"Invoice {invoice.number} not sendable: {reason}")
        return invoice

    def delete(self, invoice_id: str) -> None:
        """Eliminar una factura pending. Su número no se reutiliza."""
        invoice = self.get(invoice_id)
        if invoice.status != InvoiceStatus.PENDING:
            raise LedgerValidationError("Solo se pueden eliminar facturas pendientes")

        self.db.delete(invoice)
        self.db.flush()
        logger.info(f"Invoice {invoice.number} deleted (number not reused)")

    def build_submission(self, invoice_id: str) -> Submission:
        """
        Documento a enviar al ERP.

        Raises:
            LedgerValidationError: el partner no tiene código en el ERP.
        """
        invoice = self.get(invoice_id)
        partner = invoice.partner
        partner_code = (partner.code or "").strip()
        if not partner_code:
            raise LedgerValidationError(f"El partner {partner.name} no tiene código configurado en el ERP")

        return Submission(
            document_type=DocumentType.INVOICE,
            local_id=invoice.id,
            partner_id=partner.id,
            partner_code=partner_code,
            location_id=invoice.location_id,
            remote_site_id=invoice.location.remote_site_id,
            series=invoice.series,
            number=invoice.number,
            currency=invoice.currency,
            issued_at=invoice.created_at,
            due_at=invoice.due_date,
            notes=invoice.notes,
            total=Decimal(invoice.total_amount),
            lines=[
                SubmissionLine(
                    product_id=li.product_id,
                    name=li.name,
                    unit_of_measure=li.unit_of_measure,
                    quantity=li.quantity,
                    unit_price=li.unit_price,
                    tax_rate=li.tax_rate,
                    line_total=li.line_total
                )
                for li in invoice.line_items
            ]
        )
