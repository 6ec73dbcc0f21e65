"""
Reportes de ventas y cobros.

No crea tablas: consulta facturas y cobros locales en un rango de fechas
(ambos extremos incluidos).
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Tuple

from sqlalchemy import func, desc
from sqlalchemy.orm import Session

from ledger_sync.common.money import ZERO, quantize
from ledger_sync.modules.cash_collections.models import Collection
from ledger_sync.modules.catalog.models import Partner
from ledger_sync.modules.invoices.models import Invoice, InvoiceLineItem
from ledger_sync.modules.reports.schemas import (
    SalesReport, SalesByPartner, SalesByStatus, SalesByProductReport, SalesByProduct,
    CollectionsReport, CollectionsByPartner
)


def _money(value) -> Decimal:
    return quantize(Decimal(str(value))) if value is not None else ZERO


class ReportService:
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _period(start_date: date, end_date: date) -> Tuple[datetime, datetime]:
        start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
        end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
        return start, end

    def get_sales_report(self, start_date: date, end_date: date) -> SalesReport:
        """Ventas por partner y por estado de envío"""
        start, end = self._period(start_date, end_date)
        in_period = (Invoice.created_at >= start, Invoice.created_at < end)

        quantities = dict(
            self.db.query(Invoice.partner_id, func.sum(InvoiceLineItem.quantity))
            .join(InvoiceLineItem, InvoiceLineItem.invoice_id == Invoice.id)
            .filter(*in_period)
            .group_by(Invoice.partner_id)
            .all()
        )

        rows = (
            self.db.query(
                Invoice.partner_id,
                Partner.name,
                func.count(Invoice.id).label("invoice_count"),
                func.sum(Invoice.subtotal).label("subtotal"),
                func.sum(Invoice.taxes_total).label("taxes_total"),
                func.sum(Invoice.total_amount).label("total_amount")
            )
            .join(Partner, Partner.id == Invoice.partner_id)
            .filter(*in_period)
            .group_by(Invoice.partner_id, Partner.name)
            .order_by(desc("total_amount"))
            .all()
        )

        partners = [
            SalesByPartner(
                partner_id=row.partner_id,
                partner_name=row.name,
                invoice_count=row.invoice_count,
                total_quantity=Decimal(str(quantities.get(row.partner_id) or 0)),
                subtotal=_money(row.subtotal),
                taxes_total=_money(row.taxes_total),
                total_amount=_money(row.total_amount)
            )
            for row in rows
        ]

        by_status = [
            SalesByStatus(status=status, invoice_count=count, total_amount=_money(total))
            for status, count, total in (
                self.db.query(Invoice.status, func.count(Invoice.id), func.sum(Invoice.total_amount))
                .filter(*in_period)
                .group_by(Invoice.status)
                .all()
            )
        ]

        return SalesReport(
            period_start=start_date,
            period_end=end_date,
            partners=partners,
            by_status=by_status,
            total_invoices=sum(p.invoice_count for p in partners),
            total_amount=sum((p.total_amount for p in partners), ZERO)
        )

    def get_sales_by_product(self, start_date: date, end_date: date) -> SalesByProductReport:
        start, end = self._period(start_date, end_date)
        rows = (
            self.db.query(
                InvoiceLineItem.product_id,
                InvoiceLineItem.name,
                InvoiceLineItem.unit_of_measure,
                func.sum(InvoiceLineItem.quantity).label("quantity_sold"),
                func.sum(InvoiceLineItem.line_subtotal).label("subtotal"),
                func.sum(InvoiceLineItem.line_total).label("total_amount")
            )
            .join(Invoice, Invoice.id == InvoiceLineItem.invoice_id)
            .filter(Invoice.created_at >= start, Invoice.created_at < end)
            .group_by(InvoiceLineItem.product_id, InvoiceLineItem.name, InvoiceLineItem.unit_of_measure)
            .order_by(InvoiceLineItem.name)
            .all()
        )

        return SalesByProductReport(
            period_start=start_date,
            period_end=end_date,
            products=[
                SalesByProduct(
                    product_id=row.product_id,
                    product_name=row.name,
                    unit_of_measure=row.unit_of_measure,
                    quantity_sold=Decimal(str(row.quantity_sold or 0)),
                    subtotal=_money(row.subtotal),
                    total_amount=_money(row.total_amount)
                )
                for row in rows
            ]
        )

    def get_collections_report(self, start_date: date, end_date: date) -> CollectionsReport:
        """Cobros por partner y estado, según la fecha de cobro"""
        start, end = self._period(start_date, end_date)
        rows = (
            self.db.query(
                Collection.partner_id,
                func.max(Collection.partner_name).label("partner_name"),
                Collection.status,
                func.count(Collection.id).label("collection_count"),
                func.sum(Collection.amount).label("total_amount")
            )
            .filter(Collection.collected_at >= start, Collection.collected_at < end)
            .group_by(Collection.partner_id, Collection.status)
            .order_by(desc("total_amount"))
            .all()
        )

        items = [
            CollectionsByPartner(
                partner_id=row.partner_id,
                partner_name=row.partner_name or row.partner_id,
                status=row.status,
                collection_count=row.collection_count,
                total_amount=_money(row.total_amount)
            )
            for row in rows
        ]
        return CollectionsReport(
            period_start=start_date,
            period_end=end_date,
            items=items,
            total_amount=sum((item.total_amount for item in items), ZERO)
        )
