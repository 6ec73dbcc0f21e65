from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from typing import Optional

from ledger_sync.dependencies.dbDependencies import get_db
from ledger_sync.modules.invoices.service import InvoiceLedger
from ledger_sync.modules.invoices.models import InvoiceStatus
from ledger_sync.modules.invoices.schemas import InvoiceCreate, InvoiceOut, InvoiceDetail, InvoiceList

# Router principal del módulo de facturas
invoices_router = APIRouter(prefix="/invoices", tags=["Invoices"])


@invoices_router.post("/", response_model=InvoiceOut, status_code=status.HTTP_201_CREATED)
def create_invoice(invoice_data: InvoiceCreate, db: Session = Depends(get_db)):
    """
    Emitir una factura local en estado pending.

    El número se toma del rango configurado para facturas; el precio de cada
    producto es el de oferta del cliente o, si no existe, el de lista.
    """
    return InvoiceLedger(db).create(invoice_data)


@invoices_router.get("/", response_model=InvoiceList)
def list_invoices(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    status: Optional[InvoiceStatus] = Query(None, description="Estado de la factura"),
    partner_id: Optional[str] = Query(None, description="Filtrar por partner"),
    db: Session = Depends(get_db)
):
    return InvoiceLedger(db).list(status=status, partner_id=partner_id, limit=limit, offset=offset)


@invoices_router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(invoice_id: str, db: Session = Depends(get_db)):
    """Obtener factura con partner, sede y líneas."""
    return InvoiceLedger(db).get_detail(invoice_id)


@invoices_router.post("/{invoice_id}/cancel-send", response_model=InvoiceOut)
def cancel_invoice_sending(invoice_id: str, db: Session = Depends(get_db)):
    """
    Devolver a pending una factura atascada en envío.

    Solo válido si la factura está en estado sending.
    """
    return InvoiceLedger(db).cancel_send(invoice_id)


@invoices_router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(invoice_id: str, db: Session = Depends(get_db)):
    InvoiceLedger(db).delete(invoice_id)
