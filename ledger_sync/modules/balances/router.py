from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from decimal import Decimal
from typing import Optional

from ledger_sync.dependencies.dbDependencies import get_db
from ledger_sync.common.references import InvoiceRef
from ledger_sync.modules.balances.service import BalanceReconciler
from ledger_sync.modules.balances.schemas import BalanceList

balances_router = APIRouter(prefix="/balances", tags=["Balances"])


@balances_router.get("/", response_model=BalanceList)
def list_balances(
    partner_id: Optional[str] = Query(None, description="Filtrar por partner"),
    db: Session = Depends(get_db)
):
    """
    Saldos por cobrar: los reportados por el ERP y las facturas locales aún no
    enviadas, descontando los cobros registrados localmente.
    """
    return BalanceReconciler(db).list_balances(partner_id)


@balances_router.get("/remaining")
def get_remaining(
    partner_id: str = Query(...),
    series: Optional[str] = Query(None),
    number: Optional[str] = Query(None),
    document_code: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """Saldo disponible para cobrar sobre una factura."""
    ref = InvoiceRef(series=series, number=number, document_code=document_code)
    remaining: Decimal = BalanceReconciler(db).remaining_for(partner_id, ref)
    return {"partner_id": partner_id, "invoice": ref.label, "remaining": remaining}
