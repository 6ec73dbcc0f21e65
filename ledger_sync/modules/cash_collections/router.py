from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from typing import Optional

from ledger_sync.dependencies.dbDependencies import get_db
from ledger_sync.modules.cash_collections.service import CollectionLedger
from ledger_sync.modules.cash_collections.models import CollectionStatus
from ledger_sync.modules.cash_collections.schemas import (
    CollectionGroupCreate, CollectionFromInvoice, CollectionGroupOut, CollectionGroupList
)

collections_router = APIRouter(prefix="/collections", tags=["Collections"])


@collections_router.post("/", response_model=CollectionGroupOut, status_code=status.HTTP_201_CREATED)
def record_collection_group(data: CollectionGroupCreate, db: Session = Depends(get_db)):
    """
    Registrar un recibo que imputa un cobro a una o varias facturas del partner.

    Se rechaza completo si alguna factura no tiene saldo suficiente o ya tiene
    un cobro en proceso.
    """
    ledger = CollectionLedger(db)
    group_id = ledger.record_group(data)
    return ledger.get_group(group_id)


@collections_router.post("/from-invoice/{invoice_id}", response_model=CollectionGroupOut,
                         status_code=status.HTTP_201_CREATED)
def record_collection_from_invoice(invoice_id: str, data: CollectionFromInvoice, db: Session = Depends(get_db)):
    """Cobro sobre una factura emitida localmente."""
    ledger = CollectionLedger(db)
    group_id = ledger.record_from_invoice(invoice_id, data.amount)
    return ledger.get_group(group_id)


@collections_router.get("/", response_model=CollectionGroupList)
def list_collection_groups(
    status: Optional[CollectionStatus] = Query(None, description="Estado del recibo"),
    partner_id: Optional[str] = Query(None, description="Filtrar por partner"),
    db: Session = Depends(get_db)
):
    groups = CollectionLedger(db).list_groups(status=status, partner_id=partner_id)
    return CollectionGroupList(groups=groups, total=len(groups))


@collections_router.get("/{group_id}", response_model=CollectionGroupOut)
def get_collection_group(group_id: str, db: Session = Depends(get_db)):
    return CollectionLedger(db).get_group(group_id)


@collections_router.post("/{group_id}/cancel-send", response_model=CollectionGroupOut)
def cancel_collection_group_sending(group_id: str, db: Session = Depends(get_db)):
    """
    Devolver a pending un recibo atascado en envío.

    El siguiente envío verifica contra el saldo remoto que el ERP no lo haya
    registrado ya.
    """
    ledger = CollectionLedger(db)
    ledger.cancel_send(group_id)
    return ledger.get_group(group_id)


@collections_router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_collection_group(group_id: str, db: Session = Depends(get_db)):
    """Eliminar un recibo que no fue sincronizado ni está en envío."""
    CollectionLedger(db).delete_group(group_id)
