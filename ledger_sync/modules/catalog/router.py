from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ledger_sync.dependencies.dbDependencies import get_db
from ledger_sync.modules.catalog.service import CatalogService
from ledger_sync.modules.catalog.schemas import PartnerOut, ProductOut

catalog_router = APIRouter(tags=["Catalog"])


@catalog_router.get("/partners", response_model=List[PartnerOut])
def list_partners(
    search: Optional[str] = Query(None, description="Buscar por nombre"),
    db: Session = Depends(get_db)
):
    """Partners de la caché local con sus sedes."""
    return CatalogService(db).list_partners(search)


@catalog_router.get("/products", response_model=List[ProductOut])
def list_products(
    search: Optional[str] = Query(None, description="Buscar por nombre"),
    db: Session = Depends(get_db)
):
    return CatalogService(db).list_products(search)
