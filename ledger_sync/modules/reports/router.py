from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ledger_sync.dependencies.dbDependencies import get_db
from ledger_sync.modules.reports.service import ReportService
from ledger_sync.modules.reports.utils import create_csv_response, CSV_HEADERS

reports_router = APIRouter(prefix="/reports", tags=["Reports"])


def _validate_range(start_date: date, end_date: date):
    if end_date < start_date:
        raise HTTPException(
            status_code=422,
            detail="end_date debe ser mayor o igual a start_date"
        )


@reports_router.get("/sales", response_model=None)
def get_sales_report(
    start_date: date = Query(..., description="Fecha inicial (YYYY-MM-DD)"),
    end_date: date = Query(..., description="Fecha final (YYYY-MM-DD)"),
    export: Optional[str] = Query(None, pattern="^(csv)$", description="Formato de exportación: csv"),
    db: Session = Depends(get_db)
):
    """Ventas por partner y por estado de envío en el período."""
    _validate_range(start_date, end_date)
    report = ReportService(db).get_sales_report(start_date, end_date)

    if export == "csv":
        return create_csv_response(
            data=[p.model_dump() for p in report.partners],
            filename=f"sales_{start_date}_{end_date}.csv",
            headers=CSV_HEADERS["sales_by_partner"]
        )
    return report


@reports_router.get("/sales/products", response_model=None)
def get_sales_by_product(
    start_date: date = Query(..., description="Fecha inicial (YYYY-MM-DD)"),
    end_date: date = Query(..., description="Fecha final (YYYY-MM-DD)"),
    export: Optional[str] = Query(None, pattern="^(csv)$", description="Formato de exportación: csv"),
    db: Session = Depends(get_db)
):
    _validate_range(start_date, end_date)
    report = ReportService(db).get_sales_by_product(start_date, end_date)

    if export == "csv":
        return create_csv_response(
            data=[p.model_dump() for p in report.products],
            filename=f"sales_products_{start_date}_{end_date}.csv",
            headers=CSV_HEADERS["sales_by_product"]
        )
    return report


@reports_router.get("/collections", response_model=None)
def get_collections_report(
    start_date: date = Query(..., description="Fecha inicial (YYYY-MM-DD)"),
    end_date: date = Query(..., description="Fecha final (YYYY-MM-DD)"),
    export: Optional[str] = Query(None, pattern="^(csv)$", description="Formato de exportación: csv"),
    db: Session = Depends(get_db)
):
    """Cobros por partner y estado según la fecha de cobro."""
    _validate_range(start_date, end_date)
    report = ReportService(db).get_collections_report(start_date, end_date)

    if export == "csv":
        return create_csv_response(
            data=[item.model_dump() for item in report.items],
            filename=f"collections_{start_date}_{end_date}.csv",
            headers=CSV_HEADERS["collections"]
        )
    return report
