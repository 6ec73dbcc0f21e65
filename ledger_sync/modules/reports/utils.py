"""
Exportación CSV de reportes
"""

import csv
import io
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List

from fastapi import Response


CSV_HEADERS = {
    "sales_by_partner": {
        "partner_name": "Partner",
        "invoice_count": "Facturas",
        "total_quantity": "Cantidad",
        "subtotal": "Subtotal",
        "taxes_total": "Impuestos",
        "total_amount": "Total"
    },
    "sales_by_product": {
        "product_name": "Producto",
        "unit_of_measure": "UM",
        "quantity_sold": "Cantidad",
        "subtotal": "Subtotal",
        "total_amount": "Total"
    },
    "collections": {
        "partner_name": "Partner",
        "status": "Estado",
        "collection_count": "Cobros",
        "total_amount": "Total"
    }
}


def format_csv_value(value: Any) -> str:
    if value is None:
        return ""
    elif isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, (date, datetime)):
        return value.isoformat()
    elif hasattr(value, "value"):
        return str(value.value)
    else:
        return str(value)


def create_csv_response(data: List[Dict[str, Any]], filename: str, headers: Dict[str, str]) -> Response:
    """
    Respuesta CSV a partir de una lista de diccionarios.

    Args:
        data: filas del reporte
        filename: nombre del archivo descargado
        headers: mapeo campo -> título de columna (define también el orden)
    """
    output = io.StringIO()
    fieldnames = list(headers.keys())
    writer = csv.DictWriter(output, fieldnames=fieldnames, extrasaction="ignore")
    writer.writerow(headers)
    for row in data:
        writer.writerow({key: format_csv_value(row.get(key)) for key in fieldnames})

    csv_content = output.getvalue()
    output.close()

    return Response(
        content=csv_content,
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename={filename}",
            "Content-Type": "text/csv; charset=utf-8"
        }
    )
