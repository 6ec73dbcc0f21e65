"""
Ledger Sync - facturación y cobros locales conciliados contra un ERP remoto.

El almacén local (SQLite) es la fuente de verdad mientras no hay conexión;
la sincronización envía facturas y recibos al ERP y refresca catálogo y
saldos cuando vuelve a estar disponible.
"""

__version__ = "1.0.0"
