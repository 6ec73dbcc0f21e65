"""
Módulo de Facturación (Invoices)

Facturas emitidas localmente y su ciclo de envío al ERP:

- Numeración desde el rango configurado (o de respaldo, si está habilitada)
- Impuesto calculado por línea a la tasa propia de cada producto
- Estados: pending -> sending -> sent, con cancelación de envío por el operador

Tablas principales:
- invoices: Facturas locales
- invoice_items: Ítems de factura
"""
