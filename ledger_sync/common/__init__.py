"""
Utilidades compartidas: montos, referencias de factura, estados y timestamps.
"""
