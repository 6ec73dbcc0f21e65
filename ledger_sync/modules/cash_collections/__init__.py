"""
Módulo de Cobros

Recibos de cobro que imputan montos a una o varias facturas del partner.
Cada recibo lleva un número propio y se sincroniza con el ERP como una
sola unidad.

Estados: pending, sending, synced, failed.
"""
