"""
Módulo de Catálogo

Caché local de partners (con sus sedes), productos y precios de oferta
tal como los reporta el ERP. Se refresca completo en cada sincronización
y se usa al emitir facturas.
"""
