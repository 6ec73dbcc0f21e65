"""
Módulo de Sincronización

Orquesta las corridas contra el ERP: catálogo, saldos, facturas pendientes
y recibos pendientes, con protección contra recibos duplicados. Las
corridas periódicas se disparan desde Celery beat.
"""
