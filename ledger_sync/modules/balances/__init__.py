"""
Módulo de Saldos

Copia local de los saldos pendientes reportados por el ERP y cálculo del
saldo efectivo por factura (saldo remoto menos cobros locales).
"""
