"""
Reports Module

Reportes de ventas y cobros sobre las tablas locales, con exportación CSV.
Este módulo NO crea nuevas tablas.
"""
