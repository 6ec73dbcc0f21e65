"""
Módulo de Numeración

Contadores de documentos (facturas y recibos) con rango configurable
[start, end]. Cada número se emite una sola vez, sin huecos mientras la
transacción que lo consume se confirme.

Tablas principales:
- number_ranges: Un contador por tipo de documento
"""
