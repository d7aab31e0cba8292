"""
Motor de sincronización incremental: plataforma field-service -> PostgreSQL (raw).

Objetivos de diseño:
- Idempotencia: UPSERT por (tenant_id, st_id); re-aplicar una página no duplica filas.
- Incremental: filtro modifiedOnOrAfter desde el último watermark (menos un solape).
- Table-driven: cada entidad es una entrada de registro, no una rutina copiada.
- Aislamiento: el fallo de una entidad no frena a las demás en la misma pasada.
"""
