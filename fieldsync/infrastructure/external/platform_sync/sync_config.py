"""
Descriptor de entidad sincronizable (endpoint -> tabla raw).

La idea es que aquí quede todo lo que distingue a una entidad de otra:
- endpoint de la plataforma
- tamaño de página (fijo por entidad)
- mapeos de campos y tipos de las columnas de proyección
- columna clave del UPSERT

Este módulo no realiza I/O: solo define configuración.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from fieldsync.shared.constants.sync_constants import DEFAULT_PAGE_SIZE

from .types import FieldMapping


@dataclass(frozen=True)
class EntityDescriptor:
    """
    Config de un endpoint de la plataforma -> una tabla raw.st_<name>.

    NOTA sobre la clave:
    - La tabla se indexa por (tenant_id, upsert_key); upsert_key guarda el id externo.
    - id_field / modified_field indican dónde vienen el id y la fecha de modificación
      dentro del payload.
    """

    name: str
    endpoint: str
    field_mappings: list[FieldMapping] = field(default_factory=list)
    page_size: int = DEFAULT_PAGE_SIZE
    upsert_key: str = "st_id"
    id_field: str = "id"
    modified_field: str = "modifiedOn"

    @property
    def table_name(self) -> str:
        return f"st_{self.name}"

    def endpoint_for(self, tenant_id: str) -> str:
        """Endpoint con el placeholder {tenant} resuelto."""
        return self.endpoint.replace("{tenant}", str(tenant_id))

    @property
    def mutable_columns(self) -> list[str]:
        """Columnas que un UPSERT puede sobreescribir (todo menos la clave)."""
        return [m.column for m in self.field_mappings] + ["full_data", "modified_on", "fetched_at"]
