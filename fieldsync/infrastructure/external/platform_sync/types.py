"""
Tipos puros del pipeline plataforma -> Postgres.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from sqlalchemy.types import Text, TypeEngine

Transform = Callable[[Any], Any]

# Fila lista para UPSERT (tenant_id, st_id, proyecciones, full_data, modified_on)
NormalizedRecord = dict[str, Any]


@dataclass(frozen=True)
class FieldMapping:
    """
    Define el mapeo de un campo del payload externo a una columna Postgres.

    - source_field: nombre del campo en el payload (admite ruta con puntos: "status.name")
    - column: nombre de la columna en Postgres
    - column_type: tipo SQLAlchemy de la columna de proyección
    - transform: función opcional para transformar el valor antes de persistir
    - required: si True, el valor debe existir (si falta se levanta error)
    """

    source_field: str
    column: str
    column_type: TypeEngine = field(default_factory=Text)
    transform: Optional[Transform] = None
    required: bool = False


@dataclass(frozen=True)
class PlatformPage:
    """Una página ya normalizada, más el estado de paginación."""

    records: list[NormalizedRecord]
    has_more: bool
    next_cursor: Optional[str] = None
