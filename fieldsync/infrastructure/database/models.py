"""
Modelos de base de datos.

- SyncStateModel: una fila por (tenant, entidad) con watermarks y estado del run.
- Tablas crudas raw.st_<entidad>: se construyen desde el registro de entidades
  (no hay una clase por entidad), todas con la misma forma técnica:
  tenant_id + st_id como clave, columnas de proyección tipadas, full_data,
  modified_on y fetched_at.
"""
from typing import TYPE_CHECKING

from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Table, PrimaryKeyConstraint
from sqlalchemy.sql import func

from fieldsync.infrastructure.database.session import Base
from fieldsync.shared.constants.sync_constants import RAW_SCHEMA, SyncStatus

if TYPE_CHECKING:
    from fieldsync.infrastructure.external.platform_sync.sync_config import EntityDescriptor


class SyncStateModel(Base):
    """
    Estado de sync por (tenant, entidad).

    last_full_sync_at / last_incremental_sync_at solo avanzan al completar un run
    y nunca retroceden. record_count se actualiza por página durante el run.
    """

    __tablename__ = "sync_state"
    __table_args__ = {"schema": RAW_SCHEMA}

    tenant_id = Column(String(64), primary_key=True)
    entity_name = Column(String(100), primary_key=True)
    last_full_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_incremental_sync_at = Column(DateTime(timezone=True), nullable=True)
    record_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=SyncStatus.IDLE.value)
    last_run_started_at = Column(DateTime(timezone=True), nullable=True)
    last_run_completed_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<SyncState(tenant={self.tenant_id}, entity={self.entity_name}, status={self.status})>"


def raw_table_for(descriptor: "EntityDescriptor") -> Table:
    """
    Retorna (creándola si no existe en Base.metadata) la tabla cruda de una entidad.
    """
    key = f"{RAW_SCHEMA}.{descriptor.table_name}"
    existing = Base.metadata.tables.get(key)
    if existing is not None:
        return existing

    projection = [
        Column(m.column, m.column_type, nullable=True)
        for m in descriptor.field_mappings
    ]
    return Table(
        descriptor.table_name,
        Base.metadata,
        Column("tenant_id", String(64), nullable=False),
        Column(descriptor.upsert_key, String(64), nullable=False),
        *projection,
        Column("full_data", JSON, nullable=False),
        Column("modified_on", DateTime(timezone=True), nullable=True),
        Column("fetched_at", DateTime(timezone=True), nullable=False),
        PrimaryKeyConstraint("tenant_id", descriptor.upsert_key, name=f"pk_{descriptor.table_name}"),
        schema=RAW_SCHEMA,
    )
