"""
Registro de entidades: endpoint de la plataforma -> tabla raw.st_<entidad>.

Este es el único punto a editar para agregar una entidad nueva:
- se declara un EntityDescriptor con endpoint, mapeos y tipos
- se registra con register_entity()
El fetch, el UPSERT y el tracking de estado son genéricos.

Mantén las migraciones de alembic alineadas con estas definiciones.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from sqlalchemy import JSON, Boolean, DateTime, Numeric, String, Text

from fieldsync.infrastructure.database.models import raw_table_for
from fieldsync.shared.exceptions.sync import UnknownEntityTypeError, ValidationError
from fieldsync.shared.utils.datetime_utils import parse_iso_datetime

from .sync_config import EntityDescriptor
from .types import FieldMapping, NormalizedRecord

_MISSING = object()

_REGISTRY: dict[str, EntityDescriptor] = {}


# ---------------------------------------------------------------------
# Transformaciones de valores
# ---------------------------------------------------------------------

def to_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Montos: la plataforma los manda como número o como string."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def to_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def name_or_value(value: Any) -> Optional[str]:
    """Campos que a veces vienen como objeto {"name": ...} y a veces como string."""
    if isinstance(value, dict):
        return to_str(value.get("name"))
    return to_str(value)


def resolve_path(payload: dict[str, Any], path: str) -> Any:
    """Resuelve 'a.b.c' dentro del payload; retorna _MISSING si algún tramo no existe."""
    current: Any = payload
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


# ---------------------------------------------------------------------
# Mapeo payload -> fila
# ---------------------------------------------------------------------

def map_record_to_row(
    payload: dict[str, Any],
    *,
    descriptor: EntityDescriptor,
    tenant_id: str,
) -> NormalizedRecord:
    """
    Mapea un objeto de la plataforma a un dict listo para UPSERT.

    Reglas:
    - Se guardan columnas técnicas: tenant_id, <upsert_key>, full_data, modified_on
    - fetched_at lo estampa el upserter al escribir
    - Cada FieldMapping decide cómo mapear y transformar el valor
    """
    external_id = payload.get(descriptor.id_field)
    if external_id is None or external_id == "":
        # Caso raro; preferimos fallar temprano y visible.
        raise ValidationError(
            f"La plataforma devolvió un registro de '{descriptor.name}' sin '{descriptor.id_field}'",
            entity_type=descriptor.name,
            operation="map",
        )

    row: NormalizedRecord = {
        "tenant_id": str(tenant_id),
        descriptor.upsert_key: str(external_id),
        "full_data": payload,
        "modified_on": parse_iso_datetime(payload.get(descriptor.modified_field)),
    }

    for m in descriptor.field_mappings:
        raw = resolve_path(payload, m.source_field)
        if raw is _MISSING:
            if m.required:
                raise ValidationError(
                    f"Registro {external_id} de '{descriptor.name}' no contiene campo requerido '{m.source_field}'",
                    entity_type=descriptor.name,
                    operation="map",
                )
            row[m.column] = None
            continue
        row[m.column] = m.transform(raw) if m.transform else raw

    return row


# ---------------------------------------------------------------------
# Registro
# ---------------------------------------------------------------------

def register_entity(descriptor: EntityDescriptor) -> EntityDescriptor:
    """
    Registra una entidad y su tabla raw en Base.metadata.
    Un nombre ya registrado es un error de configuración.
    """
    if descriptor.name in _REGISTRY:
        raise ValueError(f"Entidad '{descriptor.name}' ya registrada")
    if descriptor.page_size <= 0:
        raise ValueError(f"page_size inválido para '{descriptor.name}': {descriptor.page_size}")
    raw_table_for(descriptor)
    _REGISTRY[descriptor.name] = descriptor
    return descriptor


def get_entity_descriptor(name: str) -> EntityDescriptor:
    try:
        return _REGISTRY[name]
    except KeyError:
        raise UnknownEntityTypeError(name, registered_entity_names()) from None


def registered_entity_names() -> list[str]:
    return list(_REGISTRY)


def resolve_entity_types(names: Optional[Iterable[str]] = None) -> list[EntityDescriptor]:
    """Sin filtro retorna todas las entidades registradas, en orden de registro."""
    if names is None:
        return list(_REGISTRY.values())
    resolved: dict[str, EntityDescriptor] = {}
    for name in names:
        resolved.setdefault(name, get_entity_descriptor(name))
    return list(resolved.values())


# ---------------------------------------------------------------------
# Entidades de la plataforma
# ---------------------------------------------------------------------

_ID = String(64)
_MONEY = Numeric(14, 2)

CUSTOMERS = register_entity(EntityDescriptor(
    name="customers",
    endpoint="/crm/v2/tenant/{tenant}/customers",
    field_mappings=[
        FieldMapping("name", "name"),
        FieldMapping("type", "type", String(50)),
        FieldMapping("active", "active", Boolean(), transform=to_bool),
        FieldMapping("balance", "balance", _MONEY, transform=to_decimal),
        FieldMapping("createdOn", "created_on", DateTime(timezone=True), transform=parse_iso_datetime),
    ],
))

JOBS = register_entity(EntityDescriptor(
    name="jobs",
    endpoint="/jpm/v2/tenant/{tenant}/jobs",
    field_mappings=[
        FieldMapping("jobNumber", "job_number", String(50), transform=to_str),
        FieldMapping("customerId", "customer_id", _ID, transform=to_str),
        FieldMapping("locationId", "location_id", _ID, transform=to_str),
        FieldMapping("businessUnitId", "business_unit_id", _ID, transform=to_str),
        FieldMapping("jobTypeId", "job_type_id", _ID, transform=to_str),
        FieldMapping("jobStatus", "job_status", String(50), transform=name_or_value),
        FieldMapping("summary", "summary", Text()),
        FieldMapping("total", "total", _MONEY, transform=to_decimal),
    ],
))

INVOICES = register_entity(EntityDescriptor(
    name="invoices",
    endpoint="/accounting/v2/tenant/{tenant}/invoices",
    field_mappings=[
        FieldMapping("referenceNumber", "reference_number", String(50), transform=to_str),
        FieldMapping("invoiceDate", "invoice_date", DateTime(timezone=True), transform=parse_iso_datetime),
        FieldMapping("total", "total", _MONEY, transform=to_decimal),
        FieldMapping("balance", "balance", _MONEY, transform=to_decimal),
        FieldMapping("customer", "customer", JSON()),
        FieldMapping("job", "job", JSON()),
    ],
))

ESTIMATES = register_entity(EntityDescriptor(
    name="estimates",
    endpoint="/sales/v2/tenant/{tenant}/estimates",
    field_mappings=[
        FieldMapping("name", "name"),
        FieldMapping("jobNumber", "job_number", String(50), transform=to_str),
        FieldMapping("status", "status", String(50), transform=name_or_value),
        FieldMapping("subtotal", "subtotal", _MONEY, transform=to_decimal),
        FieldMapping("tax", "tax", _MONEY, transform=to_decimal),
        FieldMapping("customerId", "customer_id", _ID, transform=to_str),
    ],
))

PRICEBOOK_SERVICES = register_entity(EntityDescriptor(
    name="pricebook_services",
    endpoint="/pricebook/v2/tenant/{tenant}/services",
    field_mappings=[
        FieldMapping("code", "code", String(100), transform=to_str),
        FieldMapping("displayName", "display_name"),
        FieldMapping("description", "description", Text()),
        FieldMapping("price", "price", _MONEY, transform=to_decimal),
        FieldMapping("memberPrice", "member_price", _MONEY, transform=to_decimal),
        FieldMapping("active", "active", Boolean(), transform=to_bool),
    ],
))

PRICEBOOK_MATERIALS = register_entity(EntityDescriptor(
    name="pricebook_materials",
    endpoint="/pricebook/v2/tenant/{tenant}/materials",
    field_mappings=[
        FieldMapping("code", "code", String(100), transform=to_str),
        FieldMapping("displayName", "display_name"),
        FieldMapping("description", "description", Text()),
        FieldMapping("price", "price", _MONEY, transform=to_decimal),
        FieldMapping("cost", "cost", _MONEY, transform=to_decimal),
        FieldMapping("active", "active", Boolean(), transform=to_bool),
    ],
))
