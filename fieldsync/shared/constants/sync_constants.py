"""
Constantes del motor de sincronización.
"""
from enum import Enum


class SyncStatus(str, Enum):
    """Estados persistidos en sync_state por (tenant, entidad)."""
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncMode(str, Enum):
    """Modo de una corrida: sin filtro (full) o filtrada por watermark."""
    FULL = "full"
    INCREMENTAL = "incremental"


class RunOutcome(str, Enum):
    """Resultado de una entidad dentro de una pasada del orquestador."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"  # ya habia un run in_progress
    CANCELLED = "cancelled"


class ErrorKind(str, Enum):
    """Taxonomía de errores del sync."""
    TRANSIENT = "transient"
    CREDENTIAL = "credential"
    VALIDATION = "validation"
    STORE = "store"
    NOTIFIER = "notifier"


# Schema Postgres donde viven las tablas crudas y el estado de sync
RAW_SCHEMA = "raw"

DEFAULT_PAGE_SIZE = 100
