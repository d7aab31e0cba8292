"""
Utilidades puras de fechas para el sync.

Se mantienen libres de I/O para poder testearlas fácilmente.
"""
from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Retorna la hora actual en UTC, como datetime aware."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normaliza datetime a UTC (aware).

    SQLite devuelve timestamps naive aunque la columna sea timezone=True;
    normalizamos para comparar/almacenar de forma consistente.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ensure_utc_or_none(dt: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(dt) if dt is not None else None


def isoformat_z(dt: datetime) -> str:
    """
    Serializa datetime a ISO8601 con 'Z' (UTC), formato que acepta
    el filtro modifiedOnOrAfter de la plataforma.
    """
    dt_utc = ensure_utc(dt)
    return dt_utc.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_iso_datetime(value: Any) -> Optional[datetime]:
    """
    Parsea un ISO8601 de la plataforma (e.g. "2025-12-16T10:15:00.123Z").
    Retorna None si el valor viene vacío o no es parseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    raw = str(value).strip().replace("Z", "+00:00")
    # fromisoformat (py<3.11) no acepta fracciones de 7 dígitos como las de .NET
    if "." in raw:
        head, _, tail = raw.partition(".")
        digits = ""
        rest = ""
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            digits += ch
        raw = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    try:
        return ensure_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None
