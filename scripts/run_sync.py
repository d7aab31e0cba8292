"""
CLI: plataforma de field-service -> Postgres (schema raw).

Uso recomendado:
  - Ejecutar como job (cron/systemd timer), una pasada por tenant.
  - Corre fuera del request/response del API para no bloquear workers.

Variables de entorno requeridas:
  - PLATFORM_ACCESS_TOKEN
  - PLATFORM_APP_KEY
  - DATABASE_URL o DATABASE_* (ver fieldsync/core/config.py)

Ejecución:
  python scripts/run_sync.py --tenant 123456
  python scripts/run_sync.py --tenant 123456 --entities customers,jobs
  python scripts/run_sync.py --tenant 123456 --full --no-notify
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger
from dotenv import load_dotenv

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

# Cargar variables desde .env antes de importar settings.
load_dotenv(_REPO_ROOT / ".env", override=False)

from fieldsync.core.config import settings
from fieldsync.core.events import configure_logging
from fieldsync.infrastructure.database.session import close_db, init_db
from fieldsync.infrastructure.external.platform_sync.orchestrator import build_from_settings
from fieldsync.shared.constants.sync_constants import RunOutcome


def _parse_entities(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    names = [n.strip() for n in raw.split(",") if n.strip()]
    return names or None


async def _run(tenant_id: str, entities: list[str] | None, full_sync: bool, notify: bool) -> int:
    await init_db()
    orchestrator = build_from_settings()
    try:
        summaries = await orchestrator.run(tenant_id, entities, full_sync=full_sync, notify=notify)
    finally:
        await orchestrator.aclose()
        await close_db()

    for s in summaries:
        rows = f", {s.row_count} filas en raw" if s.row_count is not None else ""
        logger.info(f"{s.entity}: {s.records_fetched} registros ({s.status.value}){rows}")
    return 1 if any(s.status == RunOutcome.FAILED for s in summaries) else 0


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--tenant",
        default=settings.SYNC_DEFAULT_TENANT,
        help="Tenant a sincronizar (default SYNC_DEFAULT_TENANT).",
    )
    parser.add_argument(
        "--entities",
        default=None,
        help="Lista separada por comas (default: todas las entidades registradas).",
    )
    parser.add_argument(
        "--full",
        action="store_true",
        help="Ignora los watermarks y hace full sync.",
    )
    parser.add_argument(
        "--no-notify",
        action="store_true",
        help="No envía el resumen a Slack.",
    )
    args = parser.parse_args()

    if not args.tenant:
        raise SystemExit("Falta --tenant (o SYNC_DEFAULT_TENANT)")

    configure_logging()
    logger.info(f"Iniciando sync tenant={args.tenant}...")
    return asyncio.run(
        _run(args.tenant, _parse_entities(args.entities), args.full, not args.no_notify)
    )


if __name__ == "__main__":
    raise SystemExit(main())
