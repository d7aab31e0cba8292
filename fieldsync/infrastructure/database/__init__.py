"""
Configuración de base de datos.

Importa los modelos para que se registren con Base
antes de crear las tablas.
"""
from fieldsync.infrastructure.database.models import SyncStateModel, raw_table_for
