"""create_raw_sync_tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:12:41.118230

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from fieldsync.infrastructure.database.models import raw_table_for
from fieldsync.infrastructure.external.platform_sync.table_mappings import resolve_entity_types


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = 'raw'


def upgrade() -> None:
    """Upgrade schema."""
    op.execute(f'CREATE SCHEMA IF NOT EXISTS "{SCHEMA}"')
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table('sync_state', schema=SCHEMA):
        op.create_table('sync_state',
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('entity_name', sa.String(length=100), nullable=False),
        sa.Column('last_full_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_incremental_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('record_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='idle'),
        sa.Column('last_run_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_run_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('tenant_id', 'entity_name'),
        schema=SCHEMA
        )

    # Una tabla por entidad registrada, con la forma que define el registro
    for descriptor in resolve_entity_types():
        if not inspector.has_table(descriptor.table_name, schema=SCHEMA):
            raw_table_for(descriptor).create(bind)
            op.create_index(
                f'ix_{descriptor.table_name}_modified_on',
                descriptor.table_name,
                ['tenant_id', 'modified_on'],
                schema=SCHEMA,
            )


def downgrade() -> None:
    """Downgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for descriptor in resolve_entity_types():
        if inspector.has_table(descriptor.table_name, schema=SCHEMA):
            op.drop_table(descriptor.table_name, schema=SCHEMA)
    if inspector.has_table('sync_state', schema=SCHEMA):
        op.drop_table('sync_state', schema=SCHEMA)
