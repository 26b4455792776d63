"""configuration_engine

Revision ID: 001_configuration_engine
Revises:
Create Date: 2026-10-18

Creates the tables of the configuration engine:
- companies, roles, users
- dropdown_masters (company-scoped option lists)
- configurations (inspection / trade-in templates, JSONB tree columns)
  with the partial unique index uq_configuration_default
- vehicles (result snapshots + last-used configuration ids)

Every create is guarded by _table_exists so the migration is idempotent,
safe to run after Base.metadata.create_all() already built the tables.
"""
import logging
from alembic import op
import sqlalchemy as sa
from sqlalchemy import text
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = '001_configuration_engine'
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.001")


def _table_exists(conn, table_name: str) -> bool:
    result = conn.execute(
        text(
            "SELECT EXISTS("
            "  SELECT 1 FROM information_schema.tables"
            "  WHERE table_name = :tname"
            ")"
        ),
        {"tname": table_name},
    )
    return bool(result.scalar())


def _uuid_pk():
    return sa.Column('id', UUID(as_uuid=False), primary_key=True)


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    conn = op.get_bind()

    # ── companies ─────────────────────────────────────────────────────────────
    if not _table_exists(conn, 'companies'):
        op.create_table(
            'companies',
            _uuid_pk(),
            sa.Column('name', sa.String(255), nullable=False),
            sa.Column('email', sa.String(255), nullable=True),
            sa.Column('s3_config', JSONB, nullable=True),
            sa.Column('is_active', sa.Boolean, server_default=sa.true()),
            _created_at(),
        )
        logger.info("Created table: companies")

    # ── roles / users ─────────────────────────────────────────────────────────
    if not _table_exists(conn, 'roles'):
        op.create_table(
            'roles',
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            sa.Column('name', sa.String(50), nullable=False, unique=True),
        )
        op.execute(
            "INSERT INTO roles (name) VALUES ('company_super_admin'), ('company_admin') "
            "ON CONFLICT (name) DO NOTHING"
        )
        logger.info("Created table: roles")

    if not _table_exists(conn, 'users'):
        op.create_table(
            'users',
            _uuid_pk(),
            sa.Column('company_id', UUID(as_uuid=False), sa.ForeignKey('companies.id'), nullable=True),
            sa.Column('email', sa.String(255), nullable=False, unique=True),
            sa.Column('full_name', sa.String(255), nullable=True),
            sa.Column('role_id', sa.Integer, sa.ForeignKey('roles.id'), nullable=True),
            sa.Column('is_active', sa.Boolean, server_default=sa.true()),
            _created_at(),
        )
        logger.info("Created table: users")

    # ── dropdown_masters ──────────────────────────────────────────────────────
    if not _table_exists(conn, 'dropdown_masters'):
        op.create_table(
            'dropdown_masters',
            _uuid_pk(),
            sa.Column('company_id', UUID(as_uuid=False), sa.ForeignKey('companies.id'), nullable=False, index=True),
            sa.Column('dropdown_name', sa.String(100), nullable=False),
            sa.Column('display_name', sa.String(255), nullable=False),
            sa.Column('description', sa.Text, nullable=True),
            sa.Column('allow_multiple_selection', sa.Boolean, server_default=sa.false()),
            sa.Column('is_active', sa.Boolean, server_default=sa.true()),
            sa.Column('values', JSONB, server_default=text("'[]'::jsonb")),
            _created_at(),
            sa.UniqueConstraint('company_id', 'dropdown_name', name='uq_dropdown_name'),
        )
        logger.info("Created table: dropdown_masters")

    # ── configurations ────────────────────────────────────────────────────────
    if not _table_exists(conn, 'configurations'):
        op.create_table(
            'configurations',
            _uuid_pk(),
            sa.Column('company_id', UUID(as_uuid=False), sa.ForeignKey('companies.id'), nullable=False, index=True),
            sa.Column('purpose', sa.String(20), nullable=False),
            sa.Column('config_name', sa.String(255), nullable=False),
            sa.Column('description', sa.Text, nullable=True),
            sa.Column('version', sa.String(20), server_default='1.0'),
            sa.Column('is_active', sa.Boolean, server_default=sa.true()),
            sa.Column('is_default', sa.Boolean, server_default=sa.false()),
            sa.Column('created_by', UUID(as_uuid=False), sa.ForeignKey('users.id'), nullable=True),
            sa.Column('settings', JSONB, server_default=text("'{}'::jsonb")),
            sa.Column('valuation_settings', JSONB, nullable=True),
            sa.Column('categories', JSONB, server_default=text("'[]'::jsonb")),
            sa.Column('sections', JSONB, server_default=text("'[]'::jsonb")),
            sa.Column('calculations', JSONB, server_default=text("'[]'::jsonb")),
            _created_at(),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.UniqueConstraint('company_id', 'purpose', 'config_name', name='uq_configuration_name'),
        )
        # At most one default configuration per company and purpose
        op.create_index(
            'uq_configuration_default', 'configurations', ['company_id', 'purpose'],
            unique=True, postgresql_where=text('is_default'),
        )
        logger.info("Created table: configurations")

    # ── vehicles ──────────────────────────────────────────────────────────────
    if not _table_exists(conn, 'vehicles'):
        op.create_table(
            'vehicles',
            _uuid_pk(),
            sa.Column('company_id', UUID(as_uuid=False), sa.ForeignKey('companies.id'), nullable=False, index=True),
            sa.Column('vehicle_stock_id', sa.Integer, nullable=False),
            sa.Column('vehicle_type', sa.String(20), nullable=False),
            sa.Column('make', sa.String(100), nullable=True),
            sa.Column('model', sa.String(100), nullable=True),
            sa.Column('year', sa.Integer, nullable=True),
            sa.Column('vin', sa.String(50), nullable=True),
            sa.Column('plate_no', sa.String(50), nullable=True),
            sa.Column('vehicle_hero_image', sa.Text, nullable=True),
            sa.Column('inspection_result', JSONB, server_default=text("'[]'::jsonb")),
            sa.Column('trade_in_result', JSONB, server_default=text("'[]'::jsonb")),
            sa.Column('inspection_report_pdf', JSONB, server_default=text("'[]'::jsonb")),
            sa.Column('tradein_report_pdf', JSONB, server_default=text("'[]'::jsonb")),
            sa.Column('last_inspection_config_id', UUID(as_uuid=False), sa.ForeignKey('configurations.id'), nullable=True),
            sa.Column('last_tradein_config_id', UUID(as_uuid=False), sa.ForeignKey('configurations.id'), nullable=True),
            _created_at(),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.UniqueConstraint('company_id', 'vehicle_stock_id', 'vehicle_type', name='uq_vehicle_stock'),
        )
        logger.info("Created table: vehicles")


def downgrade() -> None:
    conn = op.get_bind()
    for table in ('vehicles', 'configurations', 'dropdown_masters', 'users', 'roles', 'companies'):
        if _table_exists(conn, table):
            op.drop_table(table)
            logger.info("Dropped table: %s", table)
