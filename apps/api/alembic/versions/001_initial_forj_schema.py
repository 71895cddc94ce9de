"""Initial FORJ schema: forges, audit chain, certificates, licenses, API keys.

Revision ID: 001
Revises:
Create Date: 2026-10-01
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'forges',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('owner_id', sa.String(length=255), nullable=False),
        sa.Column('current_state', sa.String(length=32), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('seed_hash', sa.String(length=80), nullable=True),
        sa.Column('digital_twin_id', sa.String(length=64), nullable=True),
        sa.Column('created_by', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('certified_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_forges_owner_id', 'forges', ['owner_id'])
    op.create_index('ix_forges_current_state', 'forges', ['current_state'])
    op.create_index('ix_forges_created_at', 'forges', ['created_at'])
    op.create_index('ix_forges_digital_twin_id', 'forges', ['digital_twin_id'], unique=True)

    op.create_table(
        'audit_entries',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.String(length=255), nullable=False),
        sa.Column('actor_name', sa.String(length=255), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('integrity_hash', sa.String(length=64), nullable=False),
        sa.Column('previous_hash', sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('integrity_hash')
    )
    op.create_index('ix_audit_entries_sequence', 'audit_entries', ['sequence'], unique=True)
    op.create_index('ix_audit_entries_actor_id', 'audit_entries', ['actor_id'])
    op.create_index('ix_audit_entries_action', 'audit_entries', ['action'])
    op.create_index('ix_audit_entries_entity_id', 'audit_entries', ['entity_id'])
    op.create_index('ix_audit_entries_timestamp', 'audit_entries', ['timestamp'])

    op.create_table(
        'audit_chain_head',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('last_hash', sa.String(length=64), nullable=False),
        sa.Column('length', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'certificates',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('digital_twin_id', sa.String(length=64), nullable=False),
        sa.Column('issued_at', sa.DateTime(), nullable=False),
        sa.Column('issued_by', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('verification_code', sa.String(length=19), nullable=False),
        sa.Column('lookup_key', sa.String(length=16), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_by', sa.String(length=255), nullable=True),
        sa.Column('revoked_reason', sa.Text(), nullable=True),
        sa.Column('signature', sa.Text(), nullable=False),
        sa.Column('key_id', sa.String(length=255), nullable=False),
        sa.Column('alg', sa.String(length=20), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['entity_id'], ['forges.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('verification_code')
    )
    op.create_index('ix_certificates_entity_id', 'certificates', ['entity_id'])
    op.create_index('ix_certificates_digital_twin_id', 'certificates', ['digital_twin_id'])
    op.create_index('ix_certificates_issued_at', 'certificates', ['issued_at'])
    op.create_index('ix_certificates_lookup_key', 'certificates', ['lookup_key'], unique=True)
    # At most one ACTIVE certificate per forge
    op.create_index(
        'uq_certificates_active_entity',
        'certificates',
        ['entity_id'],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
        sqlite_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_table(
        'licenses',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('digital_twin_id', sa.String(length=64), nullable=False),
        sa.Column('certificate_id', sa.String(length=64), nullable=False),
        sa.Column('grantee_id', sa.String(length=255), nullable=False),
        sa.Column('usage_type', sa.String(length=32), nullable=False),
        sa.Column('territories', sa.JSON(), nullable=False),
        sa.Column('valid_from', sa.DateTime(), nullable=False),
        sa.Column('valid_until', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('max_downloads', sa.Integer(), nullable=True),
        sa.Column('current_downloads', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_by', sa.String(length=255), nullable=True),
        sa.Column('revoked_reason', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.CheckConstraint(
            'max_downloads IS NULL OR current_downloads <= max_downloads',
            name='ck_licenses_download_quota',
        ),
        sa.CheckConstraint('valid_from < valid_until', name='ck_licenses_validity_window'),
        sa.ForeignKeyConstraint(['certificate_id'], ['certificates.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_licenses_digital_twin_id', 'licenses', ['digital_twin_id'])
    op.create_index('ix_licenses_certificate_id', 'licenses', ['certificate_id'])
    op.create_index('ix_licenses_grantee_id', 'licenses', ['grantee_id'])
    op.create_index('ix_licenses_valid_until', 'licenses', ['valid_until'])
    op.create_index('ix_licenses_status', 'licenses', ['status'])

    op.create_table(
        'api_keys',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('prefix', sa.String(length=8), nullable=False),
        sa.Column('digest', sa.String(length=64), nullable=False),
        sa.Column('actor_id', sa.String(length=255), nullable=False),
        sa.Column('actor_name', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('label', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_api_keys_id', 'api_keys', ['id'])
    op.create_index('ix_api_keys_prefix', 'api_keys', ['prefix'])
    op.create_index('ix_api_keys_digest', 'api_keys', ['digest'])
    op.create_index('ix_api_keys_actor_id', 'api_keys', ['actor_id'])


def downgrade() -> None:
    op.drop_table('api_keys')
    op.drop_table('licenses')
    op.drop_index('uq_certificates_active_entity', table_name='certificates')
    op.drop_table('certificates')
    op.drop_table('audit_chain_head')
    op.drop_table('audit_entries')
    op.drop_table('forges')
