"""certificate fulfillment schema

Revision ID: c7e1a9f04b21
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the passvault schema from scratch:
- locations: pickup sites with bcrypt PIN hashes
- certificates: passes, their lifecycle status and timestamps
- certificate_audit_log: append-only action history
- session_tokens: PIN-issued capability tokens
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c7e1a9f04b21'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """
    Create all tables.

    Money is integer cents. certificates.version_id is bumped by every
    conditional UPDATE; status writes are keyed on the observed status.
    """

    # ============================================================================
    # locations: pickup sites
    # ============================================================================
    op.create_table(
        'locations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=128), nullable=True),
        sa.Column('state', sa.String(length=64), nullable=True),
        sa.Column('zip', sa.String(length=16), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('staff_pin_hash', sa.String(length=255), nullable=True),
        sa.Column('admin_pin_hash', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_locations_active', 'locations', ['active'])
    op.create_index('ix_locations_active_sort', 'locations', ['active', 'sort_order'])

    # ============================================================================
    # certificates: one row per issued pass, never deleted
    # ============================================================================
    op.create_table(
        'certificates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('certificate_number', sa.String(length=32), nullable=False),
        sa.Column('qr_code_data', sa.Text(), nullable=True),
        sa.Column('auction_id', sa.String(length=64), nullable=True),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('claim_location_id', sa.Integer(), nullable=True),
        sa.Column('workflow', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('original_price_cents', sa.Integer(), nullable=True),
        sa.Column('final_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('retail_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('voided', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('voided_reason', sa.String(length=255), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('admin_assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('prepared_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('picked_up_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('redeemed_location', sa.String(length=255), nullable=True),
        sa.Column('redeemed_location_id', sa.Integer(), nullable=True),
        sa.Column('redeemed_by_staff', sa.String(length=128), nullable=True),
        sa.Column('pos_transaction_id', sa.String(length=128), nullable=True),
        sa.Column('inventory_returned', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('inventory_returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('inventory_returned_by', sa.String(length=128), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['claim_location_id'], ['locations.id'], ),
        sa.ForeignKeyConstraint(['redeemed_location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_certificates_certificate_number', 'certificates', ['certificate_number'], unique=True)
    op.create_index('ix_certificates_auction_id', 'certificates', ['auction_id'])
    op.create_index('ix_certificates_owner_id', 'certificates', ['owner_id'])
    op.create_index('ix_certificates_claim_location_id', 'certificates', ['claim_location_id'])
    op.create_index('ix_certificates_status', 'certificates', ['status'])
    op.create_index('ix_certificates_expires_at', 'certificates', ['expires_at'])
    op.create_index('ix_certificates_created_at', 'certificates', ['created_at'])
    op.create_index('ix_certificates_location_status', 'certificates', ['claim_location_id', 'status'])
    # Expiry sweep predicate
    op.create_index('ix_certificates_sweep', 'certificates', ['voided', 'redeemed_at', 'expires_at'])

    # ============================================================================
    # certificate_audit_log: append-only (ORM listeners refuse update/delete)
    # ============================================================================
    op.create_table(
        'certificate_audit_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('certificate_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('performed_by', sa.String(length=128), nullable=True),
        sa.Column('performed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['certificate_id'], ['certificates.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_certificate_audit_log_certificate_id', 'certificate_audit_log', ['certificate_id'])
    op.create_index('ix_certificate_audit_log_action', 'certificate_audit_log', ['action'])
    op.create_index('ix_certificate_audit_cert_time', 'certificate_audit_log', ['certificate_id', 'performed_at'])

    # ============================================================================
    # session_tokens: only the SHA-256 of each token is stored
    # ============================================================================
    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('scope', sa.String(length=16), nullable=False),
        sa.Column('identity', sa.String(length=128), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_location_active', 'session_tokens', ['location_id', 'is_revoked'])


def downgrade():
    op.drop_index('ix_session_tokens_location_active', table_name='session_tokens')
    op.drop_index('ix_session_tokens_expires_at', table_name='session_tokens')
    op.drop_index('ix_session_tokens_token_hash', table_name='session_tokens')
    op.drop_table('session_tokens')

    op.drop_index('ix_certificate_audit_cert_time', table_name='certificate_audit_log')
    op.drop_index('ix_certificate_audit_log_action', table_name='certificate_audit_log')
    op.drop_index('ix_certificate_audit_log_certificate_id', table_name='certificate_audit_log')
    op.drop_table('certificate_audit_log')

    op.drop_index('ix_certificates_sweep', table_name='certificates')
    op.drop_index('ix_certificates_location_status', table_name='certificates')
    op.drop_index('ix_certificates_created_at', table_name='certificates')
    op.drop_index('ix_certificates_expires_at', table_name='certificates')
    op.drop_index('ix_certificates_status', table_name='certificates')
    op.drop_index('ix_certificates_claim_location_id', table_name='certificates')
    op.drop_index('ix_certificates_owner_id', table_name='certificates')
    op.drop_index('ix_certificates_auction_id', table_name='certificates')
    op.drop_index('ix_certificates_certificate_number', table_name='certificates')
    op.drop_table('certificates')

    op.drop_index('ix_locations_active_sort', table_name='locations')
    op.drop_index('ix_locations_active', table_name='locations')
    op.drop_table('locations')
