"""add appeal, ledger and communication tables"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = '0001_appeals'
down_revision = None
branch_labels = None
depends_on = None

APPEAL_STATUS = sa.Enum('DRAFT', 'SUBMITTED', 'APPROVED', 'REJECTED', name='appeal_status')


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('role', sa.Enum('super_admin','itc_admin','mission_authority','accounts_user','viewer', name='user_role'), nullable=False, server_default='viewer'),
        sa.Column('is_active', sa.Boolean, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_table(
        'appeals',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('estimated_amount', sa.Numeric(14,2), nullable=False),
        sa.Column('approved_amount', sa.Numeric(14,2)),
        sa.Column('beneficiary_category', sa.String(120), nullable=False),
        sa.Column('duration', sa.String(120), nullable=False),
        sa.Column('priority', sa.Enum('high','medium','low', name='appeal_priority'), server_default='medium'),
        sa.Column('status', APPEAL_STATUS, nullable=False, server_default='DRAFT', index=True),
        sa.Column('rejection_reason', sa.Text),
        sa.Column('approval_remarks', sa.Text),
        sa.Column('approval_conditions', sa.Text),
        sa.Column('created_by', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column('submitted_at', sa.DateTime),
        sa.Column('decided_at', sa.DateTime),
        sa.Column('decided_by', sa.Integer, sa.ForeignKey('users.id')),
        sa.CheckConstraint("(status = 'APPROVED') = (approved_amount IS NOT NULL)", name='ck_appeal_approved_amount'),
        sa.CheckConstraint("(status = 'REJECTED') = (rejection_reason IS NOT NULL)", name='ck_appeal_rejection_reason'),
        sa.CheckConstraint('estimated_amount > 0', name='ck_appeal_estimated_positive'),
        sa.CheckConstraint('approved_amount IS NULL OR approved_amount > 0', name='ck_appeal_approved_positive'),
    )
    op.create_table(
        'appeal_documents',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('appeal_id', sa.Integer, sa.ForeignKey('appeals.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('content_type', sa.String(120)),
        sa.Column('size_bytes', sa.Integer),
        sa.Column('storage_ref', sa.String(500)),
        sa.Column('uploaded_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_table(
        'appeal_audit',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('appeal_id', sa.Integer, sa.ForeignKey('appeals.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('action', sa.String(40), nullable=False),
        sa.Column('actor_id', sa.Integer, nullable=False),
        sa.Column('from_status', sa.String(20)),
        sa.Column('to_status', sa.String(20)),
        sa.Column('note', sa.Text),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_table(
        'donors',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), unique=True),
        sa.Column('phone', sa.String(40)),
        sa.Column('telegram_chat_id', sa.BigInteger),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_table(
        'donor_appeals',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('donor_id', sa.Integer, sa.ForeignKey('donors.id'), nullable=False),
        sa.Column('appeal_id', sa.Integer, sa.ForeignKey('appeals.id'), nullable=False, index=True),
        sa.Column('linked_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('donor_id', 'appeal_id', name='uq_donor_appeal'),
    )
    op.create_table(
        'donations',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('donor_id', sa.Integer, sa.ForeignKey('donors.id'), nullable=False),
        sa.Column('appeal_id', sa.Integer, sa.ForeignKey('appeals.id'), nullable=False),
        sa.Column('amount', sa.Numeric(14,2), nullable=False),
        sa.Column('mode', sa.Enum('cheque','bank_transfer', name='donation_mode'), nullable=False),
        sa.Column('cheque_number', sa.String(40)),
        sa.Column('cheque_date', sa.Date),
        sa.Column('transaction_ref', sa.String(80)),
        sa.Column('receiving_entity', sa.String(120)),
        sa.Column('received_at', sa.DateTime, server_default=sa.func.now(), index=True),
        sa.Column('received_by', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.Enum('PENDING','CONFIRMED','FAILED', name='donation_status'), nullable=False, server_default='PENDING'),
        sa.Column('failure_reason', sa.Text),
        sa.CheckConstraint('amount > 0', name='ck_donation_amount_positive'),
    )
    op.create_index('idx_donations_appeal_status', 'donations', ['appeal_id', 'status'])
    op.create_table(
        'utilizations',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('appeal_id', sa.Integer, sa.ForeignKey('appeals.id'), nullable=False, index=True),
        sa.Column('utilization_date', sa.Date, nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('amount_utilized', sa.Numeric(14,2), nullable=False),
        sa.Column('vendor_name', sa.String(255)),
        sa.Column('vendor_details', sa.Text),
        sa.Column('invoice_number', sa.String(80)),
        sa.Column('po_number', sa.String(80)),
        sa.Column('payment_status', sa.Enum('pending','processing','paid', name='payment_status'), server_default='pending'),
        sa.Column('created_by', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.CheckConstraint('amount_utilized > 0', name='ck_utilization_amount_positive'),
    )
    op.create_table(
        'asset_links',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('utilization_id', sa.Integer, sa.ForeignKey('utilizations.id'), nullable=False, index=True),
        sa.Column('appeal_id', sa.Integer, sa.ForeignKey('appeals.id'), nullable=False, index=True),
        sa.Column('asset_registration_number', sa.String(80), nullable=False),
        sa.Column('asset_name', sa.String(255), nullable=False),
        sa.Column('asset_owner', sa.Enum('itc','mission', name='asset_owner'), nullable=False),
        sa.Column('notes', sa.Text),
        sa.Column('linked_by', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('linked_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('utilization_id', 'asset_registration_number', name='uq_asset_link'),
    )
    op.create_table(
        'beneficiaries',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('appeal_id', sa.Integer, sa.ForeignKey('appeals.id'), nullable=False, index=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('phone', sa.String(40)),
        sa.Column('email', sa.String(255)),
        sa.Column('location', sa.String(255)),
        sa.Column('category', sa.String(120)),
        sa.Column('impact_received', sa.Text),
        sa.Column('feedback_rating', sa.Integer),
        sa.Column('feedback_text', sa.Text),
        sa.Column('registered_by', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('registered_at', sa.DateTime, server_default=sa.func.now()),
        sa.CheckConstraint('feedback_rating IS NULL OR feedback_rating BETWEEN 1 AND 5', name='ck_beneficiary_rating'),
    )
    op.create_table(
        'communications',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('appeal_id', sa.Integer, sa.ForeignKey('appeals.id'), nullable=False, index=True),
        sa.Column('donor_id', sa.Integer, sa.ForeignKey('donors.id'), nullable=False),
        sa.Column('channel', sa.Enum('EMAIL','TELEGRAM','SMS','WHATSAPP', name='comm_channel'), nullable=False),
        sa.Column('subject', sa.String(255)),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('status', sa.Enum('SENT','FAILED', name='comm_status'), nullable=False),
        sa.Column('trigger', sa.Enum('APPROVAL','REJECTION','MANUAL', name='comm_trigger'), nullable=False),
        sa.Column('error', sa.Text),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), index=True),
    )
    op.create_table(
        'notification_outbox',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('appeal_id', sa.Integer, sa.ForeignKey('appeals.id'), nullable=False),
        sa.Column('trigger_type', APPEAL_STATUS, nullable=False),
        sa.Column('payload', JSONB, server_default=sa.text("'{}'::jsonb")),
        sa.Column('attempts', sa.Integer, server_default='0'),
        sa.Column('last_error', sa.Text),
        sa.Column('status', sa.Enum('pending','delivered','abandoned', name='outbox_status'), server_default='pending', index=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table('notification_outbox')
    op.drop_table('communications')
    op.drop_table('beneficiaries')
    op.drop_table('asset_links')
    op.drop_table('utilizations')
    op.drop_index('idx_donations_appeal_status', table_name='donations')
    op.drop_table('donations')
    op.drop_table('donor_appeals')
    op.drop_table('donors')
    op.drop_table('appeal_audit')
    op.drop_table('appeal_documents')
    op.drop_table('appeals')
    op.drop_table('users')
