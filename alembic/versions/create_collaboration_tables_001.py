"""Create collaboration tables

This migration adds:
1. users, bids and campaigns (the parties)
2. requests table
3. conversations and messages tables
4. transactions and escrow_holds tables (the ledger)
5. commission_settings and admin_payment_tracking tables
6. wallets and notifications tables

Revision ID: create_collaboration_tables_001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = 'create_collaboration_tables_001'
down_revision = None
branch_labels = None
depends_on = None

FLOW_STATES = (
    'influencer_responding', 'brand_owner_details', 'influencer_reviewing', 'brand_owner_pricing',
    'influencer_price_response', 'brand_owner_negotiation', 'influencer_negotiation_input',
    'brand_owner_negotiation_review', 'payment_pending', 'payment_completed', 'work_in_progress',
    'work_submitted', 'work_final_review', 'admin_final_payment_pending', 'admin_final_payment_complete',
    'work_approved', 'work_rejected', 'price_rejected', 'project_rejected', 'closed',
)


def upgrade():
    # 1. Parties
    op.create_table('users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), unique=True, index=True),
        sa.Column('name', sa.String(255)),
        sa.Column('user_type', sa.Enum('brand_owner', 'influencer', 'admin', name='usertype'), server_default='brand_owner'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    for table, status_enum in (('bids', 'bidstatus'), ('campaigns', 'campaignstatus')):
        op.create_table(table,
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('created_by', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
            sa.Column('title', sa.String(255), nullable=False),
            sa.Column('description', sa.Text),
            sa.Column('budget', sa.BigInteger, server_default='0'),
            sa.Column('status', sa.Enum('open', 'in_progress', 'closed', name=status_enum), server_default='open'),
            sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        )

    # 2. Requests
    op.create_table('requests',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('bid_id', sa.String(36), sa.ForeignKey('bids.id'), nullable=True),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.id'), nullable=True),
        sa.Column('influencer_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('proposed_amount', sa.BigInteger, server_default='0'),
        sa.Column('final_agreed_amount', sa.BigInteger),
        sa.Column('status', sa.Enum('connected', 'negotiating', 'finalized', 'paid', 'work_submitted',
                                    'completed', 'rejected', 'cancelled', name='requeststatusdb'),
                  server_default='connected'),
        sa.Column('completed_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # 3. Conversations and messages
    op.create_table('conversations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('brand_owner_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('influencer_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('bid_id', sa.String(36), sa.ForeignKey('bids.id'), nullable=True),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.id'), nullable=True),
        sa.Column('request_id', sa.String(36), sa.ForeignKey('requests.id'), nullable=True),
        sa.Column('flow_state', sa.Enum(*FLOW_STATES, name='flowstatedb'), nullable=False),
        sa.Column('awaiting_role', sa.Enum('brand_owner', 'influencer', 'admin', name='awaitingroledb'), nullable=True),
        sa.Column('chat_status', sa.Enum('automated', 'real_time', 'closed', name='chatstatusdb'), nullable=False),
        sa.Column('flow_data', sa.JSON),
        sa.Column('negotiation_history', sa.JSON),
        sa.Column('revision_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('max_revisions', sa.Integer, nullable=False, server_default='3'),
        sa.Column('revision_history', sa.JSON),
        sa.Column('current_action_data', sa.JSON),
        sa.Column('message_seq', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('bid_id', 'brand_owner_id', 'influencer_id', name='uq_conversation_bid_parties'),
        sa.UniqueConstraint('campaign_id', 'brand_owner_id', 'influencer_id', name='uq_conversation_campaign_parties'),
    )

    op.create_table('messages',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('conversation_id', sa.String(36), sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.String(36), nullable=False),
        sa.Column('receiver_id', sa.String(36), nullable=True),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('message_type', sa.Enum('automated', 'user', 'system_payment_update', name='messagetypedb'), nullable=False),
        sa.Column('action_required', sa.Boolean, server_default=sa.false()),
        sa.Column('action_data', sa.JSON),
        sa.Column('attachments', sa.JSON),
        sa.Column('seq', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_read', sa.Boolean, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_messages_conversation_order', 'messages', ['conversation_id', 'created_at', 'seq'])

    # 4. Ledger and escrow
    op.create_table('transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('conversation_id', sa.String(36), nullable=False, index=True),
        sa.Column('direction', sa.Enum('in', 'out', name='transactiondirectiondb'), nullable=False),
        sa.Column('stage', sa.Enum('order_created', 'verified', 'escrow_hold', 'escrow_release', 'advance',
                                   'final', 'refund', 'received', name='transactionstagedb'), nullable=False),
        sa.Column('amount_paise', sa.BigInteger, nullable=False),
        sa.Column('fee_paise', sa.BigInteger, server_default='0'),
        sa.Column('status', sa.Enum('created', 'held', 'completed', name='transactionstatusdb'), nullable=False),
        sa.Column('sender_id', sa.String(36)),
        sa.Column('receiver_id', sa.String(36)),
        sa.Column('external_ref', sa.String(255), index=True),
        sa.Column('metadata_json', sa.JSON),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    op.create_table('escrow_holds',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('conversation_id', sa.String(36), sa.ForeignKey('conversations.id'), nullable=False, index=True),
        sa.Column('transaction_id', sa.String(36), sa.ForeignKey('transactions.id'), nullable=False),
        sa.Column('amount_paise', sa.BigInteger, nullable=False),
        sa.Column('status', sa.Enum('held', 'released', 'refunded', name='escrowstatusdb'), nullable=False),
        sa.Column('released_at', sa.DateTime),
        sa.Column('release_transaction_id', sa.String(36), sa.ForeignKey('transactions.id'), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 5. Commission and admin-managed payouts
    op.create_table('commission_settings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('percentage', sa.Numeric(5, 2), nullable=False),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        sa.Column('effective_from', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('created_by', sa.String(36)),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table('admin_payment_tracking',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('conversation_id', sa.String(36), sa.ForeignKey('conversations.id'), unique=True, nullable=False),
        sa.Column('total_amount_paise', sa.BigInteger, nullable=False),
        sa.Column('commission_amount_paise', sa.BigInteger, nullable=False),
        sa.Column('net_amount_paise', sa.BigInteger, nullable=False),
        sa.Column('advance_amount_paise', sa.BigInteger, nullable=False),
        sa.Column('final_amount_paise', sa.BigInteger, nullable=False),
        sa.Column('commission_percentage', sa.Numeric(5, 2), nullable=False),
        sa.Column('advance_payment_status', sa.Enum('pending', 'admin_received', 'admin_confirmed',
                                                    name='advancepaymentstatusdb'), server_default='pending'),
        sa.Column('final_payment_status', sa.Enum('pending', 'admin_confirmed', 'refunded',
                                                  name='finalpaymentstatusdb'), server_default='pending'),
        sa.Column('proofs', sa.JSON),
        sa.Column('brand_payment_received_at', sa.DateTime),
        sa.Column('advance_confirmed_at', sa.DateTime),
        sa.Column('final_confirmed_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    # 6. Wallets and notifications
    op.create_table('wallets',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False),
        sa.Column('balance', sa.BigInteger, server_default='0'),
        sa.Column('hold_balance', sa.BigInteger, server_default='0'),
        sa.Column('total_earned', sa.BigInteger, server_default='0'),
        sa.Column('total_spent', sa.BigInteger, server_default='0'),
        sa.Column('currency', sa.String(3), server_default='INR'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table('notifications',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text),
        sa.Column('data', sa.JSON),
        sa.Column('read', sa.Boolean, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )


def downgrade():
    for table in (
        'notifications', 'wallets', 'admin_payment_tracking', 'commission_settings', 'escrow_holds',
        'transactions', 'messages', 'conversations', 'requests', 'campaigns', 'bids', 'users',
    ):
        op.drop_table(table)
