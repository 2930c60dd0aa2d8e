"""Create interaction and chat tables

Revision ID: 3c1e5a7b9d20
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '3c1e5a7b9d20'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ### users: only the columns this service reads or maintains ###
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=True, unique=True),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('avatar', sa.String(255), nullable=True),
        sa.Column('gender', sa.String(20), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('country', sa.String(100), nullable=True),
        sa.Column('type', sa.String(10), nullable=False, server_default='real'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('status', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('total_likes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_matches', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_rejects', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_active', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
        sa.CheckConstraint('total_likes >= 0', name='ck_users_total_likes'),
        sa.CheckConstraint('total_matches >= 0', name='ck_users_total_matches'),
        sa.CheckConstraint('total_rejects >= 0', name='ck_users_total_rejects'),
    )

    # ### user_interactions: one row per (actor, target) ###
    op.create_table(
        'user_interactions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('actor_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('target_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.String(10), nullable=False),
        sa.Column('is_mutual', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
        sa.UniqueConstraint('actor_id', 'target_id', name='uq_interactions_actor_target'),
    )
    op.create_index('ix_interactions_target', 'user_interactions', ['target_id'])
    op.create_index('ix_interactions_actor_action', 'user_interactions', ['actor_id', 'action'])

    # ### conversations: one row per unordered pair, lower id first ###
    op.create_table(
        'conversations',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('participant_1_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('participant_2_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('last_message_id', sa.Integer(), nullable=True),
        sa.Column('last_message_time', sa.DateTime(), nullable=True),
        sa.Column('unread_count_p1', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unread_count_p2', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_archived_p1', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_archived_p2', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_pinned_p1', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_pinned_p2', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('chat_status_p1', sa.String(10), nullable=False, server_default='active'),
        sa.Column('chat_status_p2', sa.String(10), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
        sa.UniqueConstraint('participant_1_id', 'participant_2_id', name='uq_conversations_pair'),
        sa.CheckConstraint('participant_1_id < participant_2_id', name='ck_conversations_canonical'),
    )
    op.create_index('ix_conversations_p2', 'conversations', ['participant_2_id'])

    # ### messages ###
    op.create_table(
        'messages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('chat_id', sa.Integer(), sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('receiver_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('body', sa.Text(), nullable=False, server_default=''),
        # JSON for SQLite, JSONB for Postgres
        sa.Column('attachments', sa.JSON().with_variant(postgresql.JSONB(), 'postgresql'), nullable=True),
        sa.Column('message_type', sa.String(10), nullable=False, server_default='text'),
        sa.Column('reply_to_id', sa.Integer(), sa.ForeignKey('messages.id', ondelete='SET NULL'), nullable=True),
        sa.Column('sender_kind', sa.String(10), nullable=False, server_default='human'),
        sa.Column('status', sa.String(10), nullable=False, server_default='sent'),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
    )
    op.create_index('ix_messages_chat_created_id', 'messages', ['chat_id', 'created_at', 'id'])
    op.create_index('ix_messages_receiver_unread', 'messages', ['chat_id', 'receiver_id', 'is_read'])


def downgrade() -> None:
    op.drop_index('ix_messages_receiver_unread', table_name='messages')
    op.drop_index('ix_messages_chat_created_id', table_name='messages')
    op.drop_table('messages')

    op.drop_index('ix_conversations_p2', table_name='conversations')
    op.drop_table('conversations')

    op.drop_index('ix_interactions_actor_action', table_name='user_interactions')
    op.drop_index('ix_interactions_target', table_name='user_interactions')
    op.drop_table('user_interactions')

    op.drop_table('users')
