"""initial wardrobe freshness schema

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('clothing_item',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('details', postgresql.JSON(), nullable=True),
        sa.Column('embedding', postgresql.JSON(), nullable=True),
        sa.Column('wear_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_worn_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cleanliness_status', sa.String(length=32), nullable=False, server_default='fresh'),
        sa.Column('freshness_score', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('wash_preference', sa.String(length=32), nullable=False, server_default='manual'),
        sa.Column('suggestion_dismissed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.CheckConstraint('freshness_score >= 0 AND freshness_score <= 100', name='ck_clothing_item_score_range'),
    )
    op.create_index('ix_clothing_item_user_id', 'clothing_item', ['user_id'])
    op.create_index('ix_clothing_item_user_status', 'clothing_item', ['user_id', 'cleanliness_status'])
    op.create_index('ix_clothing_item_user_category', 'clothing_item', ['user_id', 'category'])

    op.create_table('laundry_entry',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('clothing_item_id', sa.Uuid(), sa.ForeignKey('clothing_item.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='in_laundry'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('added_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('expected_return', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='medium'),
    )
    op.create_index(
        'uq_laundry_entry_active_item',
        'laundry_entry',
        ['clothing_item_id'],
        unique=True,
        postgresql_where=sa.text('active'),
    )
    op.create_index('ix_laundry_entry_user_status', 'laundry_entry', ['user_id', 'status'])

    op.create_table('wash_decision_record',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('clothing_item_id', sa.Uuid(), sa.ForeignKey('clothing_item.id', ondelete='CASCADE'), nullable=False),
        sa.Column('decision', sa.String(length=32), nullable=False),
        sa.Column('item_type', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )
    op.create_index('ix_wash_decision_user_type', 'wash_decision_record', ['user_id', 'item_type'])

    op.create_table('wear_learning_state',
        sa.Column('user_id', sa.String(length=64), primary_key=True),
        sa.Column('category', sa.String(length=64), primary_key=True),
        sa.Column('dismiss_rate', sa.Float(), nullable=False),
        sa.Column('decay_constant', sa.Float(), nullable=False),
        sa.Column('decisions_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )

    op.create_table('recommendation',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('context', postgresql.JSON(), nullable=False),
        sa.Column('items_by_category', postgresql.JSON(), nullable=False),
        sa.Column('weather', postgresql.JSON(), nullable=True),
        sa.Column('narrative', sa.Text(), nullable=True),
        sa.Column('degraded', postgresql.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )
    op.create_index('ix_recommendation_user_id', 'recommendation', ['user_id'])

    op.create_table('recommendation_item',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('recommendation_id', sa.Uuid(), sa.ForeignKey('recommendation.id', ondelete='CASCADE'), nullable=False),
        sa.Column('clothing_item_id', sa.Uuid(), sa.ForeignKey('clothing_item.id', ondelete='CASCADE'), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('similarity', sa.Float(), nullable=False),
        sa.Column('score', sa.Float(), nullable=False),
    )
    op.create_index('ix_recommendation_item_rec', 'recommendation_item', ['recommendation_id'])

    op.create_table('recommendation_wear',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('recommendation_id', sa.Uuid(), sa.ForeignKey('recommendation.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('worn_item_ids', postgresql.JSON(), nullable=False),
        sa.Column('skipped_item_ids', postgresql.JSON(), nullable=True),
        sa.Column('worn_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )

    op.create_table('feedback',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('recommendation_id', sa.Uuid(), sa.ForeignKey('recommendation.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('specific_aspects', postgresql.JSON(), nullable=True),
        sa.Column('would_wear_again', sa.Boolean(), nullable=True),
        sa.Column('improvements', postgresql.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.UniqueConstraint('user_id', 'recommendation_id', name='uq_feedback_user_recommendation'),
        sa.CheckConstraint('rating >= 1 AND rating <= 5', name='ck_feedback_rating_range'),
    )

    op.create_table('feedback_quality',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('occasion', sa.String(length=32), nullable=False),
        sa.Column('season', sa.String(length=32), nullable=False),
        sa.Column('scope', sa.String(length=16), nullable=False),
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.UniqueConstraint('user_id', 'occasion', 'season', 'scope', 'key', name='uq_feedback_quality_bucket'),
    )


def downgrade() -> None:
    op.drop_table('feedback_quality')
    op.drop_table('feedback')
    op.drop_table('recommendation_wear')
    op.drop_index('ix_recommendation_item_rec', table_name='recommendation_item')
    op.drop_table('recommendation_item')
    op.drop_index('ix_recommendation_user_id', table_name='recommendation')
    op.drop_table('recommendation')
    op.drop_table('wear_learning_state')
    op.drop_index('ix_wash_decision_user_type', table_name='wash_decision_record')
    op.drop_table('wash_decision_record')
    op.drop_index('ix_laundry_entry_user_status', table_name='laundry_entry')
    op.drop_index('uq_laundry_entry_active_item', table_name='laundry_entry')
    op.drop_table('laundry_entry')
    op.drop_index('ix_clothing_item_user_category', table_name='clothing_item')
    op.drop_index('ix_clothing_item_user_status', table_name='clothing_item')
    op.drop_index('ix_clothing_item_user_id', table_name='clothing_item')
    op.drop_table('clothing_item')
