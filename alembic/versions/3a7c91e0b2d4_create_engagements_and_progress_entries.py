"""create_engagements_and_progress_entries

Revision ID: 3a7c91e0b2d4
Revises:
Create Date: 2026-10-18 10:12:41.508312

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3a7c91e0b2d4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('engagements',
    sa.Column('id', sa.String(length=64), nullable=False),
    sa.Column('client_id', sa.String(length=64), nullable=False),
    sa.Column('current_milestone', sa.Integer(), nullable=False),
    sa.Column('completed', sa.Boolean(), nullable=False),
    sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('messaging_allowed', sa.Boolean(), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('next_seq', sa.Integer(), nullable=False),
    sa.Column('progress_cache', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.CheckConstraint('NOT completed OR NOT messaging_allowed', name='ck_engagements_completed_messaging_locked'),
    sa.PrimaryKeyConstraint('id'),
    schema='engagements'
    )
    op.create_index(op.f('ix_engagements_engagements_client_id'), 'engagements', ['client_id'], unique=False, schema='engagements')
    op.create_index('idx_engagements_active_completed', 'engagements', ['is_active', 'completed'], unique=False, schema='engagements')

    op.create_table('progress_entries',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('engagement_id', sa.String(length=64), nullable=False),
    sa.Column('seq', sa.Integer(), nullable=False),
    sa.Column('actor_id', sa.String(length=64), nullable=False),
    sa.Column('actor_kind', sa.String(length=16), nullable=False),
    sa.Column('from_value', sa.Integer(), nullable=True),
    sa.Column('to_value', sa.Integer(), nullable=False),
    sa.Column('time_at_prior_milestone_s', sa.Integer(), nullable=True),
    sa.Column('note', sa.Text(), nullable=True),
    sa.Column('automatic', sa.Boolean(), nullable=False),
    sa.Column('snapshot', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['engagement_id'], ['engagements.engagements.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('engagement_id', 'seq', name='uq_progress_entries_engagement_seq'),
    schema='engagements'
    )
    op.create_index(op.f('ix_engagements_progress_entries_engagement_id'), 'progress_entries', ['engagement_id'], unique=False, schema='engagements')
    op.create_index(op.f('ix_engagements_progress_entries_to_value'), 'progress_entries', ['to_value'], unique=False, schema='engagements')
    op.create_index('idx_progress_entries_engagement_created', 'progress_entries', ['engagement_id', 'created_at'], unique=False, schema='engagements')


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_progress_entries_engagement_created', table_name='progress_entries', schema='engagements')
    op.drop_index(op.f('ix_engagements_progress_entries_to_value'), table_name='progress_entries', schema='engagements')
    op.drop_index(op.f('ix_engagements_progress_entries_engagement_id'), table_name='progress_entries', schema='engagements')
    op.drop_table('progress_entries', schema='engagements')
    op.drop_index('idx_engagements_active_completed', table_name='engagements', schema='engagements')
    op.drop_index(op.f('ix_engagements_engagements_client_id'), table_name='engagements', schema='engagements')
    op.drop_table('engagements', schema='engagements')
