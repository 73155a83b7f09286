"""Create startups, data_sources, success_stories and job_runs

Revision ID: 20261019_initial_schema
Revises:
Create Date: 2026-10-19

startups.normalized_name is unique so concurrent collectors resolving the
same company converge on one row via INSERT ... ON CONFLICT.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from typing import Union


# revision identifiers, used by Alembic.
revision: str = '20261019_initial_schema'
down_revision: Union[str, None] = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(JSONB(), 'postgresql')


def upgrade() -> None:
    op.create_table(
        'startups',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('normalized_name', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('website_url', sa.String(), nullable=True),
        sa.Column('founded_date', sa.Date(), nullable=True),
        sa.Column('funding_amount', sa.BigInteger(), nullable=True),
        sa.Column('funding_stage', sa.String(), nullable=True),
        sa.Column('investors', JSONType, nullable=True),
        sa.Column('current_valuation', sa.BigInteger(), nullable=True),
        sa.Column('valuation_date', sa.Date(), nullable=True),
        sa.Column('employee_count', sa.Integer(), nullable=True),
        sa.Column('location', sa.String(), nullable=True),
        sa.Column('industry', sa.String(), nullable=True),
        sa.Column('tags', JSONType, nullable=True),
        sa.Column('github_repo', sa.String(), nullable=True),
        sa.Column('product_hunt_url', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_startups_name', 'startups', ['name'])
    op.create_index('ix_startups_normalized_name', 'startups', ['normalized_name'], unique=True)
    op.create_index('ix_startups_created_at', 'startups', ['created_at'])

    op.create_table(
        'data_sources',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('startup_id', sa.Integer(), nullable=False),
        sa.Column('source_type', sa.String(), nullable=False),
        sa.Column('source_url', sa.String(), nullable=True),
        sa.Column('raw_data', JSONType, nullable=True),
        sa.Column('extracted_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['startup_id'], ['startups.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_data_sources_startup_id', 'data_sources', ['startup_id'])
    op.create_index('ix_data_sources_source_type', 'data_sources', ['source_type'])
    op.create_index('ix_data_sources_extracted_at', 'data_sources', ['extracted_at'])

    op.create_table(
        'success_stories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('startup_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('content', sa.String(), nullable=False),
        sa.Column('summary', sa.String(), nullable=False),
        sa.Column('story_type', sa.String(), nullable=False, server_default='success'),
        sa.Column('confidence_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('tags', JSONType, nullable=True),
        sa.Column('sources', JSONType, nullable=True),
        sa.Column('verdict', sa.String(), nullable=False, server_default='approved'),
        sa.Column('ai_generated', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('featured', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('published_at', sa.DateTime(), nullable=False),
        sa.Column('view_count', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['startup_id'], ['startups.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_success_stories_startup_id', 'success_stories', ['startup_id'], unique=True)
    op.create_index('ix_success_stories_published_at', 'success_stories', ['published_at'])

    op.create_table(
        'job_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_id', sa.String(), nullable=False),
        sa.Column('job_name', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='running'),
        sa.Column('trigger', sa.String(), nullable=False, server_default='scheduled'),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('records_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_job_runs_job_id', 'job_runs', ['job_id'], unique=True)
    op.create_index('ix_job_runs_job_name', 'job_runs', ['job_name'])
    op.create_index('ix_job_runs_started_at', 'job_runs', ['started_at'])


def downgrade() -> None:
    op.drop_table('job_runs')
    op.drop_table('success_stories')
    op.drop_table('data_sources')
    op.drop_table('startups')
