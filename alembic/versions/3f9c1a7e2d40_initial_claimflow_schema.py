"""Initial schema: runs, run steps, visits

Revision ID: 3f9c1a7e2d40
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c1a7e2d40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'rpa_extraction_runs',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('run_type', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_records', sa.Integer(), server_default='0'),
        sa.Column('completed_count', sa.Integer(), server_default='0'),
        sa.Column('failed_count', sa.Integer(), server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('cancel_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_rpa_extraction_runs_status', 'rpa_extraction_runs', ['status'])

    op.create_table(
        'rpa_run_steps',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.Text(), nullable=False),
        sa.Column('ordinal', sa.Integer(), nullable=False),
        sa.Column('label', sa.Text(), nullable=False),
        sa.Column('phase', sa.Text(), nullable=False, server_default='start'),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['run_id'], ['rpa_extraction_runs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_rpa_run_steps_run_ordinal', 'rpa_run_steps', ['run_id', 'ordinal'])

    op.create_table(
        'visits',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source', sa.Text(), nullable=False, server_default='clinic_assist'),
        sa.Column('visit_date', sa.Date(), nullable=False),
        sa.Column('patient_name', sa.Text(), nullable=False, server_default=''),
        sa.Column('pcno', sa.Text(), nullable=True),
        sa.Column('nric', sa.Text(), nullable=True),
        sa.Column('pay_type', sa.Text(), nullable=True),
        sa.Column('visit_type', sa.Text(), nullable=True),
        sa.Column('total_amount', sa.Float(), nullable=True),
        sa.Column('diagnosis_description', sa.Text(), nullable=True),
        sa.Column('treatment_detail', sa.JSON(), nullable=True),
        sa.Column('referral_clinic', sa.Text(), nullable=True),
        sa.Column('mc_days', sa.Integer(), server_default='0'),
        sa.Column('extraction_status', sa.Text(), nullable=True),
        sa.Column('extracted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('extraction_attempts', sa.Integer(), server_default='0'),
        sa.Column('extraction_metadata', sa.JSON(), nullable=True),
        sa.Column('submission_status', sa.Text(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('submission_metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'visit_date', 'pcno', 'patient_name', name='uq_visits_source_key'),
    )
    op.create_index('ix_visits_visit_date', 'visits', ['visit_date'])
    op.create_index('ix_visits_extraction_status', 'visits', ['extraction_status'])


def downgrade() -> None:
    op.drop_index('ix_visits_extraction_status', table_name='visits')
    op.drop_index('ix_visits_visit_date', table_name='visits')
    op.drop_table('visits')
    op.drop_index('ix_rpa_run_steps_run_ordinal', table_name='rpa_run_steps')
    op.drop_table('rpa_run_steps')
    op.drop_index('ix_rpa_extraction_runs_status', table_name='rpa_extraction_runs')
    op.drop_table('rpa_extraction_runs')
