"""initial_schema_scans_and_batches

Revision ID: 001
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

batch_status = sa.Enum('pending', 'running', 'completed', 'failed', 'cancelled', 'stale', name='batchstatus')
scan_job_status = sa.Enum('pending', 'running', 'retrying', 'completed', 'failed', 'cancelled', name='scanjobstatus')
conformance_level = sa.Enum('A', 'AA', 'AAA', name='conformancelevel')
attempt_outcome = sa.Enum('running', 'succeeded', 'retrying', 'failed', 'released', name='attemptoutcome')
issue_impact = sa.Enum('critical', 'serious', 'moderate', 'minor', name='issueimpact')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    # Create batch_scans table
    op.create_table(
        'batch_scans',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('homepage_url', sa.String(2048), nullable=False),
        sa.Column('conformance_level', sa.String(8), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('status', batch_status, nullable=False),
        sa.Column('total_urls', sa.Integer(), nullable=False),
        sa.Column('completed_count', sa.Integer(), nullable=False),
        sa.Column('failed_count', sa.Integer(), nullable=False),
        sa.Column('total_issues', sa.Integer(), nullable=False),
        sa.Column('critical_count', sa.Integer(), nullable=False),
        sa.Column('serious_count', sa.Integer(), nullable=False),
        sa.Column('moderate_count', sa.Integer(), nullable=False),
        sa.Column('minor_count', sa.Integer(), nullable=False),
        sa.Column('passed_checks', sa.Integer(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('stale_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('completed_count + failed_count <= total_urls', name='check_batch_progress_bounded'),
    )
    op.create_index(op.f('ix_batch_scans_id'), 'batch_scans', ['id'], unique=False)
    op.create_index(op.f('ix_batch_scans_status'), 'batch_scans', ['status'], unique=False)
    op.create_index(op.f('ix_batch_scans_created_at'), 'batch_scans', ['created_at'], unique=False)
    op.create_index('idx_batch_scans_status_created', 'batch_scans', ['status', 'created_at'], unique=False)

    # Create scan_jobs table
    op.create_table(
        'scan_jobs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('batch_id', sa.String(), nullable=True),
        sa.Column('url', sa.String(2048), nullable=False),
        sa.Column('final_url', sa.String(2048), nullable=True),
        sa.Column('page_title', sa.String(512), nullable=True),
        sa.Column('conformance_level', conformance_level, nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('status', scan_job_status, nullable=False),
        sa.Column('error_kind', sa.String(64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempt_count', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('celery_task_id', sa.String(128), nullable=True),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['batch_id'], ['batch_scans.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_scan_jobs_id'), 'scan_jobs', ['id'], unique=False)
    op.create_index(op.f('ix_scan_jobs_batch_id'), 'scan_jobs', ['batch_id'], unique=False)
    op.create_index(op.f('ix_scan_jobs_status'), 'scan_jobs', ['status'], unique=False)
    op.create_index(op.f('ix_scan_jobs_celery_task_id'), 'scan_jobs', ['celery_task_id'], unique=False)
    op.create_index(op.f('ix_scan_jobs_created_at'), 'scan_jobs', ['created_at'], unique=False)
    op.create_index('idx_scan_jobs_batch_status', 'scan_jobs', ['batch_id', 'status'], unique=False)

    # Create scan_attempts table
    op.create_table(
        'scan_attempts',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('scan_job_id', sa.String(), nullable=False),
        sa.Column('attempt_number', sa.Integer(), nullable=False),
        sa.Column('celery_task_id', sa.String(128), nullable=True),
        sa.Column('outcome', attempt_outcome, nullable=False),
        sa.Column('error_kind', sa.String(64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['scan_job_id'], ['scan_jobs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_scan_attempts_id'), 'scan_attempts', ['id'], unique=False)
    op.create_index(op.f('ix_scan_attempts_scan_job_id'), 'scan_attempts', ['scan_job_id'], unique=False)
    op.create_index(op.f('ix_scan_attempts_created_at'), 'scan_attempts', ['created_at'], unique=False)

    # Create scan_results table
    op.create_table(
        'scan_results',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('scan_job_id', sa.String(), nullable=False),
        sa.Column('total_issues', sa.Integer(), nullable=False),
        sa.Column('critical_count', sa.Integer(), nullable=False),
        sa.Column('serious_count', sa.Integer(), nullable=False),
        sa.Column('moderate_count', sa.Integer(), nullable=False),
        sa.Column('minor_count', sa.Integer(), nullable=False),
        sa.Column('passed_checks', sa.Integer(), nullable=False),
        sa.Column('inapplicable_checks', sa.Integer(), nullable=False),
        sa.Column('scan_duration_ms', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['scan_job_id'], ['scan_jobs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_scan_results_id'), 'scan_results', ['id'], unique=False)
    op.create_index(op.f('ix_scan_results_scan_job_id'), 'scan_results', ['scan_job_id'], unique=True)
    op.create_index(op.f('ix_scan_results_created_at'), 'scan_results', ['created_at'], unique=False)

    # Create issues table
    op.create_table(
        'issues',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('scan_result_id', sa.String(), nullable=False),
        sa.Column('rule_id', sa.String(128), nullable=False),
        sa.Column('impact', issue_impact, nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('help_text', sa.Text(), nullable=True),
        sa.Column('help_url', sa.String(1024), nullable=True),
        sa.Column('wcag_criteria', sa.JSON(), nullable=False),
        sa.Column('css_selector', sa.String(1024), nullable=True),
        sa.Column('html_snippet', sa.Text(), nullable=True),
        sa.Column('nodes', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['scan_result_id'], ['scan_results.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_issues_id'), 'issues', ['id'], unique=False)
    op.create_index(op.f('ix_issues_scan_result_id'), 'issues', ['scan_result_id'], unique=False)
    op.create_index(op.f('ix_issues_impact'), 'issues', ['impact'], unique=False)
    op.create_index(op.f('ix_issues_created_at'), 'issues', ['created_at'], unique=False)
    op.create_index('idx_issues_rule', 'issues', ['rule_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('issues')
    op.drop_table('scan_results')
    op.drop_table('scan_attempts')
    op.drop_table('scan_jobs')
    op.drop_table('batch_scans')

    bind = op.get_bind()
    for enum_type in (issue_impact, attempt_outcome, conformance_level, scan_job_status, batch_status):
        enum_type.drop(bind, checkfirst=True)
