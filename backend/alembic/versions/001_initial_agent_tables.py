"""Initial agent orchestrator tables

Revision ID: 001_initial_agents
Revises:
Create Date: 2026-10-17

Creates all tables for:
- accounts
- agent_results (one row per stage run outcome)
- metric_snapshots
- tasks
- agent_recommendations
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial_agents'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ==========================================================================
    # Create Enums
    # ==========================================================================

    stage_enum = postgresql.ENUM(
        'PROOFLINE', 'SUMMARY', 'REFERRAL_ENGINE', 'OPPORTUNITY',
        'CRO_OPTIMIZER', 'GBP_OPTIMIZER', 'GUARDIAN', 'GOVERNANCE_SENTINEL',
        name='stagename',
        create_type=False,
    )
    result_status_enum = postgresql.ENUM(
        'SUCCESS', 'PENDING', 'ERROR',
        name='resultstatus',
        create_type=False,
    )
    run_type_enum = postgresql.ENUM(
        'DAILY', 'MONTHLY', 'AUDIT',
        name='runtype',
        create_type=False,
    )
    task_category_enum = postgresql.ENUM(
        'USER', 'ALLORO',
        name='taskcategory',
        create_type=False,
    )
    task_status_enum = postgresql.ENUM(
        'PENDING', 'IN_PROGRESS', 'COMPLETE', 'ARCHIVED',
        name='taskstatus',
        create_type=False,
    )
    review_status_enum = postgresql.ENUM(
        'PASS', 'REJECT',
        name='reviewstatus',
        create_type=False,
    )
    for enum in (
        stage_enum,
        result_status_enum,
        run_type_enum,
        task_category_enum,
        task_status_enum,
        review_status_enum,
    ):
        enum.create(op.get_bind(), checkfirst=True)

    # ==========================================================================
    # Tables
    # ==========================================================================

    op.create_table(
        'accounts',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=False),
        sa.Column('onboarding_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('property_ids', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_accounts_domain', 'accounts', ['domain'], unique=True)

    op.create_table(
        'agent_results',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('account_id', sa.UUID(), nullable=True),
        sa.Column('domain', sa.String(length=255), nullable=True),
        sa.Column('stage', stage_enum, nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('run_type', run_type_enum, nullable=False),
        sa.Column('input_payload', sa.JSON(), nullable=True),
        sa.Column('output_payload', sa.JSON(), nullable=True),
        sa.Column('status', result_status_enum, nullable=False, server_default='PENDING'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_agent_results_key',
        'agent_results',
        ['account_id', 'stage', 'period_start', 'period_end'],
    )
    op.create_index('ix_agent_results_stage', 'agent_results', ['stage'])
    op.create_index('ix_agent_results_status', 'agent_results', ['status'])

    op.create_table(
        'metric_snapshots',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('account_id', sa.UUID(), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=False),
        sa.Column('stage', stage_enum, nullable=False),
        sa.Column('run_type', run_type_enum, nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_metric_snapshots_account_id', 'metric_snapshots', ['account_id'])

    op.create_table(
        'tasks',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('account_id', sa.UUID(), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=False),
        sa.Column('agent_result_id', sa.UUID(), nullable=True),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', task_category_enum, nullable=False),
        sa.Column('origin_stage', stage_enum, nullable=False),
        sa.Column('status', task_status_enum, nullable=False, server_default='PENDING'),
        sa.Column('is_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['agent_result_id'], ['agent_results.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_account_id', 'tasks', ['account_id'])
    op.create_index('ix_tasks_domain', 'tasks', ['domain'])
    op.create_index('ix_tasks_category', 'tasks', ['category'])

    op.create_table(
        'agent_recommendations',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('agent_result_id', sa.UUID(), nullable=True),
        sa.Column('source_stage_type', stage_enum, nullable=False),
        sa.Column('audited_stage', stage_enum, nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=True),
        sa.Column('urgency', sa.String(length=50), nullable=True),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('severity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('verdict', sa.String(length=50), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('suggested_action', sa.Text(), nullable=True),
        sa.Column('rule_reference', sa.Text(), nullable=True),
        sa.Column('evidence_links', sa.JSON(), nullable=True),
        sa.Column('escalation_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('review_status', review_status_enum, nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('observed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['agent_result_id'], ['agent_results.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_agent_recommendations_agent_result_id', 'agent_recommendations', ['agent_result_id'])
    op.create_index('ix_agent_recommendations_audited_stage', 'agent_recommendations', ['audited_stage'])
    op.create_index('ix_agent_recommendations_review_status', 'agent_recommendations', ['review_status'])


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table('agent_recommendations')
    op.drop_table('tasks')
    op.drop_table('metric_snapshots')
    op.drop_table('agent_results')
    op.drop_table('accounts')

    # Drop enums
    op.execute("DROP TYPE IF EXISTS reviewstatus")
    op.execute("DROP TYPE IF EXISTS taskstatus")
    op.execute("DROP TYPE IF EXISTS taskcategory")
    op.execute("DROP TYPE IF EXISTS runtype")
    op.execute("DROP TYPE IF EXISTS resultstatus")
    op.execute("DROP TYPE IF EXISTS stagename")
