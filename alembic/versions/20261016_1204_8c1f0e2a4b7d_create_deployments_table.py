"""create_deployments_table

Revision ID: 8c1f0e2a4b7d
Revises:
Create Date: 2026-10-16 12:04:37.218604

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '8c1f0e2a4b7d'
down_revision = None
branch_labels = None
depends_on = None

deployment_status = sa.Enum(
    'PENDING', 'RUNNING', 'SUCCEEDED', 'FAILED', 'CANCELLED',
    name='deploymentstatus'
)


def upgrade() -> None:
    op.create_table(
        'deployments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('server_id', sa.Integer(), nullable=True),
        sa.Column('repository', sa.String(length=255), nullable=False),
        sa.Column('branch', sa.String(length=255), nullable=False),
        sa.Column('status', deployment_status, nullable=False, server_default='PENDING'),
        sa.Column('commit_hash', sa.String(length=40), nullable=True),
        sa.Column('auto_deploy', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('webhook_id', sa.String(length=255), nullable=True),
        sa.Column('retry_of_id', sa.Uuid(), sa.ForeignKey('deployments.id', ondelete='SET NULL'), nullable=True),
        sa.Column('log', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )

    # webhook_id is nullable but unique when present
    op.create_index('uq_deployments_webhook_id', 'deployments', ['webhook_id'], unique=True)
    op.create_index(op.f('ix_deployments_user_id'), 'deployments', ['user_id'], unique=False)
    op.create_index(op.f('ix_deployments_status'), 'deployments', ['status'], unique=False)
    op.create_index(op.f('ix_deployments_server_id'), 'deployments', ['server_id'], unique=False)
    op.create_index(op.f('ix_deployments_created_at'), 'deployments', ['created_at'], unique=False)

    # Composite index on (user_id, created_at) for user history queries
    op.create_index('ix_deployments_user_created', 'deployments', ['user_id', 'created_at'], unique=False)

    op.create_table(
        'auto_deploy_rules',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('server_id', sa.Integer(), nullable=True),
        sa.Column('repository', sa.String(length=255), nullable=False),
        sa.Column('branch', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('repository', 'branch', name='uq_auto_deploy_rules_repository_branch'),
    )
    op.create_index(op.f('ix_auto_deploy_rules_user_id'), 'auto_deploy_rules', ['user_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_auto_deploy_rules_user_id'), table_name='auto_deploy_rules')
    op.drop_table('auto_deploy_rules')

    # Drop indexes
    op.drop_index('ix_deployments_user_created', table_name='deployments')
    op.drop_index(op.f('ix_deployments_created_at'), table_name='deployments')
    op.drop_index(op.f('ix_deployments_server_id'), table_name='deployments')
    op.drop_index(op.f('ix_deployments_status'), table_name='deployments')
    op.drop_index(op.f('ix_deployments_user_id'), table_name='deployments')
    op.drop_index('uq_deployments_webhook_id', table_name='deployments')

    # Drop table
    op.drop_table('deployments')

    # Drop enum type
    deployment_status.drop(op.get_bind(), checkfirst=True)
