"""add_verification_audit_logs

Revision ID: 4d5e6f7a8b9c
Revises: 3c4d5e6f7a8b
Create Date: 2026-09-24 14:03:19.872450

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4d5e6f7a8b9c'
down_revision = '3c4d5e6f7a8b'
branch_labels = None
depends_on = None


def upgrade() -> None:
    from sqlalchemy import inspect
    inspector = inspect(op.get_bind())
    if 'verification_audit_logs' in inspector.get_table_names():
        return

    # LLM输出校验审计日志，prompt/response 写入前已脱敏
    op.create_table(
        'verification_audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.String(length=64), nullable=True),
        sa.Column('service', sa.String(length=100), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=True),
        sa.Column('response', sa.Text(), nullable=True),
        sa.Column('verified', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('overall_score', sa.Float(), nullable=True, server_default='0'),
        sa.Column('confidence', sa.Float(), nullable=True, server_default='0'),
        sa.Column('outcome', sa.String(length=20), nullable=True, comment='approved, rejected, manual_review'),
        sa.Column('issues', sa.JSON(), nullable=True),
        sa.Column('processing_time_ms', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('attempt', sa.Integer(), nullable=True, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_verification_audit_logs_id', 'verification_audit_logs', ['id'])
    op.create_index('ix_verification_audit_logs_request_id', 'verification_audit_logs', ['request_id'], unique=True)
    op.create_index('ix_verification_audit_logs_service', 'verification_audit_logs', ['service'])
    op.create_index('ix_verification_audit_logs_created_at', 'verification_audit_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('verification_audit_logs')
