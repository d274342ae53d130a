"""add_subscription_and_policy_tables

Revision ID: 2b3c4d5e6f7a
Revises: 1a2b3c4d5e6f
Create Date: 2026-09-15 16:40:08.118934

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '2b3c4d5e6f7a'
down_revision = '1a2b3c4d5e6f'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # 订阅（每个用户一条）
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='free', comment='free, premium'),
        sa.Column('plan', sa.String(length=50), nullable=True, server_default='free'),
        sa.Column('lifetime_access', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('credits', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )
    op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])

    # 付款记录（管理员录入）
    op.create_table(
        'payment_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=True, server_default='USD'),
        sa.Column('status', sa.String(length=20), nullable=True, server_default='succeeded'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('credits_granted', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_payment_records_id', 'payment_records', ['id'])
    op.create_index('ix_payment_records_user_id', 'payment_records', ['user_id'])

    # 上传记录（用量统计、重复检测、同IP多账号检测）
    op.create_table(
        'upload_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('content_hash', sa.String(length=64), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('file_type', sa.String(length=20), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_upload_records_id', 'upload_records', ['id'])
    op.create_index('ix_upload_records_user_id', 'upload_records', ['user_id'])
    op.create_index('ix_upload_records_content_hash', 'upload_records', ['content_hash'])
    op.create_index('ix_upload_records_ip_address', 'upload_records', ['ip_address'])
    op.create_index('ix_upload_records_created_at', 'upload_records', ['created_at'])
    op.create_index('idx_upload_user_created', 'upload_records', ['user_id', 'created_at'])

    # 策略违规记录
    op.create_table(
        'policy_violations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('violation_type', sa.String(length=50), nullable=False),
        sa.Column('severity', sa.String(length=20), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('evidence', sa.JSON(), nullable=True, comment='违规证据'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_policy_violations_id', 'policy_violations', ['id'])
    op.create_index('ix_policy_violations_user_id', 'policy_violations', ['user_id'])


def downgrade() -> None:
    op.drop_table('policy_violations')
    op.drop_table('upload_records')
    op.drop_table('payment_records')
    op.drop_table('subscriptions')
