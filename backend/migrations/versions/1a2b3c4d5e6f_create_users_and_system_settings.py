"""create_users_and_system_settings

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-09-14 10:12:41.503217

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1a2b3c4d5e6f'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # 用户表
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=100), nullable=True),
        sa.Column('user_type', sa.String(length=50), nullable=True, server_default='user'),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('is_verified', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # 系统配置表（LLM、视频服务密钥加密存储）
    op.create_table(
        'system_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=255), nullable=False, comment='配置键，如: llm.anthropic.api_key'),
        sa.Column('value', sa.Text(), nullable=True, comment='配置值（敏感项加密存储）'),
        sa.Column('category', sa.String(length=50), nullable=False, server_default='system', comment='配置分类: llm, video, system'),
        sa.Column('description', sa.Text(), nullable=True, comment='配置说明'),
        sa.Column('is_encrypted', sa.Boolean(), nullable=True, server_default=sa.false(), comment='是否加密存储'),
        sa.Column('updated_by', sa.Integer(), nullable=True, comment='最后更新人ID'),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.func.now(), comment='更新时间'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now(), comment='创建时间'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_system_settings_id', 'system_settings', ['id'])
    op.create_index('ix_system_settings_key', 'system_settings', ['key'], unique=True)
    op.create_index('idx_category_key', 'system_settings', ['category', 'key'])


def downgrade() -> None:
    op.drop_index('idx_category_key', table_name='system_settings')
    op.drop_index('ix_system_settings_key', table_name='system_settings')
    op.drop_index('ix_system_settings_id', table_name='system_settings')
    op.drop_table('system_settings')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_id', table_name='users')
    op.drop_table('users')
