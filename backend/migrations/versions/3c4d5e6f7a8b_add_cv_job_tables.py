"""add_cv_job_tables

Revision ID: 3c4d5e6f7a8b
Revises: 2b3c4d5e6f7a
Create Date: 2026-09-18 09:27:55.640712

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c4d5e6f7a8b'
down_revision = '2b3c4d5e6f7a'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # CV处理任务
    op.create_table(
        'cv_jobs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('progress', sa.Integer(), nullable=True, server_default='0', comment='0-100'),
        sa.Column('priority', sa.String(length=10), nullable=True, server_default='normal'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_details', sa.JSON(), nullable=True, comment='code, message, failed_step, retry_count, recoverable, context'),
        sa.Column('completed_steps', sa.JSON(), nullable=True, comment='已完成步骤记录'),
        sa.Column('warnings', sa.JSON(), nullable=True),
        sa.Column('original_file_name', sa.String(length=255), nullable=True),
        sa.Column('original_file_size', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('input_type', sa.String(length=10), nullable=True, server_default='pdf'),
        sa.Column('file_hash', sa.String(length=64), nullable=True),
        sa.Column('raw_text', sa.Text(), nullable=True),
        sa.Column('selected_features', sa.JSON(), nullable=True),
        sa.Column('customizations', sa.JSON(), nullable=True, comment='target_role, industry_keywords, video选项等'),
        sa.Column('credits_charged', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('parsed_cv', sa.JSON(), nullable=True),
        sa.Column('ats_result', sa.JSON(), nullable=True),
        sa.Column('role_analysis', sa.JSON(), nullable=True),
        sa.Column('recommendations', sa.JSON(), nullable=True),
        sa.Column('improved_cv', sa.JSON(), nullable=True),
        sa.Column('applied_recommendations', sa.JSON(), nullable=True),
        sa.Column('transformation_summary', sa.JSON(), nullable=True),
        sa.Column('comparison_report', sa.JSON(), nullable=True),
        sa.Column('improvements_applied', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('enhanced_features', sa.JSON(), nullable=True, comment='feature -> {status, ...}'),
        sa.Column('generated_output', sa.JSON(), nullable=True),
        sa.Column('processing_started_at', sa.DateTime(), nullable=True),
        sa.Column('processing_completed_at', sa.DateTime(), nullable=True),
        sa.Column('total_processing_time_ms', sa.Integer(), nullable=True),
        sa.Column('estimated_completion_at', sa.DateTime(), nullable=True),
        sa.Column('recovered_at', sa.DateTime(), nullable=True),
        sa.Column('recovery_reason', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_cv_jobs_user_id', 'cv_jobs', ['user_id'])
    op.create_index('ix_cv_jobs_status', 'cv_jobs', ['status'])
    op.create_index('ix_cv_jobs_file_hash', 'cv_jobs', ['file_hash'])
    op.create_index('ix_cv_jobs_created_at', 'cv_jobs', ['created_at'])
    # 卡住任务巡检按 status + processing_started_at 查询
    op.create_index('idx_cv_jobs_status_started', 'cv_jobs', ['status', 'processing_started_at'])
    op.create_index('idx_cv_jobs_user_created', 'cv_jobs', ['user_id', 'created_at'])

    # CV分块向量
    op.create_table(
        'cv_embeddings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_id', sa.String(length=36), nullable=False),
        sa.Column('section', sa.String(length=50), nullable=False, comment='experience, education, skills, achievements'),
        sa.Column('chunk_index', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('vector', sa.JSON(), nullable=False, comment='embedding 向量'),
        sa.Column('tokens', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('importance', sa.Float(), nullable=True, server_default='1.0'),
        sa.Column('model', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['job_id'], ['cv_jobs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_cv_embeddings_id', 'cv_embeddings', ['id'])
    op.create_index('ix_cv_embeddings_job_id', 'cv_embeddings', ['job_id'])


def downgrade() -> None:
    op.drop_table('cv_embeddings')
    op.drop_index('idx_cv_jobs_user_created', table_name='cv_jobs')
    op.drop_index('idx_cv_jobs_status_started', table_name='cv_jobs')
    op.drop_table('cv_jobs')
