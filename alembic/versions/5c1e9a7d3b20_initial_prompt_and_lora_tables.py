"""initial prompt and lora tables

Revision ID: 5c1e9a7d3b20
Revises:
Create Date: 2026-10-19 10:12:44.318021

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5c1e9a7d3b20'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # LoRA 学習
    op.create_table('lora_models',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=64), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('consent_given', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_lora_models_user_id'), 'lora_models', ['user_id'], unique=False)

    op.create_table('lora_datasets',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=64), nullable=False),
    sa.Column('lora_model_id', sa.String(length=36), nullable=False),
    sa.Column('image_count', sa.Integer(), nullable=False),
    sa.Column('dataset_url', sa.String(length=1024), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('quality_report', sa.JSON(), nullable=True),
    sa.Column('dataset_hash', sa.String(length=64), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['lora_model_id'], ['lora_models.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_lora_datasets_user_id'), 'lora_datasets', ['user_id'], unique=False)
    op.create_index(op.f('ix_lora_datasets_lora_model_id'), 'lora_datasets', ['lora_model_id'], unique=False)

    op.create_table('lora_versions',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('lora_model_id', sa.String(length=36), nullable=False),
    sa.Column('dataset_id', sa.String(length=36), nullable=True),
    sa.Column('base_model', sa.String(length=100), nullable=False),
    sa.Column('params', sa.JSON(), nullable=True),
    sa.Column('dataset_hash', sa.String(length=64), nullable=False),
    sa.Column('artifact_url', sa.String(length=1024), nullable=True),
    sa.Column('checksum', sa.String(length=128), nullable=True),
    sa.Column('preview_images', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['dataset_id'], ['lora_datasets.id'], ),
    sa.ForeignKeyConstraint(['lora_model_id'], ['lora_models.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_lora_versions_lora_model_id'), 'lora_versions', ['lora_model_id'], unique=False)

    op.create_table('lora_jobs',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('lora_version_id', sa.String(length=36), nullable=False),
    sa.Column('provider', sa.String(length=50), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('external_job_id', sa.String(length=255), nullable=True),
    sa.Column('logs_url', sa.String(length=1024), nullable=True),
    sa.Column('error', sa.Text(), nullable=True),
    sa.Column('started_at', sa.DateTime(), nullable=True),
    sa.Column('finished_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['lora_version_id'], ['lora_versions.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_lora_jobs_lora_version_id'), 'lora_jobs', ['lora_version_id'], unique=False)

    op.create_table('user_active_loras',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=64), nullable=False),
    sa.Column('lora_version_id', sa.String(length=36), nullable=False),
    sa.Column('weight', sa.Float(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['lora_version_id'], ['lora_versions.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('user_id')
    )

    # プロンプト履歴
    op.create_table('generated_prompts',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=64), nullable=True),
    sa.Column('profile_id', sa.String(length=100), nullable=False),
    sa.Column('blueprint_id', sa.String(length=100), nullable=True),
    sa.Column('user_blueprint_id', sa.String(length=36), nullable=True),
    sa.Column('lora_version_id', sa.String(length=36), nullable=True),
    sa.Column('seed', sa.String(length=64), nullable=False),
    sa.Column('input', sa.JSON(), nullable=False),
    sa.Column('applied_filters', sa.JSON(), nullable=True),
    sa.Column('compiled_prompt', sa.Text(), nullable=False),
    sa.Column('metadata', sa.JSON(), nullable=False),
    sa.Column('score', sa.Integer(), nullable=False),
    sa.Column('warnings', sa.JSON(), nullable=True),
    sa.Column('character_pack', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_generated_prompts_user_id'), 'generated_prompts', ['user_id'], unique=False)

    op.create_table('prompt_versions',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('generated_prompt_id', sa.String(length=36), nullable=False),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('compiled_prompt', sa.Text(), nullable=False),
    sa.Column('metadata', sa.JSON(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['generated_prompt_id'], ['generated_prompts.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('generated_prompt_id', 'version')
    )
    op.create_index(op.f('ix_prompt_versions_generated_prompt_id'), 'prompt_versions', ['generated_prompt_id'], unique=False)

    # ユーザーブループリント
    op.create_table('user_blueprints',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=64), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('category', sa.String(length=100), nullable=False),
    sa.Column('tags', sa.JSON(), nullable=True),
    sa.Column('compatible_profiles', sa.JSON(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_user_blueprints_user_id'), 'user_blueprints', ['user_id'], unique=False)

    op.create_table('user_blueprint_versions',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_blueprint_id', sa.String(length=36), nullable=False),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('blocks', sa.JSON(), nullable=False),
    sa.Column('constraints', sa.JSON(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['user_blueprint_id'], ['user_blueprints.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('user_blueprint_id', 'version')
    )
    op.create_index(op.f('ix_user_blueprint_versions_user_blueprint_id'), 'user_blueprint_versions', ['user_blueprint_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_user_blueprint_versions_user_blueprint_id'), table_name='user_blueprint_versions')
    op.drop_table('user_blueprint_versions')
    op.drop_index(op.f('ix_user_blueprints_user_id'), table_name='user_blueprints')
    op.drop_table('user_blueprints')
    op.drop_index(op.f('ix_prompt_versions_generated_prompt_id'), table_name='prompt_versions')
    op.drop_table('prompt_versions')
    op.drop_index(op.f('ix_generated_prompts_user_id'), table_name='generated_prompts')
    op.drop_table('generated_prompts')
    op.drop_table('user_active_loras')
    op.drop_index(op.f('ix_lora_jobs_lora_version_id'), table_name='lora_jobs')
    op.drop_table('lora_jobs')
    op.drop_index(op.f('ix_lora_versions_lora_model_id'), table_name='lora_versions')
    op.drop_table('lora_versions')
    op.drop_index(op.f('ix_lora_datasets_lora_model_id'), table_name='lora_datasets')
    op.drop_index(op.f('ix_lora_datasets_user_id'), table_name='lora_datasets')
    op.drop_table('lora_datasets')
    op.drop_index(op.f('ix_lora_models_user_id'), table_name='lora_models')
    op.drop_table('lora_models')
