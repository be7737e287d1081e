"""create materials generation tables

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0a1b2c3d4e5f'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy persists Python enum members by name
JOB_STATUS = sa.Enum(
    'INITIATED',
    'COLLECTING_DATA',
    'AWAITING_UPLOADS',
    'QUESTIONNAIRE_PENDING',
    'QUESTIONNAIRE_IN_PROGRESS',
    'DATA_CONSOLIDATED',
    'GENERATING_TEASER',
    'GENERATING_IM',
    'GENERATING_PITCH_DECK',
    'REVIEW',
    'COMPLETED',
    'FAILED',
    'CANCELLED',
    name='jobstatus',
)


def upgrade() -> None:
    op.create_table(
        'companies',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('business_id', sa.String(), nullable=True),
        sa.Column('industry', sa.String(), nullable=True),
        sa.Column('website', sa.String(), nullable=True),
        sa.Column('country', sa.String(2), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_companies_organization_id'), 'companies', ['organization_id'], unique=False)
    op.create_index(op.f('ix_companies_business_id'), 'companies', ['business_id'], unique=False)

    op.create_table(
        'materials_jobs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('generate_teaser', sa.Boolean(), nullable=False),
        sa.Column('generate_im', sa.Boolean(), nullable=False),
        sa.Column('generate_pitch_deck', sa.Boolean(), nullable=False),
        sa.Column('status', JOB_STATUS, nullable=False),
        sa.Column('previous_status', JOB_STATUS, nullable=True),
        sa.Column('progress_percentage', sa.Integer(), nullable=False),
        sa.Column('current_step', sa.String(), nullable=True),
        sa.Column('public_data_collected', sa.Boolean(), nullable=False),
        sa.Column('public_data_collected_at', sa.DateTime(), nullable=True),
        sa.Column('documents_uploaded', sa.Boolean(), nullable=False),
        sa.Column('documents_uploaded_at', sa.DateTime(), nullable=True),
        sa.Column('questionnaire_completed', sa.Boolean(), nullable=False),
        sa.Column('questionnaire_completed_at', sa.DateTime(), nullable=True),
        sa.Column('data_consolidated', sa.Boolean(), nullable=False),
        sa.Column('data_consolidated_at', sa.DateTime(), nullable=True),
        sa.Column('teaser_status', sa.String(16), nullable=False),
        sa.Column('im_status', sa.String(16), nullable=False),
        sa.Column('pitch_deck_status', sa.String(16), nullable=False),
        sa.Column('teaser_asset_id', sa.Uuid(), nullable=True),
        sa.Column('im_asset_id', sa.Uuid(), nullable=True),
        sa.Column('pitch_deck_asset_id', sa.Uuid(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('consolidated_data', sa.JSON(), nullable=True),
        sa.Column('job_metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('estimated_completion_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_materials_jobs_organization_id'), 'materials_jobs', ['organization_id'], unique=False)
    op.create_index(op.f('ix_materials_jobs_company_id'), 'materials_jobs', ['company_id'], unique=False)
    op.create_index(op.f('ix_materials_jobs_status'), 'materials_jobs', ['status'], unique=False)

    op.create_table(
        'generation_data_cache',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('data_source', sa.String(), nullable=False),
        sa.Column('data_type', sa.String(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('confidence_score', sa.Integer(), nullable=False),
        sa.Column('warnings', sa.JSON(), nullable=True),
        sa.Column('collected_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['materials_jobs.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_generation_data_cache_job_id'), 'generation_data_cache', ['job_id'], unique=False)
    op.create_index(op.f('ix_generation_data_cache_company_id'), 'generation_data_cache', ['company_id'], unique=False)

    op.create_table(
        'company_assets',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('asset_type', sa.String(32), nullable=False),
        sa.Column('storage_ref', sa.String(), nullable=False),
        sa.Column('file_url', sa.String(), nullable=True),
        sa.Column('mime_type', sa.String(), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('content', sa.JSON(), nullable=True),
        sa.Column('asset_metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_company_assets_company_id'), 'company_assets', ['company_id'], unique=False)
    op.create_index(op.f('ix_company_assets_organization_id'), 'company_assets', ['organization_id'], unique=False)
    op.create_index(op.f('ix_company_assets_job_id'), 'company_assets', ['job_id'], unique=False)
    op.create_index(op.f('ix_company_assets_asset_type'), 'company_assets', ['asset_type'], unique=False)

    op.create_table(
        'material_questionnaire_responses',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=False),
        sa.Column('question_key', sa.String(64), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('question_category', sa.String(64), nullable=False),
        sa.Column('display_order', sa.Integer(), nullable=False),
        sa.Column('answer', sa.JSON(), nullable=True),
        sa.Column('answered_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['job_id'], ['materials_jobs.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('job_id', 'question_key', name='uq_questionnaire_job_question')
    )
    op.create_index(
        op.f('ix_material_questionnaire_responses_job_id'),
        'material_questionnaire_responses',
        ['job_id'],
        unique=False,
    )

    op.create_table(
        'extracted_financial_data',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=False),
        sa.Column('document_id', sa.Uuid(), nullable=False),
        sa.Column('extracted_data', sa.JSON(), nullable=False),
        sa.Column('extraction_method', sa.String(32), nullable=False),
        sa.Column('confidence_score', sa.Float(), nullable=False),
        sa.Column('extracted_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['materials_jobs.id'], ),
        sa.ForeignKeyConstraint(['document_id'], ['company_assets.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('job_id', 'document_id', name='uq_extracted_financial_data_document')
    )
    op.create_index(op.f('ix_extracted_financial_data_job_id'), 'extracted_financial_data', ['job_id'], unique=False)
    op.create_index(
        op.f('ix_extracted_financial_data_document_id'), 'extracted_financial_data', ['document_id'], unique=False
    )

    op.create_table(
        'materials_trace_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('phase', sa.String(), nullable=False),
        sa.Column('step', sa.String(), nullable=True),
        sa.Column('label', sa.String(), nullable=False),
        sa.Column('detail', sa.String(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['job_id'], ['materials_jobs.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_materials_trace_events_job_id'), 'materials_trace_events', ['job_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_materials_trace_events_job_id'), table_name='materials_trace_events')
    op.drop_table('materials_trace_events')
    op.drop_index(op.f('ix_extracted_financial_data_document_id'), table_name='extracted_financial_data')
    op.drop_index(op.f('ix_extracted_financial_data_job_id'), table_name='extracted_financial_data')
    op.drop_table('extracted_financial_data')
    op.drop_index(op.f('ix_material_questionnaire_responses_job_id'), table_name='material_questionnaire_responses')
    op.drop_table('material_questionnaire_responses')
    op.drop_index(op.f('ix_company_assets_asset_type'), table_name='company_assets')
    op.drop_index(op.f('ix_company_assets_job_id'), table_name='company_assets')
    op.drop_index(op.f('ix_company_assets_organization_id'), table_name='company_assets')
    op.drop_index(op.f('ix_company_assets_company_id'), table_name='company_assets')
    op.drop_table('company_assets')
    op.drop_index(op.f('ix_generation_data_cache_company_id'), table_name='generation_data_cache')
    op.drop_index(op.f('ix_generation_data_cache_job_id'), table_name='generation_data_cache')
    op.drop_table('generation_data_cache')
    op.drop_index(op.f('ix_materials_jobs_status'), table_name='materials_jobs')
    op.drop_index(op.f('ix_materials_jobs_company_id'), table_name='materials_jobs')
    op.drop_index(op.f('ix_materials_jobs_organization_id'), table_name='materials_jobs')
    op.drop_table('materials_jobs')
    JOB_STATUS.drop(op.get_bind(), checkfirst=True)
    op.drop_index(op.f('ix_companies_business_id'), table_name='companies')
    op.drop_index(op.f('ix_companies_organization_id'), table_name='companies')
    op.drop_table('companies')
