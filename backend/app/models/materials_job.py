from sqlalchemy import Column, String, JSON, Enum, DateTime, Boolean, Integer, Text, Uuid
import uuid
import enum
from ..core.db import Base, utcnow


class JobStatus(str, enum.Enum):
    INITIATED = "initiated"
    COLLECTING_DATA = "collecting_data"
    AWAITING_UPLOADS = "awaiting_uploads"
    QUESTIONNAIRE_PENDING = "questionnaire_pending"
    QUESTIONNAIRE_IN_PROGRESS = "questionnaire_in_progress"
    DATA_CONSOLIDATED = "data_consolidated"
    GENERATING_TEASER = "generating_teaser"
    GENERATING_IM = "generating_im"
    GENERATING_PITCH_DECK = "generating_pitch_deck"
    REVIEW = "review"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class GenerationStatus:
    """Sub-status values for each requested output."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class MaterialsJob(Base):
    __tablename__ = "materials_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(String, index=True, nullable=False)
    company_id = Column(Uuid, index=True, nullable=False)
    created_by = Column(String, nullable=True)

    # requested outputs
    generate_teaser = Column(Boolean, nullable=False, default=True)
    generate_im = Column(Boolean, nullable=False, default=False)
    generate_pitch_deck = Column(Boolean, nullable=False, default=False)

    # derived from status on every transition; never written by callers
    status = Column(Enum(JobStatus), nullable=False, default=JobStatus.INITIATED, index=True)
    previous_status = Column(Enum(JobStatus), nullable=True)
    progress_percentage = Column(Integer, nullable=False, default=0)
    current_step = Column(String, nullable=True)

    # phase flags
    public_data_collected = Column(Boolean, nullable=False, default=False)
    public_data_collected_at = Column(DateTime, nullable=True)
    documents_uploaded = Column(Boolean, nullable=False, default=False)
    documents_uploaded_at = Column(DateTime, nullable=True)
    questionnaire_completed = Column(Boolean, nullable=False, default=False)
    questionnaire_completed_at = Column(DateTime, nullable=True)
    data_consolidated = Column(Boolean, nullable=False, default=False)
    data_consolidated_at = Column(DateTime, nullable=True)

    # per-output generation sub-status + artifact references
    teaser_status = Column(String(16), nullable=False, default=GenerationStatus.PENDING)
    im_status = Column(String(16), nullable=False, default=GenerationStatus.PENDING)
    pitch_deck_status = Column(String(16), nullable=False, default=GenerationStatus.PENDING)
    teaser_asset_id = Column(Uuid, nullable=True)
    im_asset_id = Column(Uuid, nullable=True)
    pitch_deck_asset_id = Column(Uuid, nullable=True)

    # failure state
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)

    consolidated_data = Column(JSON, nullable=True)
    job_metadata = Column(JSON, nullable=True)  # {company_name, industry, options}

    created_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    estimated_completion_at = Column(DateTime, nullable=True)
