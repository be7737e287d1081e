from sqlalchemy import Column, String, DateTime, JSON, Integer, Uuid
import uuid

from ..core.db import Base, utcnow


class AssetType:
    FINANCIAL_DOCUMENT = "financial_document"
    TEASER = "teaser"
    INFORMATION_MEMORANDUM = "information_memorandum"
    PITCH_DECK = "pitch_deck"


class CompanyAsset(Base):
    """
    A file linked to a company: user uploads and generated artifacts alike.

    The pipeline creates assets but never deletes them. The originating job is
    recorded in `asset_metadata["job_id"]` (and mirrored in `job_id` for
    querying).
    """
    __tablename__ = "company_assets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid, index=True, nullable=False)
    organization_id = Column(String, index=True, nullable=False)
    job_id = Column(Uuid, index=True, nullable=True)
    name = Column(String, nullable=False)
    asset_type = Column(String(32), index=True, nullable=False)
    storage_ref = Column(String, nullable=False)
    file_url = Column(String, nullable=True)
    mime_type = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)
    content = Column(JSON, nullable=True)          # generated artifact body
    asset_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
