from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, Integer, Uuid
import uuid

from ..core.db import Base, utcnow


class EnrichmentCacheEntry(Base):
    """
    One enrichment result per collector invocation.

    Rows are append-only: a collection retry inserts a fresh entry instead of
    overwriting, so earlier attempts stay auditable. Consumers read the most
    recent entry by `collected_at`.
    """
    __tablename__ = "generation_data_cache"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id = Column(Uuid, ForeignKey("materials_jobs.id"), index=True, nullable=False)
    company_id = Column(Uuid, index=True, nullable=False)
    data_source = Column(String, nullable=False)   # "company_enrichment"
    data_type = Column(String, nullable=False)     # "company_profile"
    data = Column(JSON, nullable=False)            # serialized EnrichmentResult
    confidence_score = Column(Integer, nullable=False, default=0)
    warnings = Column(JSON, nullable=True)
    collected_at = Column(DateTime, default=utcnow, nullable=False)
