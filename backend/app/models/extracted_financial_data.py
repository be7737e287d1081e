from sqlalchemy import Column, Float, String, DateTime, ForeignKey, JSON, Uuid, UniqueConstraint
import uuid

from ..core.db import Base, utcnow


class ExtractedFinancialData(Base):
    __tablename__ = "extracted_financial_data"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id = Column(Uuid, ForeignKey("materials_jobs.id"), index=True, nullable=False)
    document_id = Column(Uuid, ForeignKey("company_assets.id"), index=True, nullable=False)
    extracted_data = Column(JSON, nullable=False)  # {"error": "..."} when extraction failed
    extraction_method = Column(String(32), nullable=False)
    confidence_score = Column(Float, nullable=False, default=0.0)
    extracted_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("job_id", "document_id", name="uq_extracted_financial_data_document"),
    )
