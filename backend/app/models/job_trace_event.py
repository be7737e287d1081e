from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey, Uuid

from ..core.db import Base, utcnow


class JobTraceEvent(Base):
    __tablename__ = "materials_trace_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Uuid,
                    ForeignKey("materials_jobs.id"),
                    index=True,
                    nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    phase = Column(String, nullable=False)   # "COLLECTION", "UPLOADS", "GENERATION", …
    step = Column(String, nullable=True)     # "registry_lookup", "generate:teaser", …
    label = Column(String, nullable=False)   # short human-readable summary
    detail = Column(String, nullable=True)   # one-paragraph explanation
    meta = Column(JSON, nullable=True)       # small, structured extras for UI
