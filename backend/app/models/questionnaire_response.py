from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Uuid, UniqueConstraint
import uuid

from ..core.db import Base


class QuestionnaireResponse(Base):
    __tablename__ = "material_questionnaire_responses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id = Column(Uuid, ForeignKey("materials_jobs.id"), index=True, nullable=False)
    question_key = Column(String(64), nullable=False)     # "business_model_1"
    question_text = Column(Text, nullable=False)
    question_category = Column(String(64), nullable=False)
    display_order = Column(Integer, nullable=False)
    answer = Column(JSON, nullable=True)
    answered_at = Column(DateTime, nullable=True)  # null until answered

    __table_args__ = (
        # Seeding the question set twice must not duplicate questions
        UniqueConstraint("job_id", "question_key", name="uq_questionnaire_job_question"),
    )
