# backend/app/schemas/materials.py
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

from ..models.materials_job import JobStatus

MAX_OPTIONS_KEYS = 50
MAX_ANSWER_LEN = 10000


class MaterialsJobRequest(BaseModel):
    company_id: UUID
    generate_teaser: bool = True
    generate_im: bool = False
    generate_pitch_deck: bool = False
    options: dict[str, Any] | None = None

    @field_validator("options")
    @classmethod
    def validate_options(cls, v: dict | None) -> dict | None:
        if v is not None and len(v) > MAX_OPTIONS_KEYS:
            raise ValueError(f"options may have at most {MAX_OPTIONS_KEYS} keys")
        return v


class MaterialsJobCreated(BaseModel):
    job_id: UUID
    status: JobStatus
    estimated_duration: int  # minutes


class UploadResult(BaseModel):
    uploaded: int
    total: int
    document_ids: list[str]
    failed: list[dict[str, str]] = []


class AnswerRequest(BaseModel):
    answer: Any

    @field_validator("answer")
    @classmethod
    def validate_answer(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            if len(v) > MAX_ANSWER_LEN:
                raise ValueError(f"answer must be at most {MAX_ANSWER_LEN} characters")
        return v


class AnswerResult(BaseModel):
    question_id: UUID
    answered: int
    total: int
    completion_percentage: int
    completed: bool


class ActionResult(BaseModel):
    success: bool
    status: JobStatus


class JobTraceEventOut(BaseModel):
    id: int
    created_at: datetime
    phase: str
    step: str | None = None
    label: str
    detail: str | None = None
    meta: dict | None = None

    model_config = ConfigDict(from_attributes=True)
