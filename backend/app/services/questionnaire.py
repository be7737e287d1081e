from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.db import utcnow
from ..core.errors import InvalidStateError, NotFoundError, ValidationError
from ..models.materials_job import JobStatus, MaterialsJob
from ..models.questionnaire_response import QuestionnaireResponse

logger = logging.getLogger(__name__)

ANSWERABLE_STATUSES = frozenset({JobStatus.QUESTIONNAIRE_PENDING, JobStatus.QUESTIONNAIRE_IN_PROGRESS})

# (category, question) pairs; keys are derived as f"{category}_{n}"
BASE_QUESTIONS: Tuple[Tuple[str, str], ...] = (
    ("business_model", "Describe your business model and main revenue streams."),
    ("customers", "Who are your key customers, and how concentrated is revenue among them?"),
    ("future_goals", "What are the company's main goals for the next 3-5 years?"),
    ("operations", "Describe key operational strengths and critical dependencies."),
    ("legal", "Are there pending legal matters, disputes or material contractual obligations?"),
)

IM_QUESTIONS: Tuple[Tuple[str, str], ...] = (
    ("management", "Describe the management team and which key people stay after the transaction."),
    ("financials", "Explain notable changes in revenue and profitability over the last three years."),
    ("transaction", "What is the rationale for the sale and the preferred transaction structure?"),
)

PITCH_DECK_QUESTIONS: Tuple[Tuple[str, str], ...] = (
    ("market", "How large is your addressable market and how is it growing?"),
    ("competition", "Who are your main competitors and what differentiates you from them?"),
)


def question_set_for(job: MaterialsJob) -> List[Dict[str, Any]]:
    """Question templates for a job; more requested outputs mean more questions."""
    templates = list(BASE_QUESTIONS)
    if job.generate_im:
        templates += IM_QUESTIONS
    if job.generate_pitch_deck:
        templates += PITCH_DECK_QUESTIONS

    seen: Dict[str, int] = {}
    questions = []
    for order, (category, text) in enumerate(templates, start=1):
        seen[category] = seen.get(category, 0) + 1
        questions.append(
            {
                "key": f"{category}_{seen[category]}",
                "category": category,
                "text": text,
                "order": order,
            }
        )
    return questions


def seed_questions(db: Session, job: MaterialsJob) -> int:
    """
    Insert the job's question set. Idempotent: existing keys are left alone
    (the unique constraint on (job_id, question_key) catches racing seeders).
    Returns the number of questions inserted.
    """
    existing = {
        key
        for (key,) in db.query(QuestionnaireResponse.question_key)
        .filter(QuestionnaireResponse.job_id == job.id)
        .all()
    }

    inserted = 0
    for q in question_set_for(job):
        if q["key"] in existing:
            continue
        db.add(
            QuestionnaireResponse(
                job_id=job.id,
                question_key=q["key"],
                question_text=q["text"],
                question_category=q["category"],
                display_order=q["order"],
            )
        )
        inserted += 1

    if not inserted:
        return 0

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Questionnaire already seeded concurrently", extra={"job_id": str(job.id)})
        return 0

    logger.info(
        "Questionnaire seeded",
        extra={"job_id": str(job.id), "step": "questionnaire_seed"},
    )
    return inserted


def list_questions(db: Session, job_id: UUID) -> List[QuestionnaireResponse]:
    return (
        db.query(QuestionnaireResponse)
        .filter(QuestionnaireResponse.job_id == job_id)
        .order_by(QuestionnaireResponse.display_order.asc())
        .all()
    )


@dataclass
class QuestionnaireProgress:
    total: int
    answered: int

    @property
    def completion_percentage(self) -> int:
        if self.total == 0:
            return 0
        return round(self.answered / self.total * 100)

    @property
    def completed(self) -> bool:
        return self.total > 0 and self.answered == self.total


def completion(db: Session, job_id: UUID) -> QuestionnaireProgress:
    rows = list_questions(db, job_id)
    answered = sum(1 for r in rows if r.answered_at is not None)
    return QuestionnaireProgress(total=len(rows), answered=answered)


def _is_empty(answer: Any) -> bool:
    if answer is None:
        return True
    if isinstance(answer, str):
        return not answer.strip()
    if isinstance(answer, (list, dict)):
        return len(answer) == 0
    return False


def record_answer(db: Session, job: MaterialsJob, question_id: UUID, answer: Any) -> QuestionnaireProgress:
    """
    Store an answer for one of the job's questions. Re-answering overwrites
    the previous answer. The caller owns the resulting status transition.
    """
    if JobStatus(job.status) not in ANSWERABLE_STATUSES:
        raise InvalidStateError(f"Questionnaire is not open in status '{JobStatus(job.status).value}'")
    if _is_empty(answer):
        raise ValidationError("Answer must not be empty")

    response = (
        db.query(QuestionnaireResponse)
        .filter(QuestionnaireResponse.id == question_id, QuestionnaireResponse.job_id == job.id)
        .first()
    )
    if not response:
        raise NotFoundError("Question not found")

    response.answer = answer
    response.answered_at = utcnow()
    db.commit()

    progress = completion(db, job.id)
    logger.info(
        "Questionnaire answer recorded",
        extra={"job_id": str(job.id), "step": "questionnaire_answer"},
    )
    return progress
