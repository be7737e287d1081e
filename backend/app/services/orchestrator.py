"""
Job lifecycle: creation, transitions, status aggregation and the
client-driven actions (cancel, approve, retry, complete uploads, answer).

Every status change goes through `transition`, which applies one edge of the
state machine as a compare-and-swap on (status, retry_count). Stale or
illegal transitions are no-ops, which is what makes re-delivered worker
events safe.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from ..core.db import utcnow
from ..core.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from ..models.company import Company
from ..models.company_asset import CompanyAsset
from ..models.enrichment_cache_entry import EnrichmentCacheEntry
from ..models.materials_job import GenerationStatus, JobStatus, MaterialsJob
from . import document_intake, questionnaire
from .events import (
    EVENT_COLLECT_PUBLIC_DATA,
    EVENT_GENERATE_ASSET,
    EVENT_JOB_INITIATED,
    EVENT_QUESTIONNAIRE_COMPLETED,
    EventDispatcher,
    dispatch_event,
)
from .state_machine import (
    EVENT_PHASE_FLAGS,
    GENERATION_PHASES,
    PRE_REVIEW_STATUSES,
    TERMINAL_STATUSES,
    JobEvent,
    available_actions,
    current_step_for,
    estimated_completion_at,
    estimated_minutes_remaining,
    output_for_status,
    progress_for,
    requested_outputs,
    resolve_transition,
)
from .tracing import trace_job_step

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    organization_id: str
    user_id: Optional[str] = None


@dataclass
class TransitionResult:
    applied: bool
    job: MaterialsJob
    previous: JobStatus

    @property
    def status(self) -> JobStatus:
        return JobStatus(self.job.status)


def _as_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise NotFoundError("Job not found") from exc


def get_job(db: Session, job_id: Any) -> MaterialsJob:
    job = (
        db.query(MaterialsJob)
        .filter(MaterialsJob.id == _as_uuid(job_id))
        .populate_existing()
        .first()
    )
    if not job:
        raise NotFoundError("Job not found")
    return job


def get_job_for_caller(db: Session, job_id: Any, caller: Caller) -> MaterialsJob:
    job = get_job(db, job_id)
    if job.organization_id != caller.organization_id:
        raise ForbiddenError("Job belongs to another organization")
    return job


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def create_job(
    db: Session,
    *,
    company_id: Any,
    caller: Caller,
    dispatcher: EventDispatcher,
    generate_teaser: bool = True,
    generate_im: bool = False,
    generate_pitch_deck: bool = False,
    options: Dict[str, Any] | None = None,
) -> MaterialsJob:
    if not (generate_teaser or generate_im or generate_pitch_deck):
        raise ValidationError("At least one output must be requested")

    try:
        company_uuid = UUID(str(company_id))
    except ValueError as exc:
        raise NotFoundError("Company not found") from exc

    company = db.query(Company).filter(Company.id == company_uuid).first()
    if not company:
        raise NotFoundError("Company not found")
    if company.organization_id != caller.organization_id:
        raise ForbiddenError("Company belongs to another organization")

    active = (
        db.query(MaterialsJob)
        .filter(
            MaterialsJob.company_id == company.id,
            MaterialsJob.status.in_(list(PRE_REVIEW_STATUSES)),
        )
        .first()
    )
    if active:
        raise InvalidStateError(f"Company already has an active materials job ({active.id})")

    now = utcnow()
    job = MaterialsJob(
        organization_id=caller.organization_id,
        company_id=company.id,
        created_by=caller.user_id,
        generate_teaser=bool(generate_teaser),
        generate_im=bool(generate_im),
        generate_pitch_deck=bool(generate_pitch_deck),
        status=JobStatus.INITIATED,
        progress_percentage=progress_for(JobStatus.INITIATED),
        current_step=current_step_for(JobStatus.INITIATED),
        job_metadata={
            "company_name": company.name,
            "industry": company.industry,
            "options": options or {},
        },
        created_at=now,
    )
    db.add(job)
    db.flush()
    job.estimated_completion_at = estimated_completion_at(job, now)
    db.commit()
    db.refresh(job)

    logger.info(
        "Materials job created",
        extra={"job_id": str(job.id), "company_id": str(company.id), "step": "create"},
    )
    trace_job_step(
        job.id,
        phase="INIT",
        step="job_created",
        label="Materials job created",
        detail=f"Requested outputs: {', '.join(k for k, v in requested_outputs(job).items() if v)}.",
    )

    dispatch_event(
        dispatcher,
        EVENT_JOB_INITIATED,
        {
            "job_id": str(job.id),
            "company_id": str(job.company_id),
            "organization_id": job.organization_id,
        },
    )
    return job


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def transition(
    db: Session,
    job_id: Any,
    event: JobEvent,
    *,
    expected_status: JobStatus | None = None,
    changes: Dict[str, Any] | None = None,
) -> TransitionResult:
    """
    Apply one state-machine edge atomically.

    `expected_status` pins the source state; when the job has moved on the
    call is a no-op. `changes` are extra columns written in the same update
    (artifact references, error message, consolidated data).
    """
    job = get_job(db, job_id)
    current = JobStatus(job.status)

    if expected_status is not None and current != expected_status:
        logger.info(
            "Stale transition ignored",
            extra={"job_id": str(job.id), "event": event.value, "step": current.value},
        )
        return TransitionResult(False, job, current)

    target = resolve_transition(job, event)
    if target is None:
        logger.info(
            "Illegal transition ignored",
            extra={"job_id": str(job.id), "event": event.value, "step": current.value},
        )
        return TransitionResult(False, job, current)

    now = utcnow()
    values: Dict[str, Any] = {
        "status": target,
        "previous_status": current,
        "progress_percentage": progress_for(target, current),
        "current_step": current_step_for(target),
        "estimated_completion_at": estimated_completion_at(job, now, target),
    }
    for flag in EVENT_PHASE_FLAGS.get(event, ()):
        values[flag] = True
        values[f"{flag}_at"] = now
    if event == JobEvent.START_COLLECTION:
        values["started_at"] = now
    if event == JobEvent.GENERATION_RETRY:
        values["retry_count"] = job.retry_count + 1
    if event == JobEvent.RETRY:
        values["retry_count"] = 0
        values["error_message"] = None
        values["completed_at"] = None
        # the output that failed goes back to running
        output = output_for_status(target)
        if output:
            values[f"{output}_status"] = GenerationStatus.RUNNING
    if target in TERMINAL_STATUSES:
        values["completed_at"] = now
    if changes:
        values.update(changes)

    rows = (
        db.query(MaterialsJob)
        .filter(
            MaterialsJob.id == job.id,
            MaterialsJob.status == current,
            MaterialsJob.retry_count == job.retry_count,
        )
        .update(values, synchronize_session=False)
    )
    if rows != 1:
        db.rollback()
        job = get_job(db, job.id)
        logger.info(
            "Concurrent transition lost compare-and-swap",
            extra={"job_id": str(job.id), "event": event.value},
        )
        return TransitionResult(False, job, current)

    db.commit()
    db.refresh(job)

    logger.info(
        "Job transitioned",
        extra={"job_id": str(job.id), "event": event.value, "step": target.value},
    )
    trace_job_step(
        job.id,
        phase="STATUS",
        step=f"{current.value}->{target.value}",
        label=current_step_for(target),
        detail=job.error_message if target == JobStatus.FAILED else None,
        meta={"event": event.value, "progress": job.progress_percentage},
    )

    if target == JobStatus.QUESTIONNAIRE_PENDING:
        questionnaire.seed_questions(db, job)

    return TransitionResult(True, job, current)


def fail(
    db: Session,
    job_id: Any,
    message: str,
    *,
    expected_status: JobStatus | None = None,
    changes: Dict[str, Any] | None = None,
) -> TransitionResult:
    """Move a non-terminal job to failed, keeping `message` verbatim."""
    values = {"error_message": message}
    if changes:
        values.update(changes)
    return transition(db, job_id, JobEvent.FAIL, expected_status=expected_status, changes=values)


# ---------------------------------------------------------------------------
# Client actions
# ---------------------------------------------------------------------------


def cancel(db: Session, job_id: Any, caller: Caller) -> MaterialsJob:
    job = get_job_for_caller(db, job_id, caller)
    current = JobStatus(job.status)
    if current not in PRE_REVIEW_STATUSES:
        raise InvalidStateError(f"Job cannot be cancelled in status '{current.value}'")

    result = transition(db, job.id, JobEvent.CANCEL, expected_status=current)
    if not result.applied:
        raise InvalidStateError("Job changed state concurrently; cancel not applied")
    return result.job


def approve(db: Session, job_id: Any, caller: Caller) -> MaterialsJob:
    job = get_job_for_caller(db, job_id, caller)
    current = JobStatus(job.status)
    if current != JobStatus.REVIEW:
        raise InvalidStateError(f"Only jobs in review can be approved (status '{current.value}')")

    result = transition(db, job.id, JobEvent.APPROVE, expected_status=current)
    if not result.applied:
        raise InvalidStateError("Job changed state concurrently; approve not applied")
    return result.job


def _redispatch(dispatcher: EventDispatcher, job: MaterialsJob) -> None:
    """Re-send the work for the phase a retried job re-entered."""
    status = JobStatus(job.status)
    payload: Dict[str, Any] = {"job_id": str(job.id)}

    if status == JobStatus.INITIATED:
        dispatch_event(dispatcher, EVENT_JOB_INITIATED, payload)
    elif status == JobStatus.COLLECTING_DATA:
        dispatch_event(dispatcher, EVENT_COLLECT_PUBLIC_DATA, payload)
    elif status in (JobStatus.QUESTIONNAIRE_IN_PROGRESS, JobStatus.DATA_CONSOLIDATED):
        dispatch_event(dispatcher, EVENT_QUESTIONNAIRE_COMPLETED, payload)
    else:
        output = output_for_status(status)
        if output:
            dispatch_event(dispatcher, EVENT_GENERATE_ASSET, {**payload, "output": output})


def retry(db: Session, job_id: Any, caller: Caller, dispatcher: EventDispatcher) -> MaterialsJob:
    job = get_job_for_caller(db, job_id, caller)
    current = JobStatus(job.status)
    if current != JobStatus.FAILED:
        raise InvalidStateError(f"Only failed jobs can be retried (status '{current.value}')")
    if job.previous_status is None:
        raise InvalidStateError("Job has no phase to resume")

    result = transition(db, job.id, JobEvent.RETRY, expected_status=current)
    if not result.applied:
        raise InvalidStateError("Job changed state concurrently; retry not applied")

    _redispatch(dispatcher, result.job)
    return result.job


def complete_uploads(db: Session, job_id: Any, caller: Caller) -> MaterialsJob:
    job = get_job_for_caller(db, job_id, caller)
    current = JobStatus(job.status)
    if current != JobStatus.AWAITING_UPLOADS:
        raise InvalidStateError(f"Job is not awaiting uploads (status '{current.value}')")
    if document_intake.count_documents(db, job.id) == 0:
        raise ValidationError("Upload at least one financial document first")

    result = transition(db, job.id, JobEvent.DOCUMENTS_UPLOADED, expected_status=current)
    if not result.applied:
        raise InvalidStateError("Job changed state concurrently; uploads not completed")
    return result.job


def submit_answer(
    db: Session,
    job_id: Any,
    question_id: Any,
    answer: Any,
    caller: Caller,
    dispatcher: EventDispatcher,
) -> questionnaire.QuestionnaireProgress:
    job = get_job_for_caller(db, job_id, caller)
    try:
        question_uuid = UUID(str(question_id))
    except ValueError as exc:
        raise NotFoundError("Question not found") from exc

    progress = questionnaire.record_answer(db, job, question_uuid, answer)

    if JobStatus(job.status) == JobStatus.QUESTIONNAIRE_PENDING:
        transition(db, job.id, JobEvent.QUESTIONNAIRE_STARTED, expected_status=JobStatus.QUESTIONNAIRE_PENDING)

    if progress.completed:
        dispatch_event(dispatcher, EVENT_QUESTIONNAIRE_COMPLETED, {"job_id": str(job.id)})
    return progress


def questionnaire_view(db: Session, job_id: Any, caller: Caller) -> Dict[str, Any]:
    job = get_job_for_caller(db, job_id, caller)
    if JobStatus(job.status) in questionnaire.ANSWERABLE_STATUSES:
        # heals a crash between entering questionnaire_pending and seeding
        questionnaire.seed_questions(db, job)

    rows = questionnaire.list_questions(db, job.id)
    progress = questionnaire.completion(db, job.id)
    return {
        "job_id": str(job.id),
        "status": JobStatus(job.status).value,
        "questions": [
            {
                "id": str(r.id),
                "key": r.question_key,
                "category": r.question_category,
                "text": r.question_text,
                "order": r.display_order,
                "answer": r.answer,
                "answered_at": r.answered_at.isoformat() if r.answered_at else None,
            }
            for r in rows
        ],
        "total": progress.total,
        "answered": progress.answered,
        "completion_percentage": progress.completion_percentage,
        "completed": progress.completed,
    }


# ---------------------------------------------------------------------------
# Status aggregate
# ---------------------------------------------------------------------------


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _asset_ref(db: Session, asset_id: Any) -> Optional[Dict[str, Any]]:
    if not asset_id:
        return None
    asset = db.query(CompanyAsset).filter(CompanyAsset.id == asset_id).first()
    if not asset:
        return {"id": str(asset_id)}
    return {
        "id": str(asset.id),
        "name": asset.name,
        "asset_type": asset.asset_type,
        "file_url": asset.file_url,
    }


def get_status(db: Session, job_id: Any, caller: Caller) -> Dict[str, Any]:
    job = get_job_for_caller(db, job_id, caller)
    status = JobStatus(job.status)
    company = db.query(Company).filter(Company.id == job.company_id).first()
    meta = job.job_metadata or {}

    progress = questionnaire.completion(db, job.id)
    uploaded = document_intake.count_documents(db, job.id)
    cache_count = (
        db.query(EnrichmentCacheEntry)
        .filter(EnrichmentCacheEntry.job_id == job.id)
        .count()
    )
    latest = (
        db.query(EnrichmentCacheEntry)
        .filter(EnrichmentCacheEntry.job_id == job.id)
        .order_by(EnrichmentCacheEntry.collected_at.desc())
        .first()
    )
    enrichment = None
    if latest:
        enrichment = {
            "confidence_score": latest.confidence_score,
            "requires_manual_confirmation": (latest.data or {}).get("requires_manual_confirmation"),
            "warnings": latest.warnings or [],
        }

    error = None
    if job.error_message or status == JobStatus.FAILED:
        error = {"message": job.error_message, "retry_count": job.retry_count}

    return {
        "job_id": str(job.id),
        "status": status.value,
        "progress": job.progress_percentage,
        "current_step": job.current_step,
        "company": {
            "id": str(job.company_id),
            "name": company.name if company else meta.get("company_name"),
            "industry": company.industry if company else meta.get("industry"),
        },
        "requested_outputs": requested_outputs(job),
        "phases": {
            "public_data_collected": job.public_data_collected,
            "public_data_collected_at": _iso(job.public_data_collected_at),
            "documents_uploaded": job.documents_uploaded,
            "documents_uploaded_at": _iso(job.documents_uploaded_at),
            "questionnaire_completed": job.questionnaire_completed,
            "questionnaire_completed_at": _iso(job.questionnaire_completed_at),
            "data_consolidated": job.data_consolidated,
            "data_consolidated_at": _iso(job.data_consolidated_at),
        },
        "data_collection": {
            "cached_data_sources": cache_count,
            "uploaded_documents": uploaded,
            "enrichment": enrichment,
            "questionnaire": {
                "total_questions": progress.total,
                "answered_questions": progress.answered,
                "completion_percentage": progress.completion_percentage,
            },
        },
        "generation": {
            output: getattr(job, f"{output}_status") for output, _ in GENERATION_PHASES
        },
        "generated_assets": {
            output: _asset_ref(db, getattr(job, f"{output}_asset_id")) for output, _ in GENERATION_PHASES
        },
        "timing": {
            "created_at": _iso(job.created_at),
            "started_at": _iso(job.started_at),
            "completed_at": _iso(job.completed_at),
            "estimated_completion_at": _iso(job.estimated_completion_at),
            "estimated_minutes_remaining": estimated_minutes_remaining(job),
        },
        "error": error,
        "available_actions": available_actions(status, uploaded),
    }
