"""
Celery tasks for the materials pipeline, one per event.

Each task opens its own session and delegates to a plain `run_*` function
that takes its collaborators as arguments; tests call those directly with
in-memory fakes. Handlers are idempotent: they check the job's status first
and do nothing when the phase has already moved on.
"""
from __future__ import annotations

from typing import Any, Callable, Optional, Sequence
import logging

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.db import SessionLocal
from ..core.errors import NotFoundError
from ..models.company import Company
from ..models.materials_job import JobStatus
from . import document_intake, questionnaire
from .connectors import get_registry_lookup
from .enrichment import EnrichmentCollector
from .events import EVENT_COLLECT_PUBLIC_DATA, EventDispatcher, dispatch_event, get_event_dispatcher
from .generation import GenerationDispatcher
from .llm import AIGenerator, get_ai_generator
from .orchestrator import TransitionResult, fail, get_job, transition
from .state_machine import TERMINAL_STATUSES, JobEvent
from .storage import ObjectStore, get_object_store
from .tracing import trace_job_step

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Phase handlers
# ---------------------------------------------------------------------------


def run_job_initiated(db: Session, job_id: Any, dispatcher: EventDispatcher) -> TransitionResult:
    result = transition(db, job_id, JobEvent.START_COLLECTION, expected_status=JobStatus.INITIATED)
    if result.applied:
        dispatch_event(dispatcher, EVENT_COLLECT_PUBLIC_DATA, {"job_id": str(result.job.id)})
    return result


def run_public_data_collection(
    db: Session, job_id: Any, collector: EnrichmentCollector
) -> Optional[TransitionResult]:
    job = get_job(db, job_id)
    if JobStatus(job.status) != JobStatus.COLLECTING_DATA:
        logger.info(
            "Collection skipped; job not collecting",
            extra={"job_id": str(job.id), "step": JobStatus(job.status).value},
        )
        return None

    company = db.query(Company).filter(Company.id == job.company_id).first()
    if not company:
        return fail(db, job.id, "Company not found", expected_status=JobStatus.COLLECTING_DATA)

    trace_job_step(
        job.id,
        phase="COLLECTION",
        step="enrichment:start",
        label="Collecting public company data",
        detail="Querying the business registry and building an AI company profile.",
    )
    result, entry = collector.collect(db, job, company)
    trace_job_step(
        job.id,
        phase="COLLECTION",
        step="enrichment:done",
        label="Public data collected",
        detail="; ".join(result.warnings) or None,
        meta={
            "confidence_score": result.confidence_score,
            "requires_manual_confirmation": result.requires_manual_confirmation,
            "sources": result.sources_used,
        },
    )

    return transition(db, job.id, JobEvent.PUBLIC_DATA_COLLECTED, expected_status=JobStatus.COLLECTING_DATA)


def run_upload_processing(
    db: Session,
    job_id: Any,
    generator: AIGenerator,
    store: ObjectStore,
    document_ids: Sequence[str] | None = None,
) -> int:
    job = get_job(db, job_id)
    if JobStatus(job.status) in TERMINAL_STATUSES:
        return 0
    processed = document_intake.process_uploads(
        db, job, generator=generator, store=store, document_ids=document_ids
    )
    if processed:
        trace_job_step(
            job.id,
            phase="UPLOADS",
            step="extract_financials",
            label="Financial documents processed",
            detail=f"{processed} document(s) analysed.",
        )
    return processed


def run_consolidation(
    db: Session, job_id: Any, generation: GenerationDispatcher
) -> Optional[TransitionResult]:
    job = get_job(db, job_id)
    status = JobStatus(job.status)

    if status == JobStatus.DATA_CONSOLIDATED:
        # consolidated before a crash; generation was never started
        return generation.start(db, job.id)
    if status != JobStatus.QUESTIONNAIRE_IN_PROGRESS:
        logger.info(
            "Consolidation skipped; questionnaire not in progress",
            extra={"job_id": str(job.id), "step": status.value},
        )
        return None

    progress = questionnaire.completion(db, job.id)
    if not progress.completed:
        logger.info(
            "Consolidation skipped; questionnaire incomplete",
            extra={"job_id": str(job.id), "step": "consolidate"},
        )
        return None

    consolidated = generation.consolidate(db, job)
    result = transition(
        db,
        job.id,
        JobEvent.QUESTIONNAIRE_COMPLETED,
        expected_status=JobStatus.QUESTIONNAIRE_IN_PROGRESS,
        changes={"consolidated_data": consolidated},
    )
    if not result.applied:
        return result
    return generation.start(db, job.id)


def run_generation(
    db: Session, job_id: Any, output: str, generation: GenerationDispatcher
) -> Optional[TransitionResult]:
    return generation.generate(db, job_id, output)


# ---------------------------------------------------------------------------
# Celery tasks
# ---------------------------------------------------------------------------


def _generation_dispatcher() -> GenerationDispatcher:
    return GenerationDispatcher(get_ai_generator(), get_object_store(), get_event_dispatcher())


def _run(job_id: str, step: str, handler: Callable[[Session], Any]) -> Any:
    """
    Session + failure policy shared by every task: an unexpected exception
    fails the job with its message and is re-raised so Celery records it.
    """
    db: Session = SessionLocal()
    try:
        return handler(db)
    except NotFoundError:
        logger.warning("Job not found for task", extra={"job_id": job_id, "step": step})
        return None
    except Exception as e:
        db.rollback()
        try:
            fail(db, job_id, str(e)[:500])
        except NotFoundError:
            pass
        logger.exception("Materials task failed", extra={"job_id": job_id, "step": step})
        raise
    finally:
        db.close()


@celery_app.task(name="app.services.workflow.handle_job_initiated", bind=True)
def handle_job_initiated(self, job_id: str, **_: Any):
    _run(job_id, "initiated", lambda db: run_job_initiated(db, job_id, get_event_dispatcher()))


@celery_app.task(name="app.services.workflow.collect_public_data", bind=True)
def collect_public_data(self, job_id: str, **_: Any):
    collector = EnrichmentCollector(get_registry_lookup(), get_ai_generator())
    _run(job_id, "collect_public_data", lambda db: run_public_data_collection(db, job_id, collector))


@celery_app.task(name="app.services.workflow.process_uploads", bind=True)
def process_uploads(self, job_id: str, document_ids: list[str] | None = None, **_: Any):
    _run(
        job_id,
        "process_uploads",
        lambda db: run_upload_processing(db, job_id, get_ai_generator(), get_object_store(), document_ids),
    )


@celery_app.task(name="app.services.workflow.consolidate_data", bind=True)
def consolidate_data(self, job_id: str, **_: Any):
    _run(job_id, "consolidate", lambda db: run_consolidation(db, job_id, _generation_dispatcher()))


@celery_app.task(name="app.services.workflow.generate_asset", bind=True)
def generate_asset(self, job_id: str, output: str, **_: Any):
    _run(job_id, f"generate:{output}", lambda db: run_generation(db, job_id, output, _generation_dispatcher()))
