"""
Consolidation of collected data and AI generation of the requested outputs.

Generating phases run one output at a time (teaser, IM, pitch deck). Each
`generate` call is driven by a `materials/generate-asset` event and only acts
when the job is still in the matching generating status, so duplicate or
late deliveries are no-ops.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
import json
import logging

from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import utcnow
from ..core.errors import UpstreamError
from ..models.company import Company
from ..models.company_asset import AssetType, CompanyAsset
from ..models.extracted_financial_data import ExtractedFinancialData
from ..models.materials_job import GenerationStatus, JobStatus, MaterialsJob
from . import document_intake, questionnaire
from .enrichment import latest_enrichment
from .events import EVENT_GENERATE_ASSET, EventDispatcher, dispatch_event
from .llm import AIGenerator
from .orchestrator import TransitionResult, fail, get_job, transition
from .state_machine import (
    GENERATING_STATUSES,
    GENERATION_PHASES,
    JobEvent,
    next_generation_status,
    output_for_status,
    requested_outputs,
    status_for_output,
)
from .storage import ObjectStore
from .tracing import trace_job_step

logger = logging.getLogger(__name__)

ARTIFACT_ASSET_TYPES = {
    "teaser": AssetType.TEASER,
    "im": AssetType.INFORMATION_MEMORANDUM,
    "pitch_deck": AssetType.PITCH_DECK,
}

ARTIFACT_TITLES = {
    "teaser": "Teaser",
    "im": "Information Memorandum",
    "pitch_deck": "Pitch Deck",
}

_SECTION = {"type": "object", "properties": {"title": {"type": "string"}, "content": {"type": "string"}}}

ARTIFACT_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "teaser": {
        "type": "object",
        "required": ["headline", "summary", "highlights"],
        "properties": {
            "headline": {"type": "string"},
            "summary": {"type": "string"},
            "highlights": {"type": "array", "items": {"type": "string"}},
            "key_figures": {"type": "object"},
            "transaction": {"type": "string"},
        },
    },
    "im": {
        "type": "object",
        "required": ["title", "executive_summary", "sections"],
        "properties": {
            "title": {"type": "string"},
            "executive_summary": {"type": "string"},
            "sections": {"type": "array", "items": _SECTION},
            "financial_overview": {"type": "object"},
        },
    },
    "pitch_deck": {
        "type": "object",
        "required": ["title", "slides"],
        "properties": {
            "title": {"type": "string"},
            "slides": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "title": {"type": "string"},
                        "bullets": {"type": "array", "items": {"type": "string"}},
                        "notes": {"type": "string"},
                    },
                },
            },
        },
    },
}

ARTIFACT_INSTRUCTIONS = {
    "teaser": (
        "Write an anonymous one-page sell-side teaser. Do not reveal the company "
        "name; describe it by industry, size and location."
    ),
    "im": (
        "Write an information memorandum: company overview, business model, "
        "customers, operations, management, financial overview, growth "
        "opportunities and transaction rationale."
    ),
    "pitch_deck": (
        "Write a 10-12 slide investor pitch deck: problem, solution, market, "
        "product, business model, traction, competition, team, financials, ask."
    ),
}


def _requested_list(job: MaterialsJob) -> List[str]:
    return [k for k, v in requested_outputs(job).items() if v]


class GenerationDispatcher:
    def __init__(
        self,
        generator: AIGenerator,
        store: ObjectStore,
        dispatcher: EventDispatcher,
        max_retries: int | None = None,
    ) -> None:
        self.generator = generator
        self.store = store
        self.dispatcher = dispatcher
        self.max_retries = max_retries if max_retries is not None else get_settings().GENERATION_MAX_RETRIES

    # ------------------------------------------------------------------
    # Consolidation
    # ------------------------------------------------------------------

    def consolidate(self, db: Session, job: MaterialsJob) -> Dict[str, Any]:
        """One generation input from enrichment, documents and answers."""
        company = db.query(Company).filter(Company.id == job.company_id).first()
        meta = job.job_metadata or {}

        entry = latest_enrichment(db, job.id)
        extractions = {
            row.document_id: row.extracted_data
            for row in db.query(ExtractedFinancialData)
            .filter(ExtractedFinancialData.job_id == job.id)
            .all()
        }
        documents = [
            {
                "id": str(doc.id),
                "name": doc.name,
                "mime_type": doc.mime_type,
                "file_url": doc.file_url,
                "extracted": extractions.get(doc.id),
            }
            for doc in document_intake.list_documents(db, job.id)
        ]
        answers = [
            {
                "key": r.question_key,
                "category": r.question_category,
                "question": r.question_text,
                "answer": r.answer,
            }
            for r in questionnaire.list_questions(db, job.id)
            if r.answered_at is not None
        ]

        return {
            "company": {
                "id": str(job.company_id),
                "name": company.name if company else meta.get("company_name"),
                "business_id": company.business_id if company else None,
                "industry": company.industry if company else meta.get("industry"),
                "website": company.website if company else None,
                "country": company.country if company else None,
            },
            "enrichment": entry.data if entry else None,
            "documents": documents,
            "questionnaire": answers,
            "requested_outputs": _requested_list(job),
            "options": meta.get("options") or {},
            "consolidated_at": utcnow().isoformat(),
        }

    # ------------------------------------------------------------------
    # Phase control
    # ------------------------------------------------------------------

    def start(self, db: Session, job_id: Any) -> TransitionResult:
        """data_consolidated -> first requested generating phase."""
        job = get_job(db, job_id)
        wanted = requested_outputs(job)
        first = next_generation_status(job)

        changes: Dict[str, Any] = {}
        for output, phase_status in GENERATION_PHASES:
            if not wanted[output]:
                changes[f"{output}_status"] = GenerationStatus.SKIPPED
            elif phase_status == first:
                changes[f"{output}_status"] = GenerationStatus.RUNNING

        result = transition(
            db,
            job.id,
            JobEvent.START_GENERATION,
            expected_status=JobStatus.DATA_CONSOLIDATED,
            changes=changes,
        )
        if result.applied:
            self._dispatch_phase(result.job)
        return result

    def _dispatch_phase(self, job: MaterialsJob) -> None:
        output = output_for_status(JobStatus(job.status))
        if output:
            dispatch_event(
                self.dispatcher,
                EVENT_GENERATE_ASSET,
                {"job_id": str(job.id), "output": output},
            )

    def _prompt(self, output: str, payload: Dict[str, Any]) -> str:
        return (
            f"{ARTIFACT_INSTRUCTIONS[output]}\n\n"
            "Use only the facts below. Prefer registry-verified fields and "
            "figures extracted from uploaded documents over estimates.\n\n"
            + json.dumps(payload, default=str)
        )

    def generate(self, db: Session, job_id: Any, output: str) -> Optional[TransitionResult]:
        """
        Produce one artifact for the current generating phase.

        Returns None when the job is not in the phase for `output`.
        """
        job = get_job(db, job_id)
        phase_status = status_for_output(output)
        if JobStatus(job.status) != phase_status:
            logger.info(
                "Generation skipped; job not in phase",
                extra={"job_id": str(job.id), "asset_type": output, "step": JobStatus(job.status).value},
            )
            return None

        payload = job.consolidated_data or self.consolidate(db, job)

        trace_job_step(
            job.id,
            phase="GENERATION",
            step=f"generate:{output}:start",
            label=f"Generating {ARTIFACT_TITLES[output]}",
            detail=f"Attempt {job.retry_count + 1} of {self.max_retries}.",
        )

        try:
            content = self.generator.generate(self._prompt(output, payload), ARTIFACT_SCHEMAS[output])
            stored = self.store.put(
                json.dumps(content, ensure_ascii=False).encode("utf-8"),
                "application/json",
                key=f"materials/{job.organization_id}/{job.company_id}/{job.id}/{output}-{utcnow():%Y%m%dT%H%M%S%f}.json",
            )
        except UpstreamError as exc:
            return self._handle_failure(db, job, output, exc)

        asset = CompanyAsset(
            company_id=job.company_id,
            organization_id=job.organization_id,
            job_id=job.id,
            name=f"{ARTIFACT_TITLES[output]} - {(job.job_metadata or {}).get('company_name') or job.company_id}",
            asset_type=ARTIFACT_ASSET_TYPES[output],
            storage_ref=stored.reference,
            file_url=stored.url,
            mime_type="application/json",
            content=content,
            asset_metadata={"job_id": str(job.id), "generated_by": "materials_generation", "output": output},
            created_at=utcnow(),
        )
        db.add(asset)
        db.commit()

        changes: Dict[str, Any] = {
            f"{output}_status": GenerationStatus.SUCCEEDED,
            f"{output}_asset_id": asset.id,
            "retry_count": 0,
            "error_message": None,
        }
        following = next_generation_status(job, after=phase_status)
        following_output = output_for_status(following)
        if following_output:
            changes[f"{following_output}_status"] = GenerationStatus.RUNNING

        result = transition(
            db,
            job.id,
            JobEvent.GENERATION_SUCCEEDED,
            expected_status=phase_status,
            changes=changes,
        )
        if not result.applied:
            logger.info(
                "Generated artifact discarded; job moved on",
                extra={"job_id": str(job.id), "asset_type": output},
            )
            return result

        logger.info(
            "Artifact generated",
            extra={"job_id": str(job.id), "asset_type": output, "step": "generate"},
        )
        if JobStatus(result.job.status) in GENERATING_STATUSES:
            self._dispatch_phase(result.job)
        return result

    def _handle_failure(
        self, db: Session, job: MaterialsJob, output: str, exc: UpstreamError
    ) -> TransitionResult:
        phase_status = status_for_output(output)
        attempts = job.retry_count + 1

        logger.warning(
            "Generation attempt failed: %s",
            exc.message,
            extra={"job_id": str(job.id), "asset_type": output, "step": "generate"},
        )

        if attempts < self.max_retries:
            result = transition(
                db,
                job.id,
                JobEvent.GENERATION_RETRY,
                expected_status=phase_status,
                changes={"error_message": exc.message},
            )
            if result.applied:
                self._dispatch_phase(result.job)
            return result

        return fail(
            db,
            job.id,
            exc.message,
            expected_status=phase_status,
            changes={"retry_count": attempts, f"{output}_status": GenerationStatus.FAILED},
        )
