"""
Financial document uploads for a materials job.

Uploads are stored through the object store and recorded as
`financial_document` assets tagged with the job. Extraction of financial
metrics runs later in a worker (`process_uploads`).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import utcnow
from ..core.errors import InvalidStateError, UpstreamError, ValidationError
from ..models.company_asset import AssetType, CompanyAsset
from ..models.extracted_financial_data import ExtractedFinancialData
from ..models.materials_job import JobStatus, MaterialsJob
from .events import EVENT_PROCESS_UPLOADS, EventDispatcher, dispatch_event
from .llm import AIGenerator
from .storage import ObjectStore, sanitize_filename
from .upstream import attempt

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/csv",
    "image/jpeg",
    "image/png",
})

EXTRACTION_METHOD = "ai_structured"
EXTRACTION_CONFIDENCE = 0.85
# Text sent to the model per document; binary formats are summarised by metadata
EXTRACTION_TEXT_LIMIT = 20000

EXTRACTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["periods"],
    "properties": {
        "document_type": {"type": ["string", "null"]},
        "currency": {"type": ["string", "null"]},
        "periods": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "year": {"type": "integer"},
                    "revenue": {"type": ["number", "null"]},
                    "ebitda": {"type": ["number", "null"]},
                    "operating_profit": {"type": ["number", "null"]},
                    "net_profit": {"type": ["number", "null"]},
                    "total_assets": {"type": ["number", "null"]},
                    "equity": {"type": ["number", "null"]},
                },
            },
        },
    },
}


@dataclass
class IncomingFile:
    filename: str
    content_type: str
    data: bytes


@dataclass
class UploadReport:
    total: int
    document_ids: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    @property
    def uploaded(self) -> int:
        return len(self.document_ids)


def storage_key(job: MaterialsJob, filename: str, now: datetime) -> str:
    stamp = now.strftime("%Y%m%dT%H%M%S%f")
    return f"materials/{job.organization_id}/{job.company_id}/{job.id}/{stamp}_{sanitize_filename(filename)}"


def _validate(incoming: IncomingFile, max_bytes: int) -> Optional[str]:
    content_type = (incoming.content_type or "").split(";")[0].strip().lower()
    if content_type not in ALLOWED_MIME_TYPES:
        return f"Unsupported file type: {incoming.content_type or 'unknown'}"
    if not incoming.data:
        return "File is empty"
    if len(incoming.data) > max_bytes:
        return f"File exceeds the {max_bytes // (1024 * 1024)} MB limit"
    return None


def upload_documents(
    db: Session,
    job: MaterialsJob,
    files: Sequence[IncomingFile],
    *,
    store: ObjectStore,
    dispatcher: EventDispatcher,
    max_bytes: int | None = None,
) -> UploadReport:
    """
    Store each valid file and record it as a financial document.

    Partial success is allowed. Raises only when no file succeeded:
    ValidationError if every failure was a validation failure, otherwise
    UpstreamError.
    """
    if JobStatus(job.status) != JobStatus.AWAITING_UPLOADS:
        raise InvalidStateError(
            f"Job is not awaiting uploads (status '{JobStatus(job.status).value}')"
        )
    if not files:
        raise ValidationError("No files provided")

    if max_bytes is None:
        max_bytes = get_settings().MAX_UPLOAD_SIZE_MB * 1024 * 1024

    report = UploadReport(total=len(files))
    storage_failures = 0

    for incoming in files:
        problem = _validate(incoming, max_bytes)
        if problem:
            report.failed.append({"filename": incoming.filename, "error": problem})
            continue

        now = utcnow()
        try:
            stored = store.put(
                incoming.data,
                incoming.content_type,
                key=storage_key(job, incoming.filename, now),
            )
        except UpstreamError as exc:
            storage_failures += 1
            report.failed.append({"filename": incoming.filename, "error": exc.message})
            logger.warning(
                "Document storage failed",
                extra={"job_id": str(job.id), "step": "upload_store"},
            )
            continue

        asset = CompanyAsset(
            company_id=job.company_id,
            organization_id=job.organization_id,
            job_id=job.id,
            name=incoming.filename,
            asset_type=AssetType.FINANCIAL_DOCUMENT,
            storage_ref=stored.reference,
            file_url=stored.url,
            mime_type=incoming.content_type,
            file_size=len(incoming.data),
            asset_metadata={
                "job_id": str(job.id),
                "uploaded_for": "materials_generation",
                "original_filename": incoming.filename,
            },
            created_at=now,
        )
        db.add(asset)
        db.commit()
        report.document_ids.append(str(asset.id))

    if not report.document_ids:
        message = "; ".join(f"{f['filename']}: {f['error']}" for f in report.failed)
        if storage_failures:
            raise UpstreamError(f"No documents uploaded: {message}", source="storage")
        raise ValidationError(f"No documents uploaded: {message}")

    logger.info(
        "Documents uploaded",
        extra={"job_id": str(job.id), "step": "upload_documents"},
    )

    dispatch_event(
        dispatcher,
        EVENT_PROCESS_UPLOADS,
        {"job_id": str(job.id), "document_ids": report.document_ids},
    )
    return report


def list_documents(db: Session, job_id: UUID) -> List[CompanyAsset]:
    return (
        db.query(CompanyAsset)
        .filter(
            CompanyAsset.job_id == job_id,
            CompanyAsset.asset_type == AssetType.FINANCIAL_DOCUMENT,
        )
        .order_by(CompanyAsset.created_at.asc())
        .all()
    )


def count_documents(db: Session, job_id: UUID) -> int:
    return (
        db.query(CompanyAsset)
        .filter(
            CompanyAsset.job_id == job_id,
            CompanyAsset.asset_type == AssetType.FINANCIAL_DOCUMENT,
        )
        .count()
    )


def _extraction_prompt(document: CompanyAsset, raw: bytes) -> str:
    header = (
        f"Document: {document.name} ({document.mime_type}, {document.file_size} bytes)\n"
        "Extract yearly financial figures (revenue, EBITDA, operating profit, "
        "net profit, total assets, equity). Use null for anything not stated."
    )
    if document.mime_type == "text/csv":
        text = raw.decode("utf-8", errors="replace")[:EXTRACTION_TEXT_LIMIT]
        return f"{header}\n\n{text}"
    return header


def process_uploads(
    db: Session,
    job: MaterialsJob,
    *,
    generator: AIGenerator,
    store: ObjectStore,
    document_ids: Sequence[str] | None = None,
) -> int:
    """
    Extract financial data for every uploaded document that has none yet.

    Extraction failures are recorded as `{"error": ...}` rows and never fail
    the job. Returns the number of documents processed in this call.
    """
    documents = list_documents(db, job.id)
    if document_ids:
        wanted = {str(d) for d in document_ids}
        documents = [d for d in documents if str(d.id) in wanted]

    done = {
        doc_id
        for (doc_id,) in db.query(ExtractedFinancialData.document_id)
        .filter(ExtractedFinancialData.job_id == job.id)
        .all()
    }

    processed = 0
    for document in documents:
        if document.id in done:
            continue

        raw = attempt("storage", store.get, document.storage_ref)
        if raw.ok:
            outcome = attempt(
                "ai",
                generator.generate,
                _extraction_prompt(document, raw.value),
                EXTRACTION_SCHEMA,
            )
        else:
            outcome = raw

        if outcome.ok:
            data, confidence = outcome.value, EXTRACTION_CONFIDENCE
        else:
            data, confidence = {"error": outcome.error}, 0.0

        db.add(
            ExtractedFinancialData(
                job_id=job.id,
                document_id=document.id,
                extracted_data=data,
                extraction_method=EXTRACTION_METHOD,
                confidence_score=confidence,
                extracted_at=utcnow(),
            )
        )
        try:
            db.commit()
        except IntegrityError:
            # another delivery of the same event got there first
            db.rollback()
            continue
        processed += 1

    logger.info(
        "Uploads processed",
        extra={"job_id": str(job.id), "step": "process_uploads"},
    )
    return processed
