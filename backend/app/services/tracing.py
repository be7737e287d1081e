# backend/app/services/tracing.py
from __future__ import annotations

from typing import Any, List
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from ..core.db import SessionLocal, utcnow
from ..models.job_trace_event import JobTraceEvent

logger = logging.getLogger(__name__)


def trace_job_step(
    job_id: UUID,
    *,
    phase: str,
    step: str | None = None,
    label: str,
    detail: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    """
    Best-effort timeline writer for a materials job.

    Uses its own session so a trace failure never rolls back the caller's
    work. Call it after the caller has committed.
    """
    db = SessionLocal()
    try:
        db.add(
            JobTraceEvent(
                job_id=job_id,
                phase=phase,
                step=step,
                label=label,
                detail=detail,
                meta=meta or {},
                created_at=utcnow(),
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to write job trace event", extra={"job_id": str(job_id)})
    finally:
        db.close()


def list_trace_events(db: Session, job_id: UUID) -> List[JobTraceEvent]:
    return (
        db.query(JobTraceEvent)
        .filter(JobTraceEvent.job_id == job_id)
        .order_by(JobTraceEvent.created_at.asc(), JobTraceEvent.id.asc())
        .all()
    )
