import logging

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..schemas.materials import (
    ActionResult,
    AnswerRequest,
    AnswerResult,
    JobTraceEventOut,
    MaterialsJobCreated,
    MaterialsJobRequest,
    UploadResult,
)
from ..services import document_intake, orchestrator
from ..services.document_intake import IncomingFile
from ..services.events import EventDispatcher
from ..services.orchestrator import Caller
from ..services.state_machine import estimated_minutes_remaining
from ..services.storage import ObjectStore
from ..services.tracing import list_trace_events
from .deps import get_caller, get_dispatcher, get_store, verify_api_key

router = APIRouter(tags=["materials"], dependencies=[Depends(verify_api_key)])

logger = logging.getLogger(__name__)


@router.post("/jobs", response_model=MaterialsJobCreated, status_code=201)
def create_materials_job(
    payload: MaterialsJobRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    job = orchestrator.create_job(
        db,
        company_id=payload.company_id,
        caller=caller,
        dispatcher=dispatcher,
        generate_teaser=payload.generate_teaser,
        generate_im=payload.generate_im,
        generate_pitch_deck=payload.generate_pitch_deck,
        options=payload.options,
    )
    return MaterialsJobCreated(
        job_id=job.id,
        status=job.status,
        estimated_duration=estimated_minutes_remaining(job),
    )


@router.get("/jobs/{job_id}/status")
def get_job_status(
    job_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return orchestrator.get_status(db, job_id, caller)


@router.post("/jobs/{job_id}/uploads", response_model=UploadResult)
def upload_job_documents(
    job_id: str,
    files: list[UploadFile] = File(...),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
    store: ObjectStore = Depends(get_store),
):
    job = orchestrator.get_job_for_caller(db, job_id, caller)
    incoming = [
        IncomingFile(
            filename=f.filename or "upload",
            content_type=f.content_type or "",
            data=f.file.read(),
        )
        for f in files
    ]
    report = document_intake.upload_documents(db, job, incoming, store=store, dispatcher=dispatcher)
    return UploadResult(
        uploaded=report.uploaded,
        total=report.total,
        document_ids=report.document_ids,
        failed=report.failed,
    )


@router.post("/jobs/{job_id}/uploads/complete")
def complete_job_uploads(
    job_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    orchestrator.complete_uploads(db, job_id, caller)
    return orchestrator.get_status(db, job_id, caller)


@router.get("/jobs/{job_id}/questionnaire")
def get_job_questionnaire(
    job_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return orchestrator.questionnaire_view(db, job_id, caller)


@router.post("/jobs/{job_id}/questionnaire/{question_id}", response_model=AnswerResult)
def answer_question(
    job_id: str,
    question_id: str,
    payload: AnswerRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    progress = orchestrator.submit_answer(db, job_id, question_id, payload.answer, caller, dispatcher)
    return AnswerResult(
        question_id=question_id,
        answered=progress.answered,
        total=progress.total,
        completion_percentage=progress.completion_percentage,
        completed=progress.completed,
    )


@router.post("/jobs/{job_id}/cancel", response_model=ActionResult)
def cancel_job(
    job_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    job = orchestrator.cancel(db, job_id, caller)
    return ActionResult(success=True, status=job.status)


@router.post("/jobs/{job_id}/approve", response_model=ActionResult)
def approve_job(
    job_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    job = orchestrator.approve(db, job_id, caller)
    return ActionResult(success=True, status=job.status)


@router.post("/jobs/{job_id}/retry", response_model=ActionResult)
def retry_job(
    job_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    dispatcher: EventDispatcher = Depends(get_dispatcher),
):
    job = orchestrator.retry(db, job_id, caller, dispatcher)
    return ActionResult(success=True, status=job.status)


@router.get("/jobs/{job_id}/trace", response_model=list[JobTraceEventOut])
def get_job_trace(
    job_id: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    job = orchestrator.get_job_for_caller(db, job_id, caller)
    return [JobTraceEventOut.model_validate(e) for e in list_trace_events(db, job.id)]
