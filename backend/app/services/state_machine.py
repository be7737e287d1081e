"""
Materials job state machine.

Everything the client sees about a job's position in the pipeline (progress,
current-step label, ETA, available actions) is derived from the single
`JobStatus` value through the tables in this module. No other code computes
these from phase flags.

Edges are keyed by (status, event). A few edges branch on which outputs the
job requested, so targets are resolved against the job rather than stored as
constants:

    initiated              --start_collection-------> collecting_data
    collecting_data        --public_data_collected--> awaiting_uploads | questionnaire_pending
    awaiting_uploads       --documents_uploaded-----> questionnaire_pending
    questionnaire_pending  --questionnaire_started--> questionnaire_in_progress
    questionnaire_in_prog. --questionnaire_completed> data_consolidated
    data_consolidated      --start_generation-------> first requested generating_*
    generating_*           --generation_succeeded---> next requested generating_* | review
    generating_*           --generation_retry-------> same generating_*
    review                 --approve----------------> completed
    <non-terminal>         --fail-------------------> failed
    <pre-review>           --cancel-----------------> cancelled
    failed                 --retry------------------> previous_status
"""
from __future__ import annotations

import enum
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models.materials_job import JobStatus


class JobEvent(str, enum.Enum):
    START_COLLECTION = "start_collection"
    PUBLIC_DATA_COLLECTED = "public_data_collected"
    DOCUMENTS_UPLOADED = "documents_uploaded"
    QUESTIONNAIRE_STARTED = "questionnaire_started"
    QUESTIONNAIRE_COMPLETED = "questionnaire_completed"
    START_GENERATION = "start_generation"
    GENERATION_SUCCEEDED = "generation_succeeded"
    GENERATION_RETRY = "generation_retry"
    APPROVE = "approve"
    FAIL = "fail"
    CANCEL = "cancel"
    RETRY = "retry"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

PRE_REVIEW_STATUSES = frozenset({
    JobStatus.INITIATED,
    JobStatus.COLLECTING_DATA,
    JobStatus.AWAITING_UPLOADS,
    JobStatus.QUESTIONNAIRE_PENDING,
    JobStatus.QUESTIONNAIRE_IN_PROGRESS,
    JobStatus.DATA_CONSOLIDATED,
    JobStatus.GENERATING_TEASER,
    JobStatus.GENERATING_IM,
    JobStatus.GENERATING_PITCH_DECK,
})

# (output key, generating status) in the order the phases are visited
GENERATION_PHASES: Tuple[Tuple[str, JobStatus], ...] = (
    ("teaser", JobStatus.GENERATING_TEASER),
    ("im", JobStatus.GENERATING_IM),
    ("pitch_deck", JobStatus.GENERATING_PITCH_DECK),
)
GENERATING_STATUSES = frozenset(status for _, status in GENERATION_PHASES)

# Nothing is offered to the client until public data collection finishes
COLLECTION_STATUSES = frozenset({JobStatus.INITIATED, JobStatus.COLLECTING_DATA})

STATUS_PROGRESS: Dict[JobStatus, int] = {
    JobStatus.INITIATED: 0,
    JobStatus.COLLECTING_DATA: 5,
    JobStatus.AWAITING_UPLOADS: 25,
    JobStatus.QUESTIONNAIRE_PENDING: 45,
    JobStatus.QUESTIONNAIRE_IN_PROGRESS: 50,
    JobStatus.DATA_CONSOLIDATED: 70,
    JobStatus.GENERATING_TEASER: 75,
    JobStatus.GENERATING_IM: 80,
    JobStatus.GENERATING_PITCH_DECK: 85,
    JobStatus.REVIEW: 95,
    JobStatus.COMPLETED: 100,
}

STATUS_STEP_LABELS: Dict[JobStatus, str] = {
    JobStatus.INITIATED: "Job created, waiting for a worker...",
    JobStatus.COLLECTING_DATA: "Collecting public data...",
    JobStatus.AWAITING_UPLOADS: "Waiting for financial document uploads...",
    JobStatus.QUESTIONNAIRE_PENDING: "Waiting for questionnaire completion...",
    JobStatus.QUESTIONNAIRE_IN_PROGRESS: "Questionnaire in progress...",
    JobStatus.DATA_CONSOLIDATED: "All data consolidated",
    JobStatus.GENERATING_TEASER: "Generating teaser with AI...",
    JobStatus.GENERATING_IM: "Generating information memorandum with AI...",
    JobStatus.GENERATING_PITCH_DECK: "Generating pitch deck with AI...",
    JobStatus.REVIEW: "Materials ready for review",
    JobStatus.COMPLETED: "All materials generated successfully!",
    JobStatus.FAILED: "Materials generation failed",
    JobStatus.CANCELLED: "Materials generation cancelled",
}

# Phase flag (and its *_at timestamp) stamped when an event is accepted
EVENT_PHASE_FLAGS: Dict[JobEvent, Tuple[str, ...]] = {
    JobEvent.PUBLIC_DATA_COLLECTED: ("public_data_collected",),
    JobEvent.DOCUMENTS_UPLOADED: ("documents_uploaded",),
    JobEvent.QUESTIONNAIRE_COMPLETED: ("questionnaire_completed", "data_consolidated"),
}

ACTION_UPLOAD_DOCUMENTS = "upload_documents"
ACTION_COMPLETE_UPLOADS = "complete_uploads"
ACTION_COMPLETE_QUESTIONNAIRE = "complete_questionnaire"
ACTION_REVIEW_MATERIALS = "review_materials"
ACTION_APPROVE_MATERIALS = "approve_materials"
ACTION_CANCEL_JOB = "cancel_job"
ACTION_RETRY_JOB = "retry_job"


def requested_outputs(job: Any) -> Dict[str, bool]:
    return {
        "teaser": bool(job.generate_teaser),
        "im": bool(job.generate_im),
        "pitch_deck": bool(job.generate_pitch_deck),
    }


def requires_documents(job: Any) -> bool:
    """IM and pitch deck need uploaded financials; a teaser alone does not."""
    return bool(job.generate_im or job.generate_pitch_deck)


def output_for_status(status: JobStatus) -> Optional[str]:
    for output, phase_status in GENERATION_PHASES:
        if phase_status == status:
            return output
    return None


def status_for_output(output: str) -> JobStatus:
    for key, phase_status in GENERATION_PHASES:
        if key == output:
            return phase_status
    raise KeyError(output)


def next_generation_status(job: Any, after: Optional[JobStatus] = None) -> JobStatus:
    """First requested generating phase strictly after `after` (or review)."""
    wanted = requested_outputs(job)
    passed = after is None
    for output, phase_status in GENERATION_PHASES:
        if not passed:
            passed = phase_status == after
            continue
        if wanted[output]:
            return phase_status
    return JobStatus.REVIEW


def _after_collection(job: Any) -> JobStatus:
    if requires_documents(job):
        return JobStatus.AWAITING_UPLOADS
    return JobStatus.QUESTIONNAIRE_PENDING


Target = Callable[[Any], Optional[JobStatus]]


def _to(status: JobStatus) -> Target:
    return lambda job: status


TRANSITIONS: Dict[JobStatus, Dict[JobEvent, Target]] = {
    JobStatus.INITIATED: {
        JobEvent.START_COLLECTION: _to(JobStatus.COLLECTING_DATA),
    },
    JobStatus.COLLECTING_DATA: {
        JobEvent.PUBLIC_DATA_COLLECTED: _after_collection,
    },
    JobStatus.AWAITING_UPLOADS: {
        JobEvent.DOCUMENTS_UPLOADED: _to(JobStatus.QUESTIONNAIRE_PENDING),
    },
    JobStatus.QUESTIONNAIRE_PENDING: {
        JobEvent.QUESTIONNAIRE_STARTED: _to(JobStatus.QUESTIONNAIRE_IN_PROGRESS),
    },
    JobStatus.QUESTIONNAIRE_IN_PROGRESS: {
        JobEvent.QUESTIONNAIRE_COMPLETED: _to(JobStatus.DATA_CONSOLIDATED),
    },
    JobStatus.DATA_CONSOLIDATED: {
        JobEvent.START_GENERATION: lambda job: next_generation_status(job),
    },
    JobStatus.REVIEW: {
        JobEvent.APPROVE: _to(JobStatus.COMPLETED),
    },
    JobStatus.FAILED: {
        JobEvent.RETRY: lambda job: job.previous_status,
    },
}

for _output, _phase_status in GENERATION_PHASES:
    TRANSITIONS[_phase_status] = {
        JobEvent.GENERATION_SUCCEEDED: (lambda s: lambda job: next_generation_status(job, after=s))(_phase_status),
        JobEvent.GENERATION_RETRY: _to(_phase_status),
    }


def resolve_transition(job: Any, event: JobEvent) -> Optional[JobStatus]:
    """
    Target status for `event` from the job's current status, or None when the
    edge does not exist.
    """
    current = JobStatus(job.status)

    if event == JobEvent.FAIL:
        return None if current in TERMINAL_STATUSES else JobStatus.FAILED
    if event == JobEvent.CANCEL:
        return JobStatus.CANCELLED if current in PRE_REVIEW_STATUSES else None

    target = TRANSITIONS.get(current, {}).get(event)
    if target is None:
        return None
    return target(job)


def progress_for(status: JobStatus, previous_status: Optional[JobStatus] = None) -> int:
    """Terminal failure states keep the progress of the phase they left."""
    if status in STATUS_PROGRESS:
        return STATUS_PROGRESS[status]
    if previous_status is not None and previous_status in STATUS_PROGRESS:
        return STATUS_PROGRESS[previous_status]
    return 0


def current_step_for(status: JobStatus) -> str:
    return STATUS_STEP_LABELS[status]


def estimated_minutes_remaining(job: Any, status: Optional[JobStatus] = None) -> int:
    """
    Coarse step function over the remaining phases; advisory only.

    `status` overrides the job's stored status so a transition can compute
    the ETA of the state it is about to enter.
    """
    status = JobStatus(status if status is not None else job.status)
    if status in (JobStatus.INITIATED, JobStatus.COLLECTING_DATA):
        return 240 if job.generate_im else 120 if job.generate_pitch_deck else 15
    if status in (
        JobStatus.AWAITING_UPLOADS,
        JobStatus.QUESTIONNAIRE_PENDING,
        JobStatus.QUESTIONNAIRE_IN_PROGRESS,
    ):
        return 200 if job.generate_im else 100 if job.generate_pitch_deck else 10
    if status == JobStatus.DATA_CONSOLIDATED or status in GENERATING_STATUSES:
        wanted = requested_outputs(job)
        remaining = 0
        reached = status == JobStatus.DATA_CONSOLIDATED
        for output, phase_status in GENERATION_PHASES:
            reached = reached or phase_status == status
            if reached and wanted[output]:
                remaining += 1
        return 5 * remaining
    return 0


def estimated_completion_at(job: Any, now: datetime, status: Optional[JobStatus] = None) -> Optional[datetime]:
    status = JobStatus(status if status is not None else job.status)
    if status in TERMINAL_STATUSES:
        return None
    return now + timedelta(minutes=estimated_minutes_remaining(job, status))


def available_actions(status: JobStatus, uploaded_documents: int = 0) -> List[str]:
    """
    Client actions for a status; never offers one the API would reject.

    Completing uploads needs at least one stored document.
    """
    actions: List[str] = []
    if status == JobStatus.AWAITING_UPLOADS:
        actions.append(ACTION_UPLOAD_DOCUMENTS)
        if uploaded_documents > 0:
            actions.append(ACTION_COMPLETE_UPLOADS)
    if status in (JobStatus.QUESTIONNAIRE_PENDING, JobStatus.QUESTIONNAIRE_IN_PROGRESS):
        actions.append(ACTION_COMPLETE_QUESTIONNAIRE)
    if status == JobStatus.REVIEW:
        actions += [ACTION_REVIEW_MATERIALS, ACTION_APPROVE_MATERIALS]
    if status == JobStatus.FAILED:
        actions.append(ACTION_RETRY_JOB)
    if status in PRE_REVIEW_STATUSES and status not in COLLECTION_STATUSES:
        actions.append(ACTION_CANCEL_JOB)
    return actions
