"""
Tests for state_machine.py

Transition table, derived progress/labels/ETA and available actions.
These are pure functions over a job-like object, so no database is needed.
"""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from app.models.materials_job import JobStatus
from app.services.state_machine import (
    PRE_REVIEW_STATUSES,
    STATUS_PROGRESS,
    TERMINAL_STATUSES,
    JobEvent,
    available_actions,
    estimated_completion_at,
    estimated_minutes_remaining,
    next_generation_status,
    progress_for,
    requires_documents,
    resolve_transition,
)


def make_job(status=JobStatus.INITIATED, teaser=True, im=False, pitch_deck=False, previous=None):
    return SimpleNamespace(
        status=status,
        previous_status=previous,
        generate_teaser=teaser,
        generate_im=im,
        generate_pitch_deck=pitch_deck,
    )


def walk(job, events):
    """Apply events in order, returning the visited statuses."""
    visited = [JobStatus(job.status)]
    for event in events:
        target = resolve_transition(job, event)
        assert target is not None, f"{event} rejected in {job.status}"
        job.previous_status, job.status = job.status, target
        visited.append(target)
    return visited


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

class TestResolveTransition:
    """Tests for edge resolution from (status, event)."""

    def test_collection_goes_to_uploads_when_im_requested(self):
        """IM needs financial documents, so collection ends in awaiting_uploads."""
        job = make_job(JobStatus.COLLECTING_DATA, im=True)
        assert resolve_transition(job, JobEvent.PUBLIC_DATA_COLLECTED) == JobStatus.AWAITING_UPLOADS

    def test_collection_skips_uploads_for_teaser_only(self):
        """A teaser-only job goes straight to the questionnaire."""
        job = make_job(JobStatus.COLLECTING_DATA)
        assert resolve_transition(job, JobEvent.PUBLIC_DATA_COLLECTED) == JobStatus.QUESTIONNAIRE_PENDING

    def test_pitch_deck_requires_documents(self):
        assert requires_documents(make_job(pitch_deck=True))
        assert not requires_documents(make_job())

    def test_start_generation_picks_first_requested_phase(self):
        """Unrequested outputs are skipped in the fixed teaser, IM, deck order."""
        job = make_job(JobStatus.DATA_CONSOLIDATED, teaser=False, im=False, pitch_deck=True)
        assert resolve_transition(job, JobEvent.START_GENERATION) == JobStatus.GENERATING_PITCH_DECK

    def test_generation_success_advances_to_next_requested(self):
        job = make_job(JobStatus.GENERATING_TEASER, im=False, pitch_deck=True)
        assert resolve_transition(job, JobEvent.GENERATION_SUCCEEDED) == JobStatus.GENERATING_PITCH_DECK

    def test_last_generation_success_goes_to_review(self):
        job = make_job(JobStatus.GENERATING_IM, im=True)
        assert resolve_transition(job, JobEvent.GENERATION_SUCCEEDED) == JobStatus.REVIEW

    def test_generation_retry_is_self_loop(self):
        job = make_job(JobStatus.GENERATING_TEASER)
        assert resolve_transition(job, JobEvent.GENERATION_RETRY) == JobStatus.GENERATING_TEASER

    def test_illegal_edge_returns_none(self):
        """An event with no edge from the current status is rejected."""
        job = make_job(JobStatus.INITIATED)
        assert resolve_transition(job, JobEvent.DOCUMENTS_UPLOADED) is None
        assert resolve_transition(job, JobEvent.APPROVE) is None

    @pytest.mark.parametrize("status", sorted(PRE_REVIEW_STATUSES, key=lambda s: s.value))
    def test_cancel_allowed_before_review(self, status):
        assert resolve_transition(make_job(status), JobEvent.CANCEL) == JobStatus.CANCELLED

    @pytest.mark.parametrize("status", [JobStatus.REVIEW, *TERMINAL_STATUSES])
    def test_cancel_rejected_from_review_and_terminal(self, status):
        assert resolve_transition(make_job(status), JobEvent.CANCEL) is None

    def test_fail_allowed_from_review(self):
        assert resolve_transition(make_job(JobStatus.REVIEW), JobEvent.FAIL) == JobStatus.FAILED

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_fail_rejected_from_terminal(self, status):
        assert resolve_transition(make_job(status), JobEvent.FAIL) is None

    def test_retry_returns_to_previous_status(self):
        job = make_job(JobStatus.FAILED, previous=JobStatus.GENERATING_IM, im=True)
        assert resolve_transition(job, JobEvent.RETRY) == JobStatus.GENERATING_IM

    def test_retry_only_from_failed(self):
        job = make_job(JobStatus.CANCELLED, previous=JobStatus.COLLECTING_DATA)
        assert resolve_transition(job, JobEvent.RETRY) is None


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------

HAPPY_PATH_ALL_OUTPUTS = [
    JobEvent.START_COLLECTION,
    JobEvent.PUBLIC_DATA_COLLECTED,
    JobEvent.DOCUMENTS_UPLOADED,
    JobEvent.QUESTIONNAIRE_STARTED,
    JobEvent.QUESTIONNAIRE_COMPLETED,
    JobEvent.START_GENERATION,
    JobEvent.GENERATION_SUCCEEDED,
    JobEvent.GENERATION_SUCCEEDED,
    JobEvent.GENERATION_SUCCEEDED,
    JobEvent.APPROVE,
]


class TestProgress:
    """Progress is derived from status and never decreases along a path."""

    @pytest.mark.parametrize(
        "outputs",
        [
            {"teaser": True, "im": False, "pitch_deck": False},
            {"teaser": True, "im": True, "pitch_deck": True},
            {"teaser": False, "im": True, "pitch_deck": False},
        ],
    )
    def test_progress_monotone_on_happy_path(self, outputs):
        job = make_job(teaser=outputs["teaser"], im=outputs["im"], pitch_deck=outputs["pitch_deck"])
        events = [JobEvent.START_COLLECTION, JobEvent.PUBLIC_DATA_COLLECTED]
        if outputs["im"] or outputs["pitch_deck"]:
            events.append(JobEvent.DOCUMENTS_UPLOADED)
        events += [JobEvent.QUESTIONNAIRE_STARTED, JobEvent.QUESTIONNAIRE_COMPLETED, JobEvent.START_GENERATION]
        events += [JobEvent.GENERATION_SUCCEEDED] * sum(outputs.values())
        events.append(JobEvent.APPROVE)

        visited = walk(job, events)
        progress = [progress_for(s) for s in visited]

        assert visited[-1] == JobStatus.COMPLETED
        assert progress == sorted(progress)
        assert progress[-1] == 100

    def test_progress_monotone_through_retries(self):
        job = make_job(JobStatus.DATA_CONSOLIDATED)
        visited = walk(
            job,
            [JobEvent.START_GENERATION, JobEvent.GENERATION_RETRY, JobEvent.GENERATION_RETRY, JobEvent.GENERATION_SUCCEEDED],
        )
        progress = [progress_for(s) for s in visited]
        assert progress == sorted(progress)

    def test_terminal_failure_keeps_previous_progress(self):
        """Failed and cancelled jobs report the progress of the phase they left."""
        assert progress_for(JobStatus.FAILED, JobStatus.GENERATING_IM) == STATUS_PROGRESS[JobStatus.GENERATING_IM]
        assert progress_for(JobStatus.CANCELLED, JobStatus.AWAITING_UPLOADS) == 25

    def test_all_outputs_path_visits_every_generating_phase(self):
        job = make_job(teaser=True, im=True, pitch_deck=True)
        visited = walk(job, HAPPY_PATH_ALL_OUTPUTS)
        assert JobStatus.GENERATING_TEASER in visited
        assert JobStatus.GENERATING_IM in visited
        assert JobStatus.GENERATING_PITCH_DECK in visited


class TestEstimatedTime:
    """ETA step function."""

    def test_before_collection_depends_on_outputs(self):
        assert estimated_minutes_remaining(make_job(im=True)) == 240
        assert estimated_minutes_remaining(make_job(pitch_deck=True)) == 120
        assert estimated_minutes_remaining(make_job()) == 15

    def test_waiting_on_user_input(self):
        assert estimated_minutes_remaining(make_job(JobStatus.AWAITING_UPLOADS, im=True)) == 200
        assert estimated_minutes_remaining(make_job(JobStatus.QUESTIONNAIRE_PENDING)) == 10

    def test_generation_counts_remaining_phases(self):
        job = make_job(JobStatus.GENERATING_IM, im=True, pitch_deck=True)
        assert estimated_minutes_remaining(job) == 10
        job = make_job(JobStatus.DATA_CONSOLIDATED, im=True, pitch_deck=True)
        assert estimated_minutes_remaining(job) == 15

    def test_status_override(self):
        """The ETA of a target status can be computed before the job enters it."""
        job = make_job(JobStatus.INITIATED)
        assert estimated_minutes_remaining(job, JobStatus.REVIEW) == 0

    def test_terminal_has_no_completion_estimate(self):
        now = datetime(2026, 1, 1, 12, 0, 0)
        assert estimated_completion_at(make_job(JobStatus.COMPLETED), now) is None
        assert estimated_completion_at(make_job(), now) == now + timedelta(minutes=15)


class TestNextGenerationStatus:
    def test_none_requested_after_teaser(self):
        assert next_generation_status(make_job(), after=JobStatus.GENERATING_TEASER) == JobStatus.REVIEW

    def test_first_phase(self):
        assert next_generation_status(make_job(teaser=False, im=True)) == JobStatus.GENERATING_IM


# ---------------------------------------------------------------------------
# Available actions
# ---------------------------------------------------------------------------

class TestAvailableActions:
    """Actions are derived from status and the stored document count."""

    def test_nothing_offered_while_collecting(self):
        assert available_actions(JobStatus.INITIATED) == []
        assert available_actions(JobStatus.COLLECTING_DATA) == []

    def test_uploads_phase(self):
        actions = available_actions(JobStatus.AWAITING_UPLOADS, uploaded_documents=1)
        assert "upload_documents" in actions
        assert "complete_uploads" in actions
        assert "cancel_job" in actions

    def test_complete_uploads_needs_a_document(self):
        actions = available_actions(JobStatus.AWAITING_UPLOADS)
        assert actions == ["upload_documents", "cancel_job"]

    def test_questionnaire_phase(self):
        for status in (JobStatus.QUESTIONNAIRE_PENDING, JobStatus.QUESTIONNAIRE_IN_PROGRESS):
            assert "complete_questionnaire" in available_actions(status)

    def test_review_phase(self):
        assert available_actions(JobStatus.REVIEW) == ["review_materials", "approve_materials"]

    def test_failed_offers_retry_only(self):
        assert available_actions(JobStatus.FAILED) == ["retry_job"]

    @pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.CANCELLED])
    def test_terminal_offers_nothing(self, status):
        assert available_actions(status) == []

    @pytest.mark.parametrize("status", list(JobStatus))
    def test_cancel_advertised_only_where_legal(self, status):
        """Never offer cancel where the transition would be rejected."""
        if "cancel_job" in available_actions(status):
            assert resolve_transition(make_job(status), JobEvent.CANCEL) == JobStatus.CANCELLED
