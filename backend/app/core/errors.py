"""
Error taxonomy for the materials pipeline.

Services raise these; the HTTP layer maps them to status codes in
`app.main`, and workers translate them into job state.
"""
from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error the pipeline raises on purpose."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(PipelineError):
    """Unknown job, company, question or document."""

    status_code = 404


class ForbiddenError(PipelineError):
    """Cross-tenant access."""

    status_code = 403


class InvalidStateError(PipelineError):
    """Transition or action is illegal for the job's current status."""

    status_code = 409


class ValidationError(PipelineError):
    """Bad input shape or disallowed file type."""

    status_code = 400


class UpstreamError(PipelineError):
    """Registry, AI or storage failure."""

    status_code = 502

    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(message)
        self.source = source
