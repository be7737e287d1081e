"""
Event dispatch between the API and the background workers.

`send` is fire-and-forget: callers never wait for a phase to run, and a
failed send must not undo work the caller already committed. Use
`dispatch_event` at call sites; it logs dispatch failures instead of raising.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Dict, List, Tuple
import logging

logger = logging.getLogger(__name__)

EVENT_JOB_INITIATED = "materials/generate.initiated"
EVENT_COLLECT_PUBLIC_DATA = "materials/collect-public-data"
EVENT_PROCESS_UPLOADS = "materials/process-uploads"
EVENT_QUESTIONNAIRE_COMPLETED = "materials/questionnaire-completed"
EVENT_GENERATE_ASSET = "materials/generate-asset"

# Event name -> Celery task that handles it (see app.services.workflow)
EVENT_TASKS: Dict[str, str] = {
    EVENT_JOB_INITIATED: "app.services.workflow.handle_job_initiated",
    EVENT_COLLECT_PUBLIC_DATA: "app.services.workflow.collect_public_data",
    EVENT_PROCESS_UPLOADS: "app.services.workflow.process_uploads",
    EVENT_QUESTIONNAIRE_COMPLETED: "app.services.workflow.consolidate_data",
    EVENT_GENERATE_ASSET: "app.services.workflow.generate_asset",
}


class EventDispatcher(ABC):
    @abstractmethod
    def send(self, event_name: str, payload: Dict[str, Any]) -> None:
        ...


class CeleryEventDispatcher(EventDispatcher):
    """Routes events to worker tasks through the Celery broker."""

    def send(self, event_name: str, payload: Dict[str, Any]) -> None:
        from ..core.celery_app import celery_app, MATERIALS_QUEUE

        task_name = EVENT_TASKS.get(event_name)
        if task_name is None:
            raise ValueError(f"Unknown event: {event_name}")

        celery_app.send_task(task_name, kwargs=payload, queue=MATERIALS_QUEUE)


class InMemoryEventDispatcher(EventDispatcher):
    """
    Records events instead of delivering them.

    Used by tests and local scripts to drive the workflow step by step.
    Set `fail_with` to make every send raise.
    """

    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        self.fail_with: Exception | None = None

    def send(self, event_name: str, payload: Dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append((event_name, dict(payload)))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def pop_all(self) -> List[Tuple[str, Dict[str, Any]]]:
        events, self.events = self.events, []
        return events


def dispatch_event(dispatcher: EventDispatcher, event_name: str, payload: Dict[str, Any]) -> bool:
    """Best-effort send. Returns False (and logs) when dispatch failed."""
    try:
        dispatcher.send(event_name, payload)
        return True
    except Exception:
        logger.exception(
            "Failed to dispatch event",
            extra={"event": event_name, "job_id": payload.get("job_id")},
        )
        return False


@lru_cache(maxsize=1)
def get_event_dispatcher() -> EventDispatcher:
    return CeleryEventDispatcher()
