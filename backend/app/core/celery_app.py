from celery import Celery

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging()

MATERIALS_QUEUE = "materials"

celery_app = Celery(
    "materials_generation",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_routes={"app.services.workflow.*": {"queue": MATERIALS_QUEUE}},
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Events are delivered at least once; handlers are idempotent
    task_acks_late=True,
    imports=("app.services.workflow",),
)
