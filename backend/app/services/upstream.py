from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar
import logging

from ..core.errors import UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Explicit result of a call to an unreliable collaborator.

    Callers branch on `ok` instead of catching exceptions, so a registry or
    AI failure can be folded into warnings rather than aborting the job.
    """
    value: Optional[T] = None
    error: Optional[str] = None
    source: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, source: str | None = None) -> "Outcome[T]":
        return cls(value=value, source=source)

    @classmethod
    def failure(cls, error: str, source: str | None = None) -> "Outcome[T]":
        return cls(error=error, source=source)


def attempt(source: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Outcome[T]:
    try:
        return Outcome.success(fn(*args, **kwargs), source=source)
    except UpstreamError as exc:
        logger.warning("Upstream call failed: %s", exc.message, extra={"step": source})
        return Outcome.failure(exc.message, source=source)


async def attempt_async(source: str, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> Outcome[T]:
    try:
        return Outcome.success(await fn(*args, **kwargs), source=source)
    except UpstreamError as exc:
        logger.warning("Upstream call failed: %s", exc.message, extra={"step": source})
        return Outcome.failure(exc.message, source=source)
