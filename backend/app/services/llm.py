from __future__ import annotations

from functools import lru_cache
from contextlib import contextmanager
from threading import BoundedSemaphore
from typing import Any, Dict
import json
import logging

from openai import OpenAI, OpenAIError

from ..core.config import get_settings
from ..core.errors import UpstreamError

logger = logging.getLogger(__name__)

_llm_semaphore: BoundedSemaphore | None = None


def _get_semaphore() -> BoundedSemaphore:
    """
    Lazy-initialised global semaphore for limiting concurrent LLM calls.
    """
    global _llm_semaphore
    if _llm_semaphore is None:
        settings = get_settings()
        _llm_semaphore = BoundedSemaphore(settings.LLM_MAX_CONCURRENCY)
    return _llm_semaphore


@contextmanager
def limit_llm_concurrency():
    """
    Bound concurrent calls to the LLM provider across worker threads.

        with limit_llm_concurrency():
            client.chat.completions.create(...)
    """
    sem = _get_semaphore()
    sem.acquire()
    try:
        yield
    finally:
        sem.release()


@lru_cache(maxsize=1)
def get_llm_client() -> OpenAI:
    """
    Shared OpenAI-compatible client.

    - If OPENROUTER_API_KEY is set, route requests via OpenRouter.
    - Otherwise, fall back to the standard OpenAI API using OPENAI_API_KEY.
    """
    settings = get_settings()

    if settings.OPENROUTER_API_KEY:
        return OpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=settings.OPENROUTER_API_KEY.strip(),
            timeout=settings.LLM_TIMEOUT_SECONDS,
            default_headers={
                "HTTP-Referer": settings.FRONTEND_ORIGIN or "http://localhost:3000",
                "X-Title": "Business Materials Generation",
            },
        )

    if settings.OPENAI_API_KEY:
        return OpenAI(api_key=settings.OPENAI_API_KEY.strip(), timeout=settings.LLM_TIMEOUT_SECONDS)

    raise RuntimeError(
        "No LLM API key configured. Set either OPENAI_API_KEY or OPENROUTER_API_KEY."
    )


class AIGenerator:
    """
    Structured-output text generation.

    `generate(prompt, schema)` asks the model for a JSON object shaped like
    `schema` (a JSON-schema-ish dict with `required` keys) and returns it
    parsed. Any provider, transport or parsing problem surfaces as
    UpstreamError so callers can decide whether to retry or degrade.
    """

    def __init__(self, client: OpenAI | None = None, model: str | None = None) -> None:
        self._client = client
        self.model = model or get_settings().LLM_MODEL

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            try:
                self._client = get_llm_client()
            except RuntimeError as exc:
                raise UpstreamError(str(exc), source="ai") from exc
        return self._client

    def generate(self, prompt: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        system = (
            "You are an M&A analyst preparing sell-side materials. "
            "Respond ONLY with a JSON object matching this schema:\n"
            + json.dumps(schema)
        )
        try:
            with limit_llm_concurrency():
                resp = self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": prompt},
                    ],
                    response_format={"type": "json_object"},
                    temperature=0.2,
                )
        except OpenAIError as exc:
            raise UpstreamError(f"AI generation failed: {exc}", source="ai") from exc

        content = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        if not content:
            raise UpstreamError("AI generation returned an empty response", source="ai")

        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise UpstreamError("AI generation returned invalid JSON", source="ai") from exc

        if not isinstance(data, dict):
            raise UpstreamError("AI generation returned a non-object payload", source="ai")

        missing = [key for key in schema.get("required", []) if key not in data]
        if missing:
            raise UpstreamError(
                f"AI generation omitted required fields: {', '.join(missing)}", source="ai"
            )

        logger.info("AI generation completed", extra={"step": "ai_generate"})
        return data


@lru_cache(maxsize=1)
def get_ai_generator() -> AIGenerator:
    return AIGenerator()
