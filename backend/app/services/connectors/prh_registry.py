from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional
import logging
import re

import httpx
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .base import RegistryFacts, RegistryLookup
from ..caching import cache_key, cached_get
from ...core.config import get_settings
from ...core.errors import UpstreamError

logger = logging.getLogger(__name__)

# Finnish business id: seven digits, dash, check digit
BUSINESS_ID_RE = re.compile(r"^\d{7}-\d$")

_WEBSITE_TYPES = {"kotisivun www-osoite", "www-adress", "website"}


def _current(items: List[Dict[str, Any]] | None) -> List[Dict[str, Any]]:
    """Registry rows without an end date are the live ones."""
    return [i for i in (items or []) if not i.get("endDate")]


def _prefer_language(items: List[Dict[str, Any]], language: str = "EN") -> Optional[Dict[str, Any]]:
    for item in items:
        if (item.get("language") or "").upper() == language:
            return item
    return items[0] if items else None


def parse_registry_record(record: Dict[str, Any], source_url: str | None = None) -> RegistryFacts:
    """Normalise one `results[]` entry of the PRH open data API."""
    names = record.get("names") or []
    previous = [n.get("name") for n in names if n.get("endDate") and n.get("name")]

    forms = _current(record.get("companyForms"))
    form = _prefer_language(forms)
    company_form = (form or {}).get("name") or record.get("companyForm")

    lines = _current(record.get("businessLines"))
    line = _prefer_language(lines)

    address = None
    addresses = _current(record.get("addresses"))
    if addresses:
        a = addresses[0]
        parts = [a.get("street"), " ".join(p for p in (a.get("postCode"), a.get("city")) if p)]
        address = ", ".join(p for p in parts if p) or None

    website = None
    for contact in _current(record.get("contactDetails")):
        if (contact.get("type") or "").strip().lower() in _WEBSITE_TYPES and contact.get("value"):
            website = contact["value"].strip()
            break

    return RegistryFacts(
        business_id=record.get("businessId") or "",
        name=record.get("name") or "",
        company_form=company_form,
        registration_date=record.get("registrationDate"),
        industry=(line or {}).get("name"),
        industry_code=(line or {}).get("code"),
        address=address,
        website=website,
        previous_names=previous,
        source_url=source_url,
    )


class PRHRegistryConnector(RegistryLookup):
    """Finnish Patent and Registration Office (PRH) open data lookup."""

    name = "prh_registry"

    def __init__(self, base_url: str | None = None, timeout: int | None = None) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.REGISTRY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.REGISTRY_TIMEOUT_SECONDS
        self.cache_ttl = settings.REGISTRY_CACHE_TTL_SECONDS

    async def _get_json_allow_404(self, client: httpx.AsyncClient, url: str) -> Optional[Dict[str, Any]]:
        """
        - returns None for 404 and other non-retriable 4xx
        - handles 429 with a short backoff
        - raises for 5xx so Tenacity can retry
        - raises UpstreamError for a body that is not a JSON object
        """
        resp = await client.get(url)

        if resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After")
            delay = int(retry_after) if retry_after and retry_after.isdigit() else 5
            await asyncio.sleep(delay)
            resp = await client.get(url)

        if resp.status_code == 404:
            return None
        if 400 <= resp.status_code < 500 and resp.status_code != 429:
            return None

        resp.raise_for_status()
        try:
            payload = resp.json()
        except ValueError as exc:
            # e.g. an HTML maintenance page served with 200
            raise UpstreamError("Registry lookup failed: response was not JSON", source=self.name) from exc
        if not isinstance(payload, dict):
            raise UpstreamError("Registry lookup failed: unexpected response shape", source=self.name)
        return payload

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.HTTPError),
    )
    async def _fetch(self, business_id: str) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}/{business_id}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._get_json_allow_404(client, url)

    async def lookup(self, business_id: str) -> Optional[RegistryFacts]:
        business_id = (business_id or "").strip()
        if not BUSINESS_ID_RE.match(business_id):
            logger.info("Skipping registry lookup for malformed business id", extra={"step": self.name})
            return None

        key = cache_key("prh", business_id)
        cached = await cached_get(key)
        if cached:
            return RegistryFacts(**cached)

        try:
            payload = await self._fetch(business_id)
        except (httpx.HTTPError, RetryError) as exc:
            raise UpstreamError(f"Registry lookup failed: {exc}", source=self.name) from exc

        results = (payload or {}).get("results") or []
        if not results:
            return None
        if not isinstance(results, list) or not isinstance(results[0], dict):
            raise UpstreamError("Registry lookup failed: unexpected response shape", source=self.name)

        facts = parse_registry_record(results[0], source_url=f"{self.base_url}/{business_id}")
        await cached_get(key, set_value=facts.to_dict(), ttl=self.cache_ttl)
        return facts
