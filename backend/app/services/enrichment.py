"""
Public-data enrichment for the company behind a materials job.

The collector merges three sources into per-field facts:

- user hints on the company record (confidence `low`)
- an AI-generated profile (the model's own `high`/`medium`/`low` rating)
- the public business registry (`verified`, overrides the others)

Registry and AI failures are folded into warnings; the phase always
completes with whatever was gathered.
"""
from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import utcnow
from ..models.company import Company
from ..models.enrichment_cache_entry import EnrichmentCacheEntry
from ..models.materials_job import MaterialsJob
from .connectors.base import RegistryFacts, RegistryLookup
from .llm import AIGenerator
from .upstream import Outcome, attempt, attempt_async

logger = logging.getLogger(__name__)

CONFIDENCE_VERIFIED = "verified"
CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"
_AI_CONFIDENCE = {CONFIDENCE_HIGH, CONFIDENCE_MEDIUM, CONFIDENCE_LOW}

SOURCE_COMPANY_RECORD = "company_record"
SOURCE_REGISTRY = "registry"
SOURCE_AI = "ai_profile"

ENRICHMENT_DATA_SOURCE = "company_enrichment"
ENRICHMENT_DATA_TYPE = "company_profile"

REGISTRY_FIELDS = (
    "name",
    "business_id",
    "company_form",
    "registration_date",
    "industry",
    "industry_code",
    "address",
    "website",
)

PROFILE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["description", "financials", "data_quality"],
    "properties": {
        "description": {"type": "string"},
        "industry": {"type": ["string", "null"]},
        "website": {"type": ["string", "null"]},
        "employees": {"type": ["integer", "null"]},
        "products": {"type": "array", "items": {"type": "string"}},
        "market_position": {"type": ["string", "null"]},
        "recent_news": {"type": "array", "items": {"type": "string"}},
        "financials": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "year": {"type": "integer"},
                    "revenue": {"type": ["number", "null"]},
                    "operating_profit": {"type": ["number", "null"]},
                    "net_profit": {"type": ["number", "null"]},
                    "equity": {"type": ["number", "null"]},
                },
            },
        },
        "data_quality": {
            "type": "object",
            "properties": {
                "confidence": {"enum": ["HIGH", "MEDIUM", "LOW"]},
                "field_confidence": {"type": "object"},
            },
        },
    },
}

_AI_FIELDS = ("description", "industry", "website", "employees", "products", "market_position", "recent_news")
_FINANCIAL_METRICS = ("revenue", "operating_profit", "net_profit", "equity")


@dataclass
class FieldFact:
    value: Any
    confidence: str
    source: str


@dataclass
class EnrichmentResult:
    company_id: str
    fields: Dict[str, FieldFact] = field(default_factory=dict)
    financial_periods: List[Dict[str, Any]] = field(default_factory=list)
    confidence_score: int = 0
    requires_manual_confirmation: bool = True
    sources_used: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def financial_periods_found(self) -> int:
        return len(self.financial_periods)

    def value(self, name: str) -> Any:
        fact = self.fields.get(name)
        return fact.value if fact else None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["financial_periods_found"] = self.financial_periods_found
        return data


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, dict)):
        return len(value) > 0
    return True


def _as_dict(value: Any) -> Dict[str, Any]:
    # model output is only checked for required keys, not their shapes
    return value if isinstance(value, dict) else {}


def _overall_ai_confidence(profile: Dict[str, Any]) -> str:
    rating = str(_as_dict(profile.get("data_quality")).get("confidence") or "").lower()
    return rating if rating in _AI_CONFIDENCE else CONFIDENCE_LOW


def _ai_confidence(profile: Dict[str, Any], name: str) -> str:
    quality = _as_dict(profile.get("data_quality"))
    per_field = _as_dict(quality.get("field_confidence"))
    rating = str(per_field.get(name) or quality.get("confidence") or "").lower()
    return rating if rating in _AI_CONFIDENCE else CONFIDENCE_LOW


def financial_periods_from(profile: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Distinct fiscal years that carry at least one metric."""
    periods: Dict[int, Dict[str, Any]] = {}
    rows = profile.get("financials")
    if not isinstance(rows, list):
        return []
    for row in rows:
        if not isinstance(row, dict):
            continue
        try:
            year = int(row.get("year"))
        except (TypeError, ValueError):
            continue
        metrics = {k: row.get(k) for k in _FINANCIAL_METRICS if row.get(k) is not None}
        if metrics:
            periods[year] = {"year": year, **metrics}
    return [periods[y] for y in sorted(periods, reverse=True)]


def merge_fields(
    company: Company,
    registry: Optional[RegistryFacts],
    profile: Optional[Dict[str, Any]],
) -> Dict[str, FieldFact]:
    fields: Dict[str, FieldFact] = {}

    hints = {
        "name": company.name,
        "business_id": company.business_id,
        "industry": company.industry,
        "website": company.website,
        "description": company.description,
    }
    for name, value in hints.items():
        if _present(value):
            fields[name] = FieldFact(value, CONFIDENCE_LOW, SOURCE_COMPANY_RECORD)

    if profile:
        for name in _AI_FIELDS:
            value = profile.get(name)
            if _present(value):
                fields[name] = FieldFact(value, _ai_confidence(profile, name), SOURCE_AI)

    if registry:
        facts = registry.to_dict()
        for name in REGISTRY_FIELDS:
            value = facts.get(name)
            if _present(value):
                fields[name] = FieldFact(value, CONFIDENCE_VERIFIED, SOURCE_REGISTRY)

    return fields


def confidence_score(
    fields: Dict[str, FieldFact],
    financial_periods: int,
    profile: Optional[Dict[str, Any]],
) -> int:
    """
    0-100 overall score.

    basic info 25 (registry) / 20 / 15 / 10 by AI rating, financial periods
    up to 25, description 15, products 10, news 10, website 5, employees 10.
    """
    score = 0

    if any(f.confidence == CONFIDENCE_VERIFIED for f in fields.values()):
        score += 25
    else:
        rating = _overall_ai_confidence(profile) if profile else CONFIDENCE_LOW
        score += {CONFIDENCE_HIGH: 20, CONFIDENCE_MEDIUM: 15}.get(rating, 10)

    if financial_periods >= 3:
        score += 25
    elif financial_periods >= 2:
        score += 15
    elif financial_periods >= 1:
        score += 10

    description = fields.get("description")
    if description and isinstance(description.value, str) and len(description.value) > 100:
        score += 15
    if "products" in fields:
        score += 10
    if "recent_news" in fields:
        score += 10
    if "website" in fields:
        score += 5
    if "employees" in fields:
        score += 10

    return min(score, 100)


def build_profile_prompt(company: Company, registry: Optional[RegistryFacts]) -> str:
    lines = [
        f"Company: {company.name}",
        f"Business ID: {company.business_id or 'unknown'}",
        f"Country: {company.country or 'FI'}",
    ]
    if company.industry:
        lines.append(f"Industry hint: {company.industry}")
    if company.website:
        lines.append(f"Website hint: {company.website}")
    if registry:
        lines.append(f"Registry record: {registry.to_dict()}")
    lines.append(
        "Build a factual company profile for sell-side materials. "
        "List up to five most recent fiscal years under `financials`. "
        "Rate your confidence honestly; use null where unknown."
    )
    return "\n".join(lines)


class EnrichmentCollector:
    def __init__(
        self,
        registry: Optional[RegistryLookup],
        generator: AIGenerator,
        confirmation_threshold: int | None = None,
    ) -> None:
        self.registry = registry
        self.generator = generator
        if confirmation_threshold is None:
            confirmation_threshold = get_settings().ENRICHMENT_CONFIRMATION_THRESHOLD
        self.confirmation_threshold = confirmation_threshold

    def _lookup_registry(self, company: Company) -> Outcome[Optional[RegistryFacts]]:
        if self.registry is None or not company.business_id:
            return Outcome.success(None, source=SOURCE_REGISTRY)
        return asyncio.run(attempt_async(SOURCE_REGISTRY, self.registry.lookup, company.business_id))

    def _generate_profile(
        self, company: Company, registry: Optional[RegistryFacts]
    ) -> Outcome[Dict[str, Any]]:
        prompt = build_profile_prompt(company, registry)
        return attempt(SOURCE_AI, self.generator.generate, prompt, PROFILE_SCHEMA)

    def enrich(self, company: Company) -> EnrichmentResult:
        warnings: List[str] = []
        sources: List[str] = [SOURCE_COMPANY_RECORD]

        registry_outcome = self._lookup_registry(company)
        registry = registry_outcome.value if registry_outcome.ok else None
        if not registry_outcome.ok:
            warnings.append(f"Registry lookup failed; registry data unavailable ({registry_outcome.error})")
        elif registry is None and self.registry is not None:
            if company.business_id:
                warnings.append(f"Company {company.business_id} not found in the public registry")
            else:
                warnings.append("No business id on the company; registry lookup skipped")
        if registry is not None:
            sources.append(SOURCE_REGISTRY)

        ai_outcome = self._generate_profile(company, registry)
        profile = ai_outcome.value if ai_outcome.ok else None
        if not ai_outcome.ok:
            warnings.append(f"AI profile generation failed; narrative fields missing ({ai_outcome.error})")
        else:
            sources.append(SOURCE_AI)

        fields = merge_fields(company, registry, profile)
        periods = financial_periods_from(profile or {})
        score = confidence_score(fields, len(periods), profile)

        return EnrichmentResult(
            company_id=str(company.id),
            fields=fields,
            financial_periods=periods,
            confidence_score=score,
            requires_manual_confirmation=score < self.confirmation_threshold,
            sources_used=sources,
            warnings=warnings,
        )

    def collect(self, db: Session, job: MaterialsJob, company: Company) -> Tuple[EnrichmentResult, EnrichmentCacheEntry]:
        """Enrich and persist one append-only cache entry for the job."""
        result = self.enrich(company)

        entry = EnrichmentCacheEntry(
            job_id=job.id,
            company_id=company.id,
            data_source=ENRICHMENT_DATA_SOURCE,
            data_type=ENRICHMENT_DATA_TYPE,
            data=result.to_dict(),
            confidence_score=result.confidence_score,
            warnings=result.warnings,
            collected_at=utcnow(),
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)

        logger.info(
            "Enrichment collected",
            extra={
                "job_id": str(job.id),
                "company_id": str(company.id),
                "step": "enrichment",
                "phase": "COLLECTION",
            },
        )
        return result, entry


def latest_enrichment(db: Session, job_id: Any) -> Optional[EnrichmentCacheEntry]:
    return (
        db.query(EnrichmentCacheEntry)
        .filter(EnrichmentCacheEntry.job_id == job_id)
        .order_by(EnrichmentCacheEntry.collected_at.desc())
        .first()
    )
