"""
Shared fakes and sample data for materials pipeline tests.

The fakes stand in for the external collaborators (AI provider, registry,
event bus) so the workflow can be driven step by step without a broker.
"""
from copy import deepcopy
from typing import Any, Dict, List, Optional

from app.core.errors import UpstreamError
from app.services.connectors.base import RegistryFacts, RegistryLookup
from app.services.events import (
    EVENT_COLLECT_PUBLIC_DATA,
    EVENT_GENERATE_ASSET,
    EVENT_JOB_INITIATED,
    EVENT_PROCESS_UPLOADS,
    EVENT_QUESTIONNAIRE_COMPLETED,
    InMemoryEventDispatcher,
)
from app.services.workflow import (
    run_consolidation,
    run_generation,
    run_job_initiated,
    run_public_data_collection,
    run_upload_processing,
)


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

ORG_ID = "org-acme"
OTHER_ORG_ID = "org-other"
USER_ID = "user-1"

SAMPLE_PROFILE: Dict[str, Any] = {
    "description": (
        "Nordic Widgets Oy designs and manufactures industrial sensor modules "
        "for process automation customers across the Nordics and Germany."
    ),
    "industry": "Industrial automation",
    "website": "https://nordicwidgets.example",
    "employees": 42,
    "products": ["Sensor modules", "Calibration services"],
    "market_position": "Niche leader in the Finnish market",
    "recent_news": ["Opened a new factory in Tampere"],
    "financials": [
        {"year": 2023, "revenue": 5200000, "operating_profit": 610000},
        {"year": 2022, "revenue": 4700000, "operating_profit": 480000},
        {"year": 2021, "revenue": 4100000, "net_profit": 300000},
    ],
    "data_quality": {"confidence": "MEDIUM"},
}

SAMPLE_REGISTRY_FACTS = RegistryFacts(
    business_id="1234567-8",
    name="Nordic Widgets Oy",
    company_form="Limited company",
    registration_date="2009-04-01",
    industry="Manufacture of electronic components",
    industry_code="26110",
    address="Tehdaskatu 1, 33100 TAMPERE",
    website=None,
)

SAMPLE_PRH_RECORD: Dict[str, Any] = {
    "businessId": "1234567-8",
    "name": "Nordic Widgets Oy",
    "registrationDate": "2009-04-01",
    "companyForm": "OY",
    "names": [
        {"name": "Nordic Widgets Oy", "endDate": None},
        {"name": "Widget Works Oy", "endDate": "2015-01-01"},
    ],
    "companyForms": [
        {"name": "Osakeyhtiö", "language": "FI", "endDate": None},
        {"name": "Limited company", "language": "EN", "endDate": None},
    ],
    "businessLines": [
        {"code": "26110", "name": "Elektronisten komponenttien valmistus", "language": "FI", "endDate": None},
        {"code": "26110", "name": "Manufacture of electronic components", "language": "EN", "endDate": None},
    ],
    "addresses": [
        {"street": "Vanhakatu 9", "postCode": "00100", "city": "HELSINKI", "endDate": "2018-01-01"},
        {"street": "Tehdaskatu 1", "postCode": "33100", "city": "TAMPERE", "endDate": None},
    ],
    "contactDetails": [
        {"type": "Kotisivun www-osoite", "value": "www.nordicwidgets.example", "endDate": None},
        {"type": "Puhelin", "value": "+358 40 000 0000", "endDate": None},
    ],
}

PDF_BYTES = b"%PDF-1.4 fake annual report"
CSV_BYTES = b"year,revenue\n2023,5200000\n2022,4700000\n"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeAIGenerator:
    """
    Deterministic AIGenerator stand-in.

    Answers each call based on the schema's required keys. `failures` makes
    the next N calls raise UpstreamError; `fail_always` makes every call fail.
    """

    def __init__(
        self,
        profile: Optional[Dict[str, Any]] = None,
        failures: int = 0,
        fail_always: bool = False,
        error: str = "AI provider unavailable",
    ) -> None:
        self.profile = deepcopy(profile if profile is not None else SAMPLE_PROFILE)
        self.failures = failures
        self.fail_always = fail_always
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def generate(self, prompt: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append({"prompt": prompt, "schema": schema})
        if self.fail_always:
            raise UpstreamError(self.error, source="ai")
        if self.failures > 0:
            self.failures -= 1
            raise UpstreamError(self.error, source="ai")

        required = schema.get("required", [])
        if "data_quality" in required:
            return deepcopy(self.profile)
        if "periods" in required:
            return {"currency": "EUR", "periods": [{"year": 2023, "revenue": 5200000}]}

        content: Dict[str, Any] = {}
        for key in required:
            if key in ("highlights", "sections", "slides"):
                content[key] = [{"title": f"{key} 1"}] if key != "highlights" else ["Strong margins"]
            else:
                content[key] = f"Generated {key}"
        return content


class FakeRegistry(RegistryLookup):
    name = "fake_registry"

    def __init__(self, facts: Optional[RegistryFacts] = None, error: Optional[str] = None) -> None:
        self.facts = facts
        self.error = error
        self.lookups: List[str] = []

    async def lookup(self, business_id: str) -> Optional[RegistryFacts]:
        self.lookups.append(business_id)
        if self.error:
            raise UpstreamError(self.error, source=self.name)
        return self.facts


class PipelineRunner:
    """
    Delivers queued events to the workflow handlers, the way the Celery
    worker would, until the dispatcher is empty.
    """

    def __init__(self, dispatcher: InMemoryEventDispatcher, collector, generation, ai, store) -> None:
        self.dispatcher = dispatcher
        self.collector = collector
        self.generation = generation
        self.ai = ai
        self.store = store
        self.delivered: List[str] = []

    def handle(self, db, name: str, payload: Dict[str, Any]) -> Any:
        self.delivered.append(name)
        job_id = payload["job_id"]
        if name == EVENT_JOB_INITIATED:
            return run_job_initiated(db, job_id, self.dispatcher)
        if name == EVENT_COLLECT_PUBLIC_DATA:
            return run_public_data_collection(db, job_id, self.collector)
        if name == EVENT_PROCESS_UPLOADS:
            return run_upload_processing(db, job_id, self.ai, self.store, payload.get("document_ids"))
        if name == EVENT_QUESTIONNAIRE_COMPLETED:
            return run_consolidation(db, job_id, self.generation)
        if name == EVENT_GENERATE_ASSET:
            return run_generation(db, job_id, payload["output"], self.generation)
        raise AssertionError(f"Unexpected event {name}")

    def drain(self, db, limit: int = 50) -> None:
        for _ in range(limit):
            events = self.dispatcher.pop_all()
            if not events:
                return
            for name, payload in events:
                self.handle(db, name, payload)
        raise AssertionError("Event loop did not settle")
