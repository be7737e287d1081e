from .company import Company
from .company_asset import AssetType, CompanyAsset
from .enrichment_cache_entry import EnrichmentCacheEntry
from .extracted_financial_data import ExtractedFinancialData
from .job_trace_event import JobTraceEvent
from .materials_job import GenerationStatus, JobStatus, MaterialsJob
from .questionnaire_response import QuestionnaireResponse

__all__ = [
    "AssetType",
    "Company",
    "CompanyAsset",
    "EnrichmentCacheEntry",
    "ExtractedFinancialData",
    "GenerationStatus",
    "JobStatus",
    "JobTraceEvent",
    "MaterialsJob",
    "QuestionnaireResponse",
]
