from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class RegistryFacts:
    """Authoritative company facts from a public business registry."""
    business_id: str
    name: str
    company_form: Optional[str] = None
    registration_date: Optional[str] = None
    industry: Optional[str] = None
    industry_code: Optional[str] = None
    address: Optional[str] = None
    website: Optional[str] = None
    previous_names: List[str] = field(default_factory=list)
    source_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RegistryLookup(ABC):
    name: str

    @abstractmethod
    async def lookup(self, business_id: str) -> Optional[RegistryFacts]:
        """
        Facts for `business_id`, or None when the registry has no such
        company. Transport or server failures raise UpstreamError.
        """
