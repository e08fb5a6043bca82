"""
Contracts for the services the analyzers depend on.

Implementations live with the request-handling code (CRM metadata client,
impact analysis service, LLM comparer, cache). All calls are coroutines
because each one is a network round-trip in production.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import config
from models import ComparisonContext


class MetadataLookup(ABC):
    """Describes objects in a target org."""

    @abstractmethod
    async def describe_object(self, org_id: str, object_name: str) -> Dict[str, Any]:
        """
        Return the object's current configuration.

        Expected keys: "fields" (list of field dicts with "name", "type",
        "formula") and "validation_rules" (list of rule dicts with "name").
        """


class ImpactAnalysis(ABC):
    """Compares proposed components against existing ones."""

    @abstractmethod
    async def analyze_field_impacts(
        self,
        proposed_field: Dict[str, Any],
        existing_fields: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """
        Return impacts as dicts with "impact_type" ("conflict" or "dependency"),
        "severity", "affected_components" and "description".
        """

    @abstractmethod
    async def check_validation_rule_conflicts(
        self,
        proposed_rule: Dict[str, Any],
        existing_rules: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """
        Return conflicts as dicts with "conflict_type" ("overlap" or
        "contradiction"), "severity", "existing_rule" and "description".
        """


class SemanticComparer(ABC):
    """Judges how alike two tickets are."""

    @abstractmethod
    async def compare(self, context: ComparisonContext) -> str:
        """
        Return free text laid out as
        ``SCORE: [number] | CONFIDENCE: [number] | REASONING: [explanation]``.
        """


class ResultCache(ABC):
    """Key/value store with per-entry expiry."""

    @abstractmethod
    async def get(self, fingerprint: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, fingerprint: str, value: Any, ttl: Optional[int] = None) -> None:
        ...


class OrgConventionLookup(ABC):
    """Looks up an org's field naming convention."""

    @abstractmethod
    async def get(self, org_id: str) -> Dict[str, Any]:
        """Return {"pattern": str, "suggestions": [str, ...]}."""


class StaticOrgConventionLookup(OrgConventionLookup):
    """Every org uses the same convention (PascalCase__c unless overridden)."""

    def __init__(self, convention: Optional[Dict[str, Any]] = None):
        self.convention = convention or config.DEFAULT_NAMING_CONVENTION

    async def get(self, org_id: str) -> Dict[str, Any]:
        return self.convention
