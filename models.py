"""
Data models for the Change Ticket Analyzer.

Classification, similarity and conflict results are plain dataclasses so
callers can serialize them with dataclasses.asdict() or the to_dict() helpers.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ==============================================================================
# ENUMS
# ==============================================================================

class ChangeCategory(Enum):
    """Kind of configuration change a ticket requests"""
    FIELD = "FIELD"
    FLOW = "FLOW"
    APEX = "APEX"
    LAYOUT = "LAYOUT"
    VALIDATION_RULE = "VALIDATION_RULE"
    PROCESS_BUILDER = "PROCESS_BUILDER"
    PERMISSION_SET = "PERMISSION_SET"
    PROFILE = "PROFILE"
    TRIGGER = "TRIGGER"
    LIGHTNING_COMPONENT = "LIGHTNING_COMPONENT"
    CUSTOM_OBJECT = "CUSTOM_OBJECT"
    WORKFLOW = "WORKFLOW"
    APPROVAL_PROCESS = "APPROVAL_PROCESS"
    REPORT = "REPORT"
    DASHBOARD = "DASHBOARD"
    UNKNOWN = "UNKNOWN"


class PreviewFormat(Enum):
    """How a change of a given category is best rendered for review"""
    DIAGRAM = "diagram"
    CODE_DIFF = "code-diff"
    MOCKUP = "mockup"
    TABLE = "table"
    DEPENDENCY_GRAPH = "dependency-graph"
    TEXT = "text"


class ConflictKind(Enum):
    DUPLICATE = "duplicate"
    DEPENDENCY = "dependency"
    VALIDATION = "validation"
    NAMING = "naming"


class Severity(Enum):
    """Conflict severity, ordered by rank"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANKS[self]


_SEVERITY_RANKS = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


# ==============================================================================
# CLASSIFICATION
# ==============================================================================

@dataclass(frozen=True)
class ClassificationResult:
    """
    Outcome of classifying one ticket's text.

    ranked_categories is score-sorted (ties keep table order); keywords and
    patterns hold what matched; entity names keep first-seen order.
    """
    primary_category: ChangeCategory
    ranked_categories: Tuple[ChangeCategory, ...]
    confidence: int
    keywords: frozenset = frozenset()
    patterns: frozenset = frozenset()
    object_names: Tuple[str, ...] = ()
    field_names: Tuple[str, ...] = ()

    @property
    def first_object_name(self) -> Optional[str]:
        return self.object_names[0] if self.object_names else None


# ==============================================================================
# SIMILARITY
# ==============================================================================

@dataclass(frozen=True)
class ComparisonContext:
    """Input handed to a semantic comparer for one ticket pair"""
    id_a: str
    summary_a: str
    description_a: str
    id_b: str
    summary_b: str
    description_b: str
    category: ChangeCategory


@dataclass
class SimilarityScore:
    """Similarity between two tickets"""
    id_a: str
    id_b: str
    score: float
    shared_category: ChangeCategory
    confidence: float
    reasoning: str
    shared_object_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["shared_category"] = self.shared_category.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimilarityScore":
        return cls(
            id_a=data["id_a"],
            id_b=data["id_b"],
            score=float(data["score"]),
            shared_category=ChangeCategory(data["shared_category"]),
            confidence=float(data["confidence"]),
            reasoning=data["reasoning"],
            shared_object_name=data.get("shared_object_name"),
        )


@dataclass
class GroupSuggestion:
    """Tickets suggested for processing together"""
    label: str
    member_ids: List[str]
    shared_category: ChangeCategory
    average_score: float
    formation_criteria: Dict[str, Any]
    shared_object_name: Optional[str] = None


@dataclass
class BatchAnalysisResult:
    """Pairwise scores and group suggestions for one batch of tickets"""
    pairwise_scores: List[SimilarityScore] = field(default_factory=list)
    groups: List[GroupSuggestion] = field(default_factory=list)
    count_analyzed: int = 0
    analysis_time_ms: float = 0.0

    @property
    def overall_confidence(self) -> float:
        """Mean confidence across all pairwise scores (0 when there are none)."""
        if not self.pairwise_scores:
            return 0.0
        return sum(s.confidence for s in self.pairwise_scores) / len(self.pairwise_scores)

    @property
    def overall_score(self) -> float:
        """
        How useful the grouping is: the mean of group coverage
        (groups / floor(count / 2), capped at 1) and mean group similarity.
        """
        max_groups = self.count_analyzed // 2
        if not self.groups or max_groups == 0:
            return 0.0

        group_score = min(len(self.groups) / max_groups, 1.0)
        average_similarity = sum(g.average_score for g in self.groups) / len(self.groups)
        return (group_score + average_similarity) / 2

    def to_analysis_record(self) -> Dict[str, Any]:
        """Flatten into the record shape stored by the persistence layer."""
        return {
            "type": "BATCH_SIMILARITY",
            "findings": {
                "similarity_scores": [s.to_dict() for s in self.pairwise_scores],
                "grouping_suggestions": [
                    {**asdict(g), "shared_category": g.shared_category.value}
                    for g in self.groups
                ],
                "total_analyzed": self.count_analyzed,
            },
            "confidence": self.overall_confidence,
            "score": self.overall_score,
        }


# ==============================================================================
# CONFLICTS
# ==============================================================================

@dataclass
class ConflictFinding:
    """A problem the proposed change would cause in the target org"""
    kind: ConflictKind
    severity: Severity
    conflicting_component: str
    description: str
    resolution: str
    risk_score: int
    affected_components: List[str] = field(default_factory=list)
    suggested_actions: List[str] = field(default_factory=list)

    def sort_key(self) -> Tuple[int, int]:
        return (self.severity.rank, self.risk_score)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["severity"] = self.severity.value
        return data
