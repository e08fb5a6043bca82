"""
Change classification module for the Change Ticket Analyzer.

Maps free-text ticket content to a ranked set of change categories using a
weighted keyword/pattern table, and pulls out the object and field names the
ticket mentions. Pure and deterministic: no I/O, no LLM calls.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Pattern, Tuple

from models import ChangeCategory, ClassificationResult, PreviewFormat


@dataclass(frozen=True)
class DetectionPattern:
    """Signals that point at one change category"""
    category: ChangeCategory
    keywords: Tuple[str, ...]
    patterns: Tuple[Pattern, ...]
    weight: float


def _compile(*expressions: str) -> Tuple[Pattern, ...]:
    return tuple(re.compile(expression) for expression in expressions)


# ============================================================================
# DETECTION TABLE
# ============================================================================
# Patterns run against lower-cased text. Order matters: ties in score keep
# this order in the ranked output.

DETECTION_TABLE: List[DetectionPattern] = [
    DetectionPattern(
        category=ChangeCategory.FIELD,
        keywords=(
            "field", "custom field", "data type", "picklist", "checkbox",
            "text field", "number field", "date field", "formula field",
            "lookup", "master-detail", "relationship", "required field",
        ),
        patterns=_compile(
            r"create.*field", r"add.*field", r"new.*field", r"field.*type",
            r"field.*label", r"field.*api.*name", r"custom.*field",
        ),
        weight=1.0,
    ),
    DetectionPattern(
        category=ChangeCategory.FLOW,
        keywords=(
            "flow", "flow builder", "screen flow", "record-triggered flow",
            "scheduled flow", "platform event", "auto-launched flow",
            "decision", "assignment", "loop", "create records", "update records",
        ),
        patterns=_compile(
            r"create.*flow", r"build.*flow", r"flow.*builder", r"screen.*flow",
            r"record.*triggered", r"flow.*element", r"flow.*variable",
        ),
        weight=1.2,
    ),
    DetectionPattern(
        category=ChangeCategory.APEX,
        keywords=(
            "apex", "class", "trigger", "apex code", "soql", "sosl",
            "dml", "governor limits", "batch apex", "scheduled apex",
            "queueable", "future method", "test class", "code coverage",
        ),
        patterns=_compile(
            r"apex.*class", r"apex.*trigger", r"write.*apex", r"apex.*code",
            r"soql.*query", r"test.*class", r"batch.*apex",
        ),
        weight=1.3,
    ),
    DetectionPattern(
        category=ChangeCategory.LAYOUT,
        keywords=(
            "page layout", "lightning page", "record page", "home page",
            "app page", "compact layout", "related list", "field section",
            "button", "action", "component", "tab",
        ),
        patterns=_compile(
            r"page.*layout", r"lightning.*page", r"record.*page",
            r"modify.*layout", r"update.*layout", r"add.*to.*layout",
            r"layout.*assignment",
        ),
        weight=1.1,
    ),
    DetectionPattern(
        category=ChangeCategory.VALIDATION_RULE,
        keywords=(
            "validation rule", "validation", "error message", "formula",
            "error condition", "field validation", "business rule",
        ),
        patterns=_compile(
            r"validation.*rule", r"create.*validation", r"validation.*formula",
            r"error.*message", r"validation.*error",
        ),
        weight=1.0,
    ),
    DetectionPattern(
        category=ChangeCategory.PROCESS_BUILDER,
        keywords=(
            "process builder", "process", "criteria", "immediate action",
            "scheduled action", "process criteria", "process action",
        ),
        patterns=_compile(
            r"process.*builder", r"create.*process", r"process.*criteria",
            r"process.*action",
        ),
        weight=1.1,
    ),
    DetectionPattern(
        category=ChangeCategory.PERMISSION_SET,
        keywords=(
            "permission set", "permissions", "field permissions",
            "object permissions", "tab visibility", "app access",
            "system permissions", "permission set group",
        ),
        patterns=_compile(
            r"permission.*set", r"create.*permission", r"assign.*permission",
            r"field.*permission", r"object.*permission",
        ),
        weight=1.0,
    ),
    DetectionPattern(
        category=ChangeCategory.PROFILE,
        keywords=(
            "profile", "user profile", "profile permissions",
            "profile settings", "login hours", "ip ranges",
            "record type access", "default record type",
        ),
        patterns=_compile(
            r"update.*profile", r"modify.*profile", r"profile.*permission",
            r"profile.*setting",
        ),
        weight=1.0,
    ),
    DetectionPattern(
        category=ChangeCategory.TRIGGER,
        keywords=(
            "trigger", "before trigger", "after trigger",
            "before insert", "after insert", "before update",
            "after update", "before delete", "after delete",
        ),
        patterns=_compile(
            r"create.*trigger", r"apex.*trigger", r"trigger.*handler",
            r"before.*trigger", r"after.*trigger",
        ),
        weight=1.2,
    ),
    DetectionPattern(
        category=ChangeCategory.LIGHTNING_COMPONENT,
        keywords=(
            "lightning component", "lwc", "lightning web component",
            "aura component", "component bundle", "lightning app",
            "component controller", "component helper",
        ),
        patterns=_compile(
            r"lightning.*component", r"lwc", r"web.*component",
            r"aura.*component", r"create.*component",
        ),
        weight=1.2,
    ),
    DetectionPattern(
        category=ChangeCategory.CUSTOM_OBJECT,
        keywords=(
            "custom object", "object", "create object",
            "object settings", "object permissions",
            "record name", "object relationship",
        ),
        patterns=_compile(
            r"custom.*object", r"create.*object", r"new.*object",
            r"object.*setting",
        ),
        weight=1.3,
    ),
    DetectionPattern(
        category=ChangeCategory.WORKFLOW,
        keywords=(
            "workflow", "workflow rule", "workflow action",
            "field update", "email alert", "task creation",
            "outbound message", "time-dependent",
        ),
        patterns=_compile(
            r"workflow.*rule", r"create.*workflow", r"workflow.*action",
            r"field.*update",
        ),
        weight=1.0,
    ),
    DetectionPattern(
        category=ChangeCategory.APPROVAL_PROCESS,
        keywords=(
            "approval process", "approval", "approver",
            "approval step", "approval criteria",
            "approval action", "submit for approval",
        ),
        patterns=_compile(
            r"approval.*process", r"create.*approval", r"approval.*step",
            r"approval.*criteria",
        ),
        weight=1.1,
    ),
    DetectionPattern(
        category=ChangeCategory.REPORT,
        keywords=(
            "report", "report type", "report filter",
            "report criteria", "summary report",
            "matrix report", "tabular report", "joined report",
        ),
        patterns=_compile(
            r"create.*report", r"build.*report", r"report.*type",
            r"report.*filter",
        ),
        weight=0.9,
    ),
    DetectionPattern(
        category=ChangeCategory.DASHBOARD,
        keywords=(
            "dashboard", "dashboard component",
            "chart", "gauge", "metric", "table",
            "dashboard filter", "dynamic dashboard",
        ),
        patterns=_compile(
            r"create.*dashboard", r"build.*dashboard", r"dashboard.*component",
            r"add.*chart",
        ),
        weight=0.9,
    ),
]

PREFERRED_RENDERING: Dict[ChangeCategory, PreviewFormat] = {
    ChangeCategory.FIELD: PreviewFormat.MOCKUP,
    ChangeCategory.FLOW: PreviewFormat.DIAGRAM,
    ChangeCategory.APEX: PreviewFormat.CODE_DIFF,
    ChangeCategory.LAYOUT: PreviewFormat.MOCKUP,
    ChangeCategory.VALIDATION_RULE: PreviewFormat.CODE_DIFF,
    ChangeCategory.PROCESS_BUILDER: PreviewFormat.DIAGRAM,
    ChangeCategory.PERMISSION_SET: PreviewFormat.TABLE,
    ChangeCategory.PROFILE: PreviewFormat.TABLE,
    ChangeCategory.TRIGGER: PreviewFormat.CODE_DIFF,
    ChangeCategory.LIGHTNING_COMPONENT: PreviewFormat.MOCKUP,
    ChangeCategory.CUSTOM_OBJECT: PreviewFormat.DEPENDENCY_GRAPH,
    ChangeCategory.WORKFLOW: PreviewFormat.DIAGRAM,
    ChangeCategory.APPROVAL_PROCESS: PreviewFormat.DIAGRAM,
    ChangeCategory.REPORT: PreviewFormat.MOCKUP,
    ChangeCategory.DASHBOARD: PreviewFormat.MOCKUP,
}

# ============================================================================
# ENTITY EXTRACTION PATTERNS
# ============================================================================

STANDARD_OBJECTS = (
    "Account", "Contact", "Lead", "Opportunity",
    "Case", "Campaign", "Task", "Event",
)

OBJECT_NAME_PATTERN = re.compile(
    r"\b([A-Z][a-z]+(?:[A-Z][a-z]+)*__c|"
    + "|".join(f"[{name[0]}{name[0].lower()}]{name[1:]}" for name in STANDARD_OBJECTS)
    + r")\b"
)

FIELD_NAME_PATTERN = re.compile(
    r"\b([A-Z][a-z]+(?:_[A-Za-z]+)*__c|Name|Id|Status|Type|Amount|CloseDate|StageName)\b"
)

# Pattern hits count half again as much as a keyword hit
PATTERN_MULTIPLIER = 1.5
CONFIDENCE_SCALE = 20


def _unique(values: List[str]) -> Tuple[str, ...]:
    """De-duplicate while keeping first-seen order."""
    return tuple(dict.fromkeys(values))


class ChangeClassifier:
    """
    Table-driven classifier for change request tickets.

    Each category scores its weight once per keyword found in the text and
    1.5x its weight once per regex pattern that matches. The highest score
    wins; confidence is that score relative to the winning category's weight.

    Example:
        >>> classifier = ChangeClassifier()
        >>> result = classifier.classify("Add phone field to Account")
        >>> result.primary_category
        <ChangeCategory.FIELD: 'FIELD'>
        >>> result.object_names
        ('Account',)
    """

    def __init__(self, detection_table: List[DetectionPattern] = None):
        self.logger = logging.getLogger("change_analyzer.change_classifier")
        self.detection_table = detection_table or DETECTION_TABLE
        self.weights = {entry.category: entry.weight for entry in self.detection_table}

    def classify(self, text: str) -> ClassificationResult:
        """
        Classify ticket text into change categories.

        Args:
            text: Free-text ticket content (summary plus description)

        Returns:
            ClassificationResult; UNKNOWN with confidence 0 when nothing matches
        """
        normalized = text.lower()
        scores: Dict[ChangeCategory, float] = {}
        matched_keywords = set()
        matched_patterns = set()

        for entry in self.detection_table:
            score = 0.0

            for keyword in entry.keywords:
                if keyword in normalized:
                    score += entry.weight
                    matched_keywords.add(keyword)

            for pattern in entry.patterns:
                match = pattern.search(normalized)
                if match:
                    score += entry.weight * PATTERN_MULTIPLIER
                    matched_patterns.add(match.group(0))

            if score > 0:
                scores[entry.category] = score

        object_names = self.extract_object_names(text)
        field_names = self.extract_field_names(text)

        if not scores:
            self.logger.debug("No change signals found - classifying as UNKNOWN")
            return ClassificationResult(
                primary_category=ChangeCategory.UNKNOWN,
                ranked_categories=(ChangeCategory.UNKNOWN,),
                confidence=0,
                object_names=object_names,
                field_names=field_names,
            )

        # sorted() is stable, so equal scores keep table order
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        primary_category, top_score = ranked[0]

        confidence = min(
            100,
            round((top_score / self.weights[primary_category]) * CONFIDENCE_SCALE)
        )

        self.logger.debug(
            f"Classified as {primary_category.value} "
            f"(score: {top_score:.2f}, confidence: {confidence})"
        )

        return ClassificationResult(
            primary_category=primary_category,
            ranked_categories=tuple(category for category, _ in ranked),
            confidence=confidence,
            keywords=frozenset(matched_keywords),
            patterns=frozenset(matched_patterns),
            object_names=object_names,
            field_names=field_names,
        )

    def extract_object_names(self, text: str) -> Tuple[str, ...]:
        """
        Find standard and custom object names in original-case text.

        Standard objects are returned with standard capitalization
        ("account" -> "Account"); custom objects are returned as written.
        """
        names = []
        for match in OBJECT_NAME_PATTERN.findall(text):
            standardized = match[0].upper() + match[1:].lower()
            names.append(standardized if standardized in STANDARD_OBJECTS else match)
        return _unique(names)

    def extract_field_names(self, text: str) -> Tuple[str, ...]:
        """Find standard and custom field names in original-case text."""
        return _unique(FIELD_NAME_PATTERN.findall(text))

    @staticmethod
    def preferred_rendering(category: ChangeCategory) -> PreviewFormat:
        """Best preview format for a category; plain text when unknown."""
        return PREFERRED_RENDERING.get(category, PreviewFormat.TEXT)
