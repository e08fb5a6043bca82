"""
Pytest configuration and fixtures for the analyzer tests.
"""

import pytest
from unittest.mock import AsyncMock

from change_classifier import ChangeClassifier
from conflict_detector import ConflictDetector
from similarity_analyzer import SimilarityAnalyzer
from similarity_cache import MemoryResultCache


SCENARIO_REPLY = "SCORE: 0.85 | CONFIDENCE: 0.9 | REASONING: Both tickets add a contact field to Account"


@pytest.fixture
def classifier() -> ChangeClassifier:
    """Create a ChangeClassifier with the default detection table."""
    return ChangeClassifier()


@pytest.fixture
def comparer() -> AsyncMock:
    """Semantic comparer stub that always answers with the scenario reply."""
    mock_comparer = AsyncMock()
    mock_comparer.compare.return_value = SCENARIO_REPLY
    return mock_comparer


@pytest.fixture
def memory_cache() -> MemoryResultCache:
    return MemoryResultCache(default_ttl=60, max_entries=100)


@pytest.fixture
def analyzer(comparer, memory_cache) -> SimilarityAnalyzer:
    return SimilarityAnalyzer(comparer, cache=memory_cache, similarity_threshold=0.7)


@pytest.fixture
def scenario_tickets():
    return [
        {"id": "1", "summary": "Add phone field to Account"},
        {"id": "2", "summary": "Add email field to Account"},
    ]


@pytest.fixture
def metadata_lookup() -> AsyncMock:
    lookup = AsyncMock()
    lookup.describe_object.return_value = {"fields": [], "validation_rules": []}
    return lookup


@pytest.fixture
def impact_analysis() -> AsyncMock:
    """Impact analysis stub that reports nothing unless a test says otherwise."""
    impact = AsyncMock()
    impact.analyze_field_impacts.return_value = []
    impact.check_validation_rule_conflicts.return_value = []
    return impact


@pytest.fixture
def detector(metadata_lookup, impact_analysis) -> ConflictDetector:
    return ConflictDetector(metadata_lookup, impact_analysis)
