"""
Batch similarity analysis for the Change Ticket Analyzer.

Classifies each ticket, scores every ticket pair (cheap heuristics first,
cached semantic judgments second) and groups tickets that are worth
processing together.

This stage always completes for well-formed input: semantic comparer and
cache failures are absorbed with documented fallbacks.
"""

import logging
import re
import time
from typing import Dict, List, Optional, Tuple

import config
import utils
from change_classifier import ChangeClassifier
from collaborators import ResultCache, SemanticComparer
from instrumentation import get_tracer
from models import (
    BatchAnalysisResult,
    ChangeCategory,
    ClassificationResult,
    ComparisonContext,
    GroupSuggestion,
    SimilarityScore,
)

SCORE_MARKER = re.compile(r'SCORE:\s*(\d+(?:\.\d+)?|\.\d+)', re.IGNORECASE)
CONFIDENCE_MARKER = re.compile(r'CONFIDENCE:\s*(\d+(?:\.\d+)?|\.\d+)', re.IGNORECASE)
REASONING_MARKER = re.compile(r'REASONING:\s*(.+)', re.IGNORECASE)

UNKNOWN_OBJECT = "unknown"


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


class SimilarityAnalyzer:
    """
    Finds tickets that can be batched together.

    Key Features:
    - Different change categories or target objects are scored by fixed
      heuristics without calling the semantic comparer
    - Semantic judgments are cached by a fingerprint of the pair
    - Comparer failures fall back to a neutral score instead of raising
    - Groups are formed per (category, object) bucket from scores at or above
      the similarity threshold
    """

    def __init__(
        self,
        semantic_comparer: SemanticComparer,
        cache: Optional[ResultCache] = None,
        classifier: Optional[ChangeClassifier] = None,
        similarity_threshold: float = config.SIMILARITY_THRESHOLD,
        cache_ttl_seconds: int = config.SIMILARITY_CACHE_TTL_SECONDS
    ):
        """
        Args:
            semantic_comparer: Collaborator that judges same-category pairs
            cache: Result cache; without one every pair is recomputed
            classifier: Change classifier (a default one is created if omitted)
            similarity_threshold: Minimum score for a pair to form a group
            cache_ttl_seconds: Lifetime of cached similarity results
        """
        self.logger = logging.getLogger("change_analyzer.similarity_analyzer")
        self.semantic_comparer = semantic_comparer
        self.cache = cache
        self.classifier = classifier or ChangeClassifier()
        self.similarity_threshold = similarity_threshold
        self.cache_ttl_seconds = cache_ttl_seconds
        self.tracer = get_tracer(__name__)

    async def analyze_for_batching(self, tickets: List[Dict]) -> BatchAnalysisResult:
        """
        Score every ticket pair and suggest batch groups.

        Args:
            tickets: Ticket dictionaries with "id", "summary" and "description"

        Returns:
            BatchAnalysisResult with pairwise scores, groups sorted by average
            score (highest first) and the number of tickets analyzed

        Example:
            >>> result = await analyzer.analyze_for_batching([
            ...     {"id": "1", "summary": "Add phone field to Account"},
            ...     {"id": "2", "summary": "Add email field to Account"},
            ... ])
            >>> [g.member_ids for g in result.groups]
            [['1', '2']]
        """
        start_time = time.monotonic()

        if len(tickets) < 2:
            return BatchAnalysisResult(
                count_analyzed=len(tickets),
                analysis_time_ms=(time.monotonic() - start_time) * 1000
            )

        with self.tracer.start_as_current_span(
            "batch.similarity_analysis",
            attributes={
                "batch.ticket_count": len(tickets),
                "operation.type": "similarity_analysis",
            }
        ) as span:
            self.logger.info(f"Starting similarity analysis of {len(tickets)} tickets")

            classified = self._classify_tickets(tickets)
            pairwise_scores = await self._score_pairs(classified)
            groups = self._build_groups(pairwise_scores)

            span.set_attribute("batch.pair_count", len(pairwise_scores))
            span.set_attribute("batch.group_count", len(groups))

            self.logger.info(
                f"Similarity analysis complete: {len(pairwise_scores)} pairs scored, "
                f"{len(groups)} groups suggested"
            )

            return BatchAnalysisResult(
                pairwise_scores=pairwise_scores,
                groups=groups,
                count_analyzed=len(tickets),
                analysis_time_ms=(time.monotonic() - start_time) * 1000
            )

    def _classify_tickets(self, tickets: List[Dict]) -> List[Tuple[Dict, ClassificationResult]]:
        """
        Classify every ticket; tickets that cannot be classified are skipped.

        Returns:
            (ticket, classification) pairs in input order
        """
        classified = []

        for ticket in tickets:
            ticket_id = ticket.get('id') if isinstance(ticket, dict) else None

            if ticket_id is None:
                self.logger.warning(f"Skipping ticket without an id: {ticket!r:.80}")
                continue

            try:
                classification = self.classifier.classify(utils.compose_ticket_text(ticket))
            except Exception as e:
                self.logger.warning(f"Could not classify ticket {ticket_id}, excluding it: {e}")
                continue

            classified.append((ticket, classification))

        skipped = len(tickets) - len(classified)
        if skipped:
            self.logger.info(f"Excluded {skipped} tickets without a classification")

        return classified

    async def _score_pairs(
        self,
        classified: List[Tuple[Dict, ClassificationResult]]
    ) -> List[SimilarityScore]:
        """Score each unordered pair, one pair at a time."""
        scores = []

        for i in range(len(classified) - 1):
            for j in range(i + 1, len(classified)):
                ticket_a, result_a = classified[i]
                ticket_b, result_b = classified[j]
                scores.append(await self._score_pair(ticket_a, result_a, ticket_b, result_b))

        return scores

    async def _score_pair(
        self,
        ticket_a: Dict,
        result_a: ClassificationResult,
        ticket_b: Dict,
        result_b: ClassificationResult
    ) -> SimilarityScore:
        id_a = str(ticket_a['id'])
        id_b = str(ticket_b['id'])
        category = result_a.primary_category

        if result_a.primary_category != result_b.primary_category:
            return SimilarityScore(
                id_a=id_a,
                id_b=id_b,
                score=config.DIFFERENT_CATEGORY_SCORE,
                shared_category=category,
                confidence=config.DIFFERENT_CATEGORY_CONFIDENCE,
                reasoning=(
                    f"Different categories detected: "
                    f"{result_a.primary_category.value} vs {result_b.primary_category.value}"
                )
            )

        object_a = result_a.first_object_name
        object_b = result_b.first_object_name

        if object_a and object_b and object_a.lower() != object_b.lower():
            return SimilarityScore(
                id_a=id_a,
                id_b=id_b,
                score=config.DIFFERENT_OBJECT_SCORE,
                shared_category=category,
                shared_object_name=object_a,
                confidence=config.DIFFERENT_OBJECT_CONFIDENCE,
                reasoning=f"Different objects: {object_a} vs {object_b}"
            )

        return await self._semantic_score(ticket_a, result_a, ticket_b, result_b)

    async def _semantic_score(
        self,
        ticket_a: Dict,
        result_a: ClassificationResult,
        ticket_b: Dict,
        result_b: ClassificationResult
    ) -> SimilarityScore:
        """
        Semantic comparison for pairs the heuristics cannot separate.

        Cached results are reused; comparer failures become the fallback
        score, which is cached like any other result.
        """
        id_a = str(ticket_a['id'])
        id_b = str(ticket_b['id'])
        category = result_a.primary_category
        object_a = result_a.first_object_name
        object_b = result_b.first_object_name

        fingerprint = utils.generate_fingerprint(config.CACHE_PREFIX, {
            "ticket_a": id_a,
            "ticket_b": id_b,
            "category_a": result_a.primary_category.value,
            "category_b": result_b.primary_category.value,
            "object_a": object_a,
            "object_b": object_b,
        })

        cached = await self._cache_get(fingerprint)
        if cached is not None:
            self.logger.debug(f"Using cached similarity for tickets {id_a}/{id_b}")
            return cached

        context = ComparisonContext(
            id_a=id_a,
            summary_a=ticket_a.get('summary') or '',
            description_a=ticket_a.get('description') or '',
            id_b=id_b,
            summary_b=ticket_b.get('summary') or '',
            description_b=ticket_b.get('description') or '',
            category=category
        )

        try:
            response_text = await self.semantic_comparer.compare(context)
            analysis = self.parse_similarity_response(response_text)
        except Exception as e:
            self.logger.warning(
                f"Semantic comparison failed for tickets {id_a}/{id_b}, using fallback: {e}"
            )
            analysis = {
                "score": config.FALLBACK_SIMILARITY_SCORE,
                "confidence": config.FALLBACK_SIMILARITY_CONFIDENCE,
                "reasoning": config.FALLBACK_SIMILARITY_REASONING,
            }

        result = SimilarityScore(
            id_a=id_a,
            id_b=id_b,
            score=analysis["score"],
            shared_category=category,
            shared_object_name=object_a or object_b,
            confidence=analysis["confidence"],
            reasoning=analysis["reasoning"]
        )

        await self._cache_set(fingerprint, result)
        return result

    def parse_similarity_response(self, response_text: str) -> Dict:
        """
        Parse the comparer's reply into score, confidence and reasoning.

        Expected layout:
            SCORE: [number] | CONFIDENCE: [number] | REASONING: [explanation]

        Missing or unreadable markers fall back to score 0.5, confidence 0.5
        and "No reasoning provided". Numbers are clamped to [0, 1].

        Args:
            response_text: Raw text returned by the semantic comparer

        Returns:
            {"score": float, "confidence": float, "reasoning": str}
        """
        analysis = {
            "score": config.DEFAULT_SIMILARITY_SCORE,
            "confidence": config.DEFAULT_SIMILARITY_CONFIDENCE,
            "reasoning": config.DEFAULT_SIMILARITY_REASONING,
        }
        text = response_text or ""

        score_match = SCORE_MARKER.search(text)
        if score_match:
            analysis["score"] = _clamp_unit(float(score_match.group(1)))
        else:
            self.logger.debug("No readable SCORE marker in response")

        confidence_match = CONFIDENCE_MARKER.search(text)
        if confidence_match:
            analysis["confidence"] = _clamp_unit(float(confidence_match.group(1)))

        reasoning_match = REASONING_MARKER.search(text)
        if reasoning_match and reasoning_match.group(1).strip():
            analysis["reasoning"] = reasoning_match.group(1).strip()

        if not (score_match and confidence_match and reasoning_match):
            self.logger.warning("Similarity response is missing markers - defaults applied")
            self.logger.debug(f"Raw response: {text[:500]}...")

        return analysis

    async def _cache_get(self, fingerprint: str) -> Optional[SimilarityScore]:
        if self.cache is None:
            return None
        try:
            cached = await self.cache.get(fingerprint)
            return SimilarityScore.from_dict(cached) if cached else None
        except Exception as e:
            self.logger.warning(f"Similarity cache unavailable, recomputing: {e}")
            return None

    async def _cache_set(self, fingerprint: str, result: SimilarityScore) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(fingerprint, result.to_dict(), self.cache_ttl_seconds)
        except Exception as e:
            self.logger.warning(f"Could not cache similarity result: {e}")

    def _build_groups(self, scores: List[SimilarityScore]) -> List[GroupSuggestion]:
        """
        Bucket qualifying pairs by (category, object) and average each bucket.

        The average covers every scored pair inside the bucket, not only the
        pairs that met the threshold.
        """
        buckets: Dict[Tuple[ChangeCategory, str], Dict[str, None]] = {}

        for score in scores:
            if score.score < self.similarity_threshold:
                continue

            key = (score.shared_category, score.shared_object_name or UNKNOWN_OBJECT)
            members = buckets.setdefault(key, {})
            members[score.id_a] = None
            members[score.id_b] = None

        groups = []
        for (category, object_name), members in buckets.items():
            if len(members) < 2:
                continue

            member_pair_scores = [
                s.score for s in scores
                if s.id_a in members and s.id_b in members
            ]
            average = (
                sum(member_pair_scores) / len(member_pair_scores)
                if member_pair_scores else 0.0
            )
            shared_object = object_name if object_name != UNKNOWN_OBJECT else None

            groups.append(GroupSuggestion(
                label=f"{category.value} changes for {object_name}",
                member_ids=list(members),
                shared_category=category,
                shared_object_name=shared_object,
                average_score=average,
                formation_criteria={
                    "category": category.value,
                    "object_name": shared_object,
                    "threshold": self.similarity_threshold,
                }
            ))

        groups.sort(key=lambda g: g.average_score, reverse=True)
        return groups
