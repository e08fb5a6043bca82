"""
Pre-deployment conflict detection for the Change Ticket Analyzer.

Checks a proposed change against the org's existing configuration:
1. Field conflicts reported by the impact analysis service
2. Validation rule overlaps and contradictions
3. Circular references between formula fields
4. Naming problems (reserved words, org conventions, near-duplicate names)

Unlike similarity analysis this stage never substitutes a fallback. A failed
metadata lookup or collaborator call propagates to the caller, because an
empty conflict list must always mean "no conflicts found".
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import config
import utils
from collaborators import ImpactAnalysis, MetadataLookup, OrgConventionLookup, StaticOrgConventionLookup
from instrumentation import get_tracer
from models import ConflictFinding, ConflictKind, Severity

CUSTOM_FIELD_REFERENCE = re.compile(r'\b([A-Za-z_][A-Za-z0-9_]*__c)\b')
STANDARD_FIELD_REFERENCE = re.compile(
    r'\b(' + '|'.join(config.FORMULA_STANDARD_FIELDS) + r')\b'
)

FORMULA_FIELD_TYPE = "formula"

# Three-color DFS states
UNVISITED, IN_PROGRESS, DONE = 0, 1, 2


def extract_field_references(formula: str) -> List[str]:
    """
    List the custom and standard fields a formula body refers to.

    Example:
        >>> extract_field_references("Amount__c * Rate__c + LEN(Name)")
        ['Amount__c', 'Rate__c', 'Name']
    """
    custom_fields = CUSTOM_FIELD_REFERENCE.findall(formula)
    standard_fields = STANDARD_FIELD_REFERENCE.findall(formula)
    return list(dict.fromkeys(custom_fields + standard_fields))


def is_formula_field(field: Dict[str, Any]) -> bool:
    return (
        str(field.get('type') or '').lower() == FORMULA_FIELD_TYPE
        and bool(field.get('formula'))
    )


class ConflictDetector:
    """
    Produces a prioritized list of conflicts for a proposed change.

    Findings are ordered by severity (critical first) and then by risk score.
    """

    def __init__(
        self,
        metadata_lookup: MetadataLookup,
        impact_analysis: ImpactAnalysis,
        convention_lookup: Optional[OrgConventionLookup] = None
    ):
        self.logger = logging.getLogger("change_analyzer.conflict_detector")
        self.metadata_lookup = metadata_lookup
        self.impact_analysis = impact_analysis
        self.convention_lookup = convention_lookup or StaticOrgConventionLookup()
        self.tracer = get_tracer(__name__)

    async def detect_conflicts(
        self,
        org_id: str,
        proposed_changes: Dict[str, Any],
        existing_metadata: Optional[Dict[str, Any]] = None
    ) -> List[ConflictFinding]:
        """
        Detect conflicts between a proposed change and the org's configuration.

        Args:
            org_id: Target org
            proposed_changes: {"object_name", "fields", "validation_rules"}
            existing_metadata: Current object metadata; fetched through the
                               metadata lookup when omitted and an object
                               name is given

        Returns:
            Findings sorted by severity then risk score, highest first

        Raises:
            Whatever the metadata lookup, impact analysis or convention lookup
            raise; errors are logged and re-raised unchanged
        """
        proposed_changes = proposed_changes or {}
        object_name = proposed_changes.get('object_name')

        with self.tracer.start_as_current_span(
            "change.conflict_detection",
            attributes={
                "org.id": str(org_id),
                "change.object": str(object_name or ""),
                "operation.type": "conflict_detection",
            }
        ) as span:
            try:
                if existing_metadata is None and object_name:
                    self.logger.debug(f"Fetching metadata for {object_name} in org {org_id}")
                    existing_metadata = await self.metadata_lookup.describe_object(org_id, object_name)

                existing_metadata = existing_metadata or {}

                detected = await self._run_detections(
                    self._detect_field_conflicts(proposed_changes, existing_metadata),
                    self._detect_validation_rule_conflicts(proposed_changes, existing_metadata),
                    self._detect_circular_references(proposed_changes, existing_metadata),
                    self._detect_naming_conflicts(org_id, proposed_changes, existing_metadata),
                )
            except Exception as e:
                self.logger.error(f"Conflict detection failed for org {org_id}: {e}")
                span.set_attribute("error.message", str(e))
                span.record_exception(e)
                raise

            findings = [finding for group in detected for finding in group]
            findings = self.prioritize(findings)

            span.set_attribute("conflict.count", len(findings))
            self.logger.info(
                f"Conflict detection for org {org_id} found {len(findings)} conflicts"
            )
            return findings

    @staticmethod
    async def _run_detections(*detections) -> List[List[ConflictFinding]]:
        """
        Run independent sub-detections concurrently, results in argument order.

        The first failure cancels the detections still running and is then
        re-raised, so no collaborator call outlives the failed request.
        """
        tasks = [asyncio.ensure_future(detection) for detection in detections]
        try:
            return await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    @staticmethod
    def prioritize(findings: List[ConflictFinding]) -> List[ConflictFinding]:
        """Sort by severity rank, then risk score, both descending (stable)."""
        return sorted(findings, key=lambda finding: finding.sort_key(), reverse=True)

    # ------------------------------------------------------------------------
    # Collaborator-reported conflicts
    # ------------------------------------------------------------------------

    async def _detect_field_conflicts(
        self,
        proposed_changes: Dict[str, Any],
        existing_metadata: Dict[str, Any]
    ) -> List[ConflictFinding]:
        proposed_fields = proposed_changes.get('fields') or []
        existing_fields = existing_metadata.get('fields')
        findings = []

        if not proposed_fields or existing_fields is None:
            return findings

        for proposed_field in proposed_fields:
            impacts = await self.impact_analysis.analyze_field_impacts(proposed_field, existing_fields)

            for impact in impacts:
                impact_type = impact.get('impact_type')
                if impact_type == 'conflict':
                    kind = ConflictKind.DUPLICATE
                elif impact_type == 'dependency':
                    kind = ConflictKind.DEPENDENCY
                else:
                    continue

                affected = list(impact.get('affected_components') or [])
                severity, risk_score = self._severity_and_risk(impact.get('severity'))
                field_name = proposed_field.get('name', 'Unknown')

                findings.append(ConflictFinding(
                    kind=kind,
                    severity=severity,
                    conflicting_component=affected[0] if affected else 'Unknown',
                    description=impact.get('description', ''),
                    resolution=self._resolution(kind.value, field_name),
                    risk_score=risk_score,
                    affected_components=affected,
                    suggested_actions=self._suggested_actions(kind.value, field_name),
                ))

        return findings

    async def _detect_validation_rule_conflicts(
        self,
        proposed_changes: Dict[str, Any],
        existing_metadata: Dict[str, Any]
    ) -> List[ConflictFinding]:
        proposed_rules = proposed_changes.get('validation_rules') or []
        existing_rules = existing_metadata.get('validation_rules')
        findings = []

        if not proposed_rules or existing_rules is None:
            return findings

        for proposed_rule in proposed_rules:
            rule_conflicts = await self.impact_analysis.check_validation_rule_conflicts(
                proposed_rule, existing_rules
            )

            for conflict in rule_conflicts:
                if conflict.get('conflict_type') == 'contradiction':
                    kind = ConflictKind.VALIDATION
                else:
                    kind = ConflictKind.DUPLICATE

                existing_rule = conflict.get('existing_rule')
                severity, risk_score = self._severity_and_risk(conflict.get('severity'))
                rule_name = proposed_rule.get('name', 'Unknown')

                findings.append(ConflictFinding(
                    kind=kind,
                    severity=severity,
                    conflicting_component=existing_rule or 'Unknown',
                    description=conflict.get('description', ''),
                    resolution=self._resolution('validation', rule_name),
                    risk_score=risk_score,
                    affected_components=[existing_rule] if existing_rule else [],
                    suggested_actions=self._suggested_actions('validation', rule_name),
                ))

        return findings

    # ------------------------------------------------------------------------
    # Circular formula references
    # ------------------------------------------------------------------------

    async def _detect_circular_references(
        self,
        proposed_changes: Dict[str, Any],
        existing_metadata: Dict[str, Any]
    ) -> List[ConflictFinding]:
        proposed_fields = proposed_changes.get('fields') or []
        existing_fields = existing_metadata.get('fields') or []
        findings = []

        formula_fields = [f for f in proposed_fields if f.get('name') and is_formula_field(f)]
        if not formula_fields:
            return findings

        graph = self._build_reference_graph(proposed_fields + existing_fields)

        for field in formula_fields:
            field_name = field['name']
            cycle = self._find_cycle_through(field_name, graph)
            if not cycle:
                continue

            self.logger.warning(f"Circular reference detected: {' -> '.join(cycle)}")
            findings.append(ConflictFinding(
                kind=ConflictKind.DEPENDENCY,
                severity=Severity.CRITICAL,
                conflicting_component=field_name,
                description=f'Circular dependency detected in formula field "{field_name}"',
                resolution="Remove circular references by restructuring the formula logic",
                risk_score=config.CIRCULAR_REFERENCE_RISK_SCORE,
                affected_components=cycle,
                suggested_actions=[
                    "Review formula dependencies",
                    "Restructure formula logic to avoid circular references",
                    "Consider using a flow or workflow field update instead",
                ],
            ))

        return findings

    @staticmethod
    def _build_reference_graph(fields: List[Dict[str, Any]]) -> Dict[str, List[str]]:
        """
        Map each field name to the fields its formula references.

        When the same name appears twice the first definition wins, so a
        proposed field shadows the existing field it replaces.
        """
        graph: Dict[str, List[str]] = {}
        for field in fields:
            name = field.get('name')
            if not name or name in graph:
                continue
            formula = field.get('formula')
            graph[name] = extract_field_references(formula) if formula else []
        return graph

    @staticmethod
    def _find_cycle_through(start: str, graph: Dict[str, List[str]]) -> List[str]:
        """
        Three-color DFS from start; returns the cycle path if start lies on one.

        The start node stays IN_PROGRESS for the whole search, so any edge
        that reaches it closes a cycle through it. The walk keeps an explicit
        stack of reference iterators, so chain length is not bounded by the
        interpreter's recursion limit. State is local to the call.

        Returns:
            [start, ..., start] for the first cycle found, or [] when start is
            not on a cycle
        """
        color: Dict[str, int] = {start: IN_PROGRESS}
        path: List[str] = [start]
        stack = [iter(graph.get(start, []))]

        while stack:
            for reference in stack[-1]:
                if reference == start:
                    return path + [start]
                if color.get(reference, UNVISITED) == UNVISITED:
                    color[reference] = IN_PROGRESS
                    path.append(reference)
                    stack.append(iter(graph.get(reference, [])))
                    break
            else:
                # Every reference of the top node explored
                color[path.pop()] = DONE
                stack.pop()

        return []

    # ------------------------------------------------------------------------
    # Naming conflicts
    # ------------------------------------------------------------------------

    async def _detect_naming_conflicts(
        self,
        org_id: str,
        proposed_changes: Dict[str, Any],
        existing_metadata: Dict[str, Any]
    ) -> List[ConflictFinding]:
        proposed_fields = proposed_changes.get('fields') or []
        findings = []

        if not proposed_fields:
            return findings

        convention = await self.convention_lookup.get(org_id)
        existing_fields = existing_metadata.get('fields') or []

        for field in proposed_fields:
            field_name = field.get('name')
            if not field_name:
                continue

            base_name = utils.strip_custom_suffix(field_name).lower()

            if base_name in config.RESERVED_FIELD_WORDS:
                findings.append(ConflictFinding(
                    kind=ConflictKind.NAMING,
                    severity=Severity.HIGH,
                    conflicting_component=field_name,
                    description=f'Field name "{field_name}" uses reserved word "{base_name}"',
                    resolution="Choose a different name that doesn't conflict with reserved words",
                    risk_score=config.RESERVED_WORD_RISK_SCORE,
                    affected_components=[field_name],
                    suggested_actions=[
                        f'Prefix the field name (e.g., "Custom_{field_name}")',
                        "Use a synonym that is not reserved",
                        "Add context to make the name unique",
                    ],
                ))

            if not self.follows_naming_convention(field_name, convention):
                findings.append(ConflictFinding(
                    kind=ConflictKind.NAMING,
                    severity=Severity.LOW,
                    conflicting_component=field_name,
                    description=f'Field name "{field_name}" doesn\'t follow organization naming conventions',
                    resolution=f"Rename to follow {convention.get('pattern')} pattern",
                    risk_score=config.NAMING_CONVENTION_RISK_SCORE,
                    affected_components=[field_name],
                    suggested_actions=list(convention.get('suggestions') or []),
                ))

            similar_fields = self.find_similar_field_names(field_name, existing_fields)
            if similar_fields:
                # First qualifying field in metadata order, not the closest one
                first_similar = similar_fields[0]
                findings.append(ConflictFinding(
                    kind=ConflictKind.NAMING,
                    severity=Severity.MEDIUM,
                    conflicting_component=first_similar,
                    description=(
                        f'Field name "{field_name}" is very similar to existing field "{first_similar}"'
                    ),
                    resolution="Consider using a more distinct name to avoid confusion",
                    risk_score=config.SIMILAR_NAME_RISK_SCORE,
                    affected_components=similar_fields,
                    suggested_actions=[
                        "Add more specific context to the field name",
                        "Use a completely different naming approach",
                        f'Consider if "{first_similar}" can be reused instead',
                    ],
                ))

        return findings

    @staticmethod
    def follows_naming_convention(field_name: str, convention: Dict[str, Any]) -> bool:
        """
        Check a custom field name against an org naming convention.

        Names without the custom suffix never comply. Conventions without a
        known pattern accept any base name.
        """
        if not field_name.endswith(config.CUSTOM_SUFFIX):
            return False

        base_name = utils.strip_custom_suffix(field_name)
        pattern = config.NAMING_CONVENTION_PATTERNS.get(convention.get('pattern'))
        if pattern is None:
            return True
        return re.match(pattern, base_name) is not None

    @staticmethod
    def find_similar_field_names(field_name: str, existing_fields: List[Dict[str, Any]]) -> List[str]:
        """
        Existing field names that are close to, but not the same as, field_name.

        Similarity is the normalized edit distance of the lower-cased base
        names; a field qualifies when it is strictly between the lower and
        upper bounds. Results keep metadata order.
        """
        similar = []
        normalized_name = utils.strip_custom_suffix(field_name).lower()

        for existing in existing_fields:
            existing_name = existing.get('name')
            if not existing_name:
                continue

            existing_normalized = utils.strip_custom_suffix(existing_name).lower()
            similarity = utils.string_similarity(normalized_name, existing_normalized)

            if config.SIMILAR_NAME_LOWER_BOUND < similarity < config.SIMILAR_NAME_UPPER_BOUND:
                similar.append(existing_name)

        return similar

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    def _severity_and_risk(self, raw_severity: Any):
        """Map a collaborator severity string to (Severity, risk score)."""
        try:
            severity = Severity(str(raw_severity).lower())
        except ValueError:
            self.logger.warning(f"Unrecognized severity '{raw_severity}' - treating as low")
            return Severity.LOW, config.UNRECOGNIZED_SEVERITY_RISK_SCORE

        return severity, config.SEVERITY_RISK_SCORES[severity.value]

    @staticmethod
    def _resolution(kind: str, component_name: str) -> str:
        template = config.RESOLUTION_TEMPLATES.get(kind, config.DEFAULT_RESOLUTION)
        return template.format(component=component_name)

    @staticmethod
    def _suggested_actions(kind: str, component_name: str) -> List[str]:
        actions = config.SUGGESTED_ACTIONS.get(kind, config.DEFAULT_SUGGESTED_ACTIONS)
        return [action.format(component=component_name) for action in actions]
