import asyncio

import pytest
from unittest.mock import AsyncMock

import config
from collaborators import OrgConventionLookup, StaticOrgConventionLookup
from conflict_detector import ConflictDetector, extract_field_references, is_formula_field
from models import ConflictFinding, ConflictKind, Severity
from utils import ImpactAnalysisError, MetadataLookupError


def formula(name, body):
    return {"name": name, "type": "Formula", "formula": body}


def finding(severity, risk_score, component="X__c"):
    return ConflictFinding(
        kind=ConflictKind.NAMING,
        severity=severity,
        conflicting_component=component,
        description="",
        resolution="",
        risk_score=risk_score,
    )


EMPTY_METADATA = {"fields": [], "validation_rules": []}


def test_extract_field_references():
    refs = extract_field_references("IF(Amount__c > 0, Amount__c * Rate__c, LEN(Name) + OwnerId)")
    assert refs == ["Amount__c", "Rate__c", "Name", "OwnerId"]


def test_is_formula_field():
    assert is_formula_field(formula("Total__c", "Amount__c"))
    assert is_formula_field({"name": "Total__c", "type": "formula", "formula": "1"})
    assert not is_formula_field({"name": "Total__c", "type": "Formula"})
    assert not is_formula_field({"name": "Total__c", "type": "Text", "formula": "Amount__c"})


@pytest.mark.asyncio
async def test_mutual_formula_references_are_both_critical(detector):
    proposed = {"fields": [
        formula("Total__c", "Discount__c + 1"),
        formula("Discount__c", "Total__c * 0.1"),
    ]}

    findings = await detector.detect_conflicts("org1", proposed, EMPTY_METADATA)

    assert [f.conflicting_component for f in findings] == ["Total__c", "Discount__c"]
    for f in findings:
        assert f.kind == ConflictKind.DEPENDENCY
        assert f.severity == Severity.CRITICAL
        assert f.risk_score == 90
        assert "restructuring" in f.resolution
    assert findings[0].affected_components == ["Total__c", "Discount__c", "Total__c"]


@pytest.mark.asyncio
async def test_transitive_cycle_reports_only_fields_on_the_cycle(detector):
    proposed = {"fields": [
        formula("Alpha__c", "Beta__c + 1"),
        formula("Beta__c", "Gamma__c + 1"),
        formula("Gamma__c", "Alpha__c + 1"),
        formula("Delta__c", "Alpha__c + 1"),
    ]}

    findings = await detector.detect_conflicts("org1", proposed, EMPTY_METADATA)

    assert [f.conflicting_component for f in findings] == ["Alpha__c", "Beta__c", "Gamma__c"]
    assert findings[0].affected_components == ["Alpha__c", "Beta__c", "Gamma__c", "Alpha__c"]


@pytest.mark.asyncio
async def test_cycle_through_existing_formula_field(detector):
    proposed = {"fields": [formula("Total__c", "Discount__c + 1")]}
    existing = {"fields": [formula("Discount__c", "Total__c / 2")]}

    findings = await detector.detect_conflicts("org1", proposed, existing)

    assert len(findings) == 1
    assert findings[0].severity == Severity.CRITICAL
    assert findings[0].affected_components == ["Total__c", "Discount__c", "Total__c"]


def test_cycle_search_handles_long_reference_chains():
    chain = {f"F{i}__c": [f"F{i + 1}__c"] for i in range(5000)}

    assert ConflictDetector._find_cycle_through("F0__c", chain) == []

    chain["F5000__c"] = ["F0__c"]
    cycle = ConflictDetector._find_cycle_through("F0__c", chain)

    assert len(cycle) == 5002
    assert cycle[0] == cycle[-1] == "F0__c"
    assert cycle[2500] == "F2500__c"


@pytest.mark.asyncio
async def test_acyclic_formulas_produce_no_findings(detector):
    proposed = {"fields": [
        formula("Total__c", "Amount__c + Tax__c"),
        formula("Tax__c", "Amount__c * 0.2"),
    ]}

    assert await detector.detect_conflicts("org1", proposed, EMPTY_METADATA) == []


@pytest.mark.asyncio
async def test_reserved_word_field_name(detector):
    proposed = {"fields": [{"name": "Account__c", "type": "Text"}]}

    findings = await detector.detect_conflicts("org1", proposed, EMPTY_METADATA)

    assert len(findings) == 1
    assert findings[0].kind == ConflictKind.NAMING
    assert findings[0].severity == Severity.HIGH
    assert findings[0].risk_score == 75
    assert findings[0].conflicting_component == "Account__c"


@pytest.mark.asyncio
async def test_near_duplicate_reports_first_qualifying_field(detector):
    proposed = {"fields": [{"name": "CustomerEmail__c", "type": "Email"}]}
    existing = {"fields": [
        {"name": "Phone__c"},
        {"name": "CustomerMail__c"},
        {"name": "CustomerEmails__c"},
    ]}

    findings = await detector.detect_conflicts("org1", proposed, existing)

    assert len(findings) == 1
    near_duplicate = findings[0]
    assert near_duplicate.severity == Severity.MEDIUM
    assert near_duplicate.risk_score == 40
    # CustomerEmails__c is closer, but CustomerMail__c comes first
    assert near_duplicate.conflicting_component == "CustomerMail__c"
    assert near_duplicate.affected_components == ["CustomerMail__c", "CustomerEmails__c"]


@pytest.mark.asyncio
@pytest.mark.parametrize("proposed_name,existing_name,expected_count", [
    # 7 of 10 characters survive: exactly at the bound, not a near duplicate
    ("Abcdefghij__c", "Abcdefgxyz__c", 0),
    # 8 of 11 characters survive: just above the bound
    ("Abcdefghijk__c", "Abcdefghxyz__c", 1),
])
async def test_near_duplicate_bound_is_exclusive(detector, proposed_name, existing_name, expected_count):
    proposed = {"fields": [{"name": proposed_name}]}
    existing = {"fields": [{"name": existing_name}]}

    findings = await detector.detect_conflicts("org1", proposed, existing)

    assert len(findings) == expected_count
    for near_duplicate in findings:
        assert near_duplicate.severity == Severity.MEDIUM
        assert near_duplicate.risk_score == 40
        assert near_duplicate.conflicting_component == existing_name


@pytest.mark.asyncio
@pytest.mark.parametrize("existing_name", ["CustomerEmail__c", "customeremail__c"])
async def test_exact_name_match_is_not_a_near_duplicate(detector, existing_name):
    proposed = {"fields": [{"name": "CustomerEmail__c", "type": "Email"}]}
    existing = {"fields": [{"name": existing_name}]}

    assert await detector.detect_conflicts("org1", proposed, existing) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("field_name", ["customer_email__c", "CustomerEmail"])
async def test_naming_convention_violation(detector, field_name):
    proposed = {"fields": [{"name": field_name, "type": "Email"}]}

    findings = await detector.detect_conflicts("org1", proposed, EMPTY_METADATA)

    assert len(findings) == 1
    assert findings[0].severity == Severity.LOW
    assert findings[0].risk_score == 20
    assert findings[0].resolution == "Rename to follow PascalCase__c pattern"
    assert findings[0].suggested_actions == config.DEFAULT_NAMING_CONVENTION["suggestions"]


@pytest.mark.asyncio
async def test_org_convention_is_looked_up_once_per_call(metadata_lookup, impact_analysis):
    convention_lookup = AsyncMock()
    convention_lookup.get.return_value = {"pattern": "snake_case__c", "suggestions": ["Use snake_case"]}
    detector = ConflictDetector(metadata_lookup, impact_analysis, convention_lookup)
    proposed = {"fields": [
        {"name": "customer_email__c"},
        {"name": "billing_code__c"},
        {"name": "ShippingCode__c"},
    ]}

    findings = await detector.detect_conflicts("org7", proposed, EMPTY_METADATA)

    convention_lookup.get.assert_awaited_once_with("org7")
    assert [f.conflicting_component for f in findings] == ["ShippingCode__c"]
    assert findings[0].suggested_actions == ["Use snake_case"]


@pytest.mark.parametrize("field_name,convention,expected", [
    ("CustomerEmail__c", {"pattern": "PascalCase__c"}, True),
    ("customerEmail__c", {"pattern": "PascalCase__c"}, False),
    ("Customer_Email__c", {"pattern": "PascalCase__c"}, False),
    ("customer_email__c", {"pattern": "snake_case__c"}, True),
    ("anything_Goes__c", {"pattern": "Custom"}, True),
    ("NoSuffix", {"pattern": "Custom"}, False),
])
def test_follows_naming_convention(field_name, convention, expected):
    assert ConflictDetector.follows_naming_convention(field_name, convention) is expected


@pytest.mark.asyncio
async def test_field_impacts_map_to_findings(detector, impact_analysis):
    impact_analysis.analyze_field_impacts.return_value = [
        {
            "impact_type": "conflict",
            "severity": "high",
            "affected_components": ["Phone__c"],
            "description": "A field with this purpose already exists",
        },
        {
            "impact_type": "dependency",
            "severity": "medium",
            "affected_components": [],
            "description": "Referenced field is missing",
        },
        {
            "impact_type": "informational",
            "severity": "low",
            "affected_components": ["Fax__c"],
            "description": "Ignored",
        },
    ]
    proposed_field = {"name": "Mobile__c", "type": "Phone"}
    existing = {"fields": [{"name": "Fax__c"}]}

    findings = await detector.detect_conflicts("org1", {"fields": [proposed_field]}, existing)

    impact_analysis.analyze_field_impacts.assert_awaited_once_with(proposed_field, existing["fields"])
    assert len(findings) == 2

    duplicate, dependency = findings
    assert duplicate.kind == ConflictKind.DUPLICATE
    assert duplicate.severity == Severity.HIGH
    assert duplicate.risk_score == 70
    assert duplicate.conflicting_component == "Phone__c"
    assert duplicate.resolution == 'Choose a different name for "Mobile__c" or modify the existing component'
    assert duplicate.suggested_actions[0] == "Use a more specific name for Mobile__c"

    assert dependency.kind == ConflictKind.DEPENDENCY
    assert dependency.severity == Severity.MEDIUM
    assert dependency.risk_score == 40
    assert dependency.conflicting_component == "Unknown"


@pytest.mark.asyncio
async def test_field_impacts_skipped_without_existing_fields(detector, impact_analysis):
    findings = await detector.detect_conflicts("org1", {"fields": [{"name": "Mobile__c"}]}, {})

    assert findings == []
    impact_analysis.analyze_field_impacts.assert_not_awaited()


@pytest.mark.asyncio
async def test_validation_rule_conflicts_map_to_findings(detector, impact_analysis):
    impact_analysis.check_validation_rule_conflicts.return_value = [
        {"conflict_type": "overlap", "severity": "low", "existing_rule": "Rule_B", "description": "Same condition"},
        {"conflict_type": "contradiction", "severity": "critical", "existing_rule": "Rule_A", "description": "Opposite"},
        {"severity": "urgent", "existing_rule": None, "description": "Unclear"},
    ]
    proposed = {"validation_rules": [{"name": "New_Rule"}]}
    existing = {"validation_rules": [{"name": "Rule_A"}, {"name": "Rule_B"}]}

    findings = await detector.detect_conflicts("org1", proposed, existing)

    assert [(f.kind, f.severity, f.risk_score, f.conflicting_component) for f in findings] == [
        (ConflictKind.VALIDATION, Severity.CRITICAL, 90, "Rule_A"),
        (ConflictKind.DUPLICATE, Severity.LOW, 20, "Rule_B"),
        (ConflictKind.DUPLICATE, Severity.LOW, 10, "Unknown"),
    ]
    assert findings[0].affected_components == ["Rule_A"]
    assert findings[2].affected_components == []
    assert all(f.resolution == "Review and modify validation logic to avoid conflicts" for f in findings)


@pytest.mark.parametrize("raw,expected", [
    ("critical", (Severity.CRITICAL, 90)),
    ("high", (Severity.HIGH, 70)),
    ("medium", (Severity.MEDIUM, 40)),
    ("low", (Severity.LOW, 20)),
    ("HIGH", (Severity.HIGH, 70)),
    ("severe", (Severity.LOW, 10)),
    (None, (Severity.LOW, 10)),
])
def test_severity_risk_mapping(detector, raw, expected):
    assert detector._severity_and_risk(raw) == expected


@pytest.mark.asyncio
async def test_findings_ordered_by_severity_then_risk(detector, impact_analysis):
    impact_analysis.analyze_field_impacts.return_value = [
        {"impact_type": "conflict", "severity": "low", "affected_components": ["Accounts__c"], "description": ""},
    ]
    proposed = {"fields": [formula("Account__c", "Account__c + 1")]}
    existing = {"fields": [{"name": "Accounts__c"}]}

    findings = await detector.detect_conflicts("org1", proposed, existing)

    assert [f.severity for f in findings] == [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW]
    keys = [f.sort_key() for f in findings]
    assert keys == sorted(keys, reverse=True)


def test_prioritize_breaks_severity_ties_by_risk():
    findings = [
        finding(Severity.LOW, 10),
        finding(Severity.HIGH, 70),
        finding(Severity.HIGH, 75),
        finding(Severity.CRITICAL, 90),
        finding(Severity.MEDIUM, 40),
    ]

    ordered = ConflictDetector.prioritize(findings)

    assert [(f.severity, f.risk_score) for f in ordered] == [
        (Severity.CRITICAL, 90),
        (Severity.HIGH, 75),
        (Severity.HIGH, 70),
        (Severity.MEDIUM, 40),
        (Severity.LOW, 10),
    ]


@pytest.mark.asyncio
async def test_metadata_fetched_once_when_not_supplied(detector, metadata_lookup):
    proposed = {"object_name": "Account", "fields": [{"name": "Mobile__c"}]}

    await detector.detect_conflicts("org1", proposed)

    metadata_lookup.describe_object.assert_awaited_once_with("org1", "Account")


@pytest.mark.asyncio
async def test_metadata_not_fetched_when_supplied_or_without_object(detector, metadata_lookup):
    await detector.detect_conflicts("org1", {"object_name": "Account", "fields": []}, EMPTY_METADATA)
    await detector.detect_conflicts("org1", {"fields": [{"name": "Mobile__c"}]})

    metadata_lookup.describe_object.assert_not_awaited()


@pytest.mark.asyncio
async def test_metadata_failure_propagates(detector, metadata_lookup):
    metadata_lookup.describe_object.side_effect = MetadataLookupError("describe failed")

    with pytest.raises(MetadataLookupError):
        await detector.detect_conflicts("org1", {"object_name": "Account", "fields": [{"name": "Mobile__c"}]})


@pytest.mark.asyncio
async def test_impact_analysis_failure_propagates(detector, impact_analysis):
    impact_analysis.analyze_field_impacts.side_effect = ImpactAnalysisError("timeout")

    with pytest.raises(ImpactAnalysisError):
        await detector.detect_conflicts("org1", {"fields": [{"name": "Mobile__c"}]}, EMPTY_METADATA)


@pytest.mark.asyncio
async def test_convention_lookup_failure_propagates(metadata_lookup, impact_analysis):
    convention_lookup = AsyncMock()
    convention_lookup.get.side_effect = RuntimeError("convention service down")
    detector = ConflictDetector(metadata_lookup, impact_analysis, convention_lookup)

    with pytest.raises(RuntimeError):
        await detector.detect_conflicts("org1", {"fields": [{"name": "Mobile__c"}]}, EMPTY_METADATA)


class StalledConventionLookup(OrgConventionLookup):
    """Convention service that never answers until cancelled."""

    def __init__(self):
        self.started = False
        self.cancelled = False

    async def get(self, org_id):
        self.started = True
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


@pytest.mark.asyncio
async def test_failed_detection_cancels_pending_lookups(metadata_lookup, impact_analysis):
    impact_analysis.analyze_field_impacts.side_effect = ImpactAnalysisError("timeout")
    convention_lookup = StalledConventionLookup()
    detector = ConflictDetector(metadata_lookup, impact_analysis, convention_lookup)

    with pytest.raises(ImpactAnalysisError):
        await detector.detect_conflicts("org1", {"fields": [{"name": "Mobile__c"}]}, EMPTY_METADATA)

    assert convention_lookup.started is True
    assert convention_lookup.cancelled is True


@pytest.mark.asyncio
async def test_concurrent_calls_do_not_share_cycle_state(detector):
    cyclic = {"fields": [
        formula("Total__c", "Discount__c + 1"),
        formula("Discount__c", "Total__c * 0.1"),
    ]}
    acyclic = {"fields": [formula("Net__c", "Amount__c - Tax__c")]}

    first, second, third = await asyncio.gather(
        detector.detect_conflicts("org1", cyclic, EMPTY_METADATA),
        detector.detect_conflicts("org2", acyclic, EMPTY_METADATA),
        detector.detect_conflicts("org3", cyclic, EMPTY_METADATA),
    )

    assert len(first) == 2
    assert second == []
    assert [f.to_dict() for f in third] == [f.to_dict() for f in first]


@pytest.mark.asyncio
async def test_static_convention_lookup_override():
    lookup = StaticOrgConventionLookup({"pattern": "snake_case__c", "suggestions": []})
    assert (await lookup.get("any-org"))["pattern"] == "snake_case__c"


def test_conflict_finding_to_dict():
    data = finding(Severity.HIGH, 75, component="Account__c").to_dict()

    assert data["kind"] == "naming"
    assert data["severity"] == "high"
    assert data["conflicting_component"] == "Account__c"
