"""Severity classification for reconciliation findings."""

from dataclasses import dataclass
from enum import IntEnum, StrEnum

from stackwarden.models import ReconciliationReport, ResourceId, ResourceKind


class Severity(IntEnum):
    """Finding severity level. Higher value = more severe."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class Category(StrEnum):
    """How a resource relates to the stack record."""

    MANAGED = "MANAGED"
    MISSING = "MISSING"
    ORPHANED = "ORPHANED"
    RETAINED = "RETAINED"


SEVERITY_MAP: dict[ResourceKind, Severity] = {
    # Critical: the audit trail itself and the identity it writes with
    ResourceKind.CLOUDTRAIL_TRAIL: Severity.CRITICAL,
    ResourceKind.IAM_ROLE: Severity.CRITICAL,
    # High: where audit records land
    ResourceKind.S3_BUCKET: Severity.HIGH,
    ResourceKind.LOG_GROUP: Severity.HIGH,
    # Medium: published identifiers
    ResourceKind.SSM_PARAMETER: Severity.MEDIUM,
}


@dataclass(frozen=True)
class Finding:
    """One resource of a report with its category and severity."""

    resource: ResourceId
    category: Category
    severity: Severity | None


@dataclass(frozen=True)
class AnalyzedReport:
    """A ReconciliationReport annotated with per-resource findings."""

    report: ReconciliationReport
    findings: list[Finding]
    severity: Severity | None

    @property
    def drift_findings(self) -> list[Finding]:
        return [f for f in self.findings if f.category in (Category.MISSING, Category.ORPHANED)]


def analyze_report(report: ReconciliationReport) -> AnalyzedReport:
    """Classify each resource in the report, rating orphans and missing resources by kind."""
    findings = []
    for resource in sorted(report.managed):
        findings.append(Finding(resource, Category.MANAGED, None))
    for resource in sorted(report.retained):
        findings.append(Finding(resource, Category.RETAINED, None))
    for category, resources in (
        (Category.MISSING, report.missing),
        (Category.ORPHANED, report.orphaned),
    ):
        for resource in sorted(resources):
            severity = SEVERITY_MAP.get(resource.kind, Severity.LOW)
            if report.provisional:
                severity = Severity.LOW
            findings.append(Finding(resource, category, severity))

    rated = [f.severity for f in findings if f.severity is not None]
    return AnalyzedReport(
        report=report,
        findings=findings,
        severity=max(rated) if rated else None,
    )
