"""Core data models for stack lifecycle management and drift reconciliation."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType

from stackwarden.errors import PrerequisiteError


class StackStatus(StrEnum):
    """CloudFormation stack status, plus ABSENT for a stack that does not exist."""

    ABSENT = "ABSENT"
    CREATE_IN_PROGRESS = "CREATE_IN_PROGRESS"
    CREATE_COMPLETE = "CREATE_COMPLETE"
    CREATE_FAILED = "CREATE_FAILED"
    ROLLBACK_IN_PROGRESS = "ROLLBACK_IN_PROGRESS"
    ROLLBACK_COMPLETE = "ROLLBACK_COMPLETE"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"
    UPDATE_IN_PROGRESS = "UPDATE_IN_PROGRESS"
    UPDATE_COMPLETE_CLEANUP_IN_PROGRESS = "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS"
    UPDATE_COMPLETE = "UPDATE_COMPLETE"
    UPDATE_FAILED = "UPDATE_FAILED"
    UPDATE_ROLLBACK_IN_PROGRESS = "UPDATE_ROLLBACK_IN_PROGRESS"
    UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS = "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS"
    UPDATE_ROLLBACK_COMPLETE = "UPDATE_ROLLBACK_COMPLETE"
    UPDATE_ROLLBACK_FAILED = "UPDATE_ROLLBACK_FAILED"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    DELETE_COMPLETE = "DELETE_COMPLETE"
    DELETE_FAILED = "DELETE_FAILED"
    REVIEW_IN_PROGRESS = "REVIEW_IN_PROGRESS"
    IMPORT_IN_PROGRESS = "IMPORT_IN_PROGRESS"
    IMPORT_COMPLETE = "IMPORT_COMPLETE"
    IMPORT_ROLLBACK_IN_PROGRESS = "IMPORT_ROLLBACK_IN_PROGRESS"
    IMPORT_ROLLBACK_COMPLETE = "IMPORT_ROLLBACK_COMPLETE"
    IMPORT_ROLLBACK_FAILED = "IMPORT_ROLLBACK_FAILED"

    @property
    def is_terminal(self) -> bool:
        """True when no operation is in flight for the stack."""
        return not self.value.endswith("_IN_PROGRESS")

    @property
    def is_failed(self) -> bool:
        """True for statuses that block further applies until the stack is deleted."""
        return self in FAILED_STATUSES

    @property
    def is_complete(self) -> bool:
        """True for a successful *_COMPLETE status that can accept an update."""
        return self in COMPLETE_STATUSES


FAILED_STATUSES = frozenset(
    {
        StackStatus.CREATE_FAILED,
        StackStatus.ROLLBACK_COMPLETE,
        StackStatus.ROLLBACK_FAILED,
        StackStatus.UPDATE_FAILED,
        StackStatus.UPDATE_ROLLBACK_COMPLETE,
        StackStatus.UPDATE_ROLLBACK_FAILED,
        StackStatus.DELETE_FAILED,
        StackStatus.IMPORT_ROLLBACK_COMPLETE,
        StackStatus.IMPORT_ROLLBACK_FAILED,
    }
)

COMPLETE_STATUSES = frozenset(
    {
        StackStatus.CREATE_COMPLETE,
        StackStatus.UPDATE_COMPLETE,
        StackStatus.IMPORT_COMPLETE,
    }
)


class ResourceKind(StrEnum):
    """Resource kinds that can be probed directly for existence."""

    S3_BUCKET = "s3_bucket"
    CLOUDTRAIL_TRAIL = "cloudtrail_trail"
    LOG_GROUP = "log_group"
    IAM_ROLE = "iam_role"
    SSM_PARAMETER = "ssm_parameter"


RESOURCE_TYPE_KINDS: dict[str, ResourceKind] = {
    "AWS::S3::Bucket": ResourceKind.S3_BUCKET,
    "AWS::CloudTrail::Trail": ResourceKind.CLOUDTRAIL_TRAIL,
    "AWS::Logs::LogGroup": ResourceKind.LOG_GROUP,
    "AWS::IAM::Role": ResourceKind.IAM_ROLE,
    "AWS::SSM::Parameter": ResourceKind.SSM_PARAMETER,
}


class Operation(StrEnum):
    """Mutating stack operation."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ApplyOutcome(StrEnum):
    """What an apply actually did."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    NO_CHANGES = "NO_CHANGES"


@dataclass(frozen=True, order=True)
class ResourceId:
    """Identity of a live resource: its kind and physical name."""

    kind: ResourceKind
    key: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.key}"


@dataclass(frozen=True)
class ResourceDescriptor:
    """A resource the stack is expected to own."""

    kind: ResourceKind
    key: str
    logical_id: str | None = None
    retain_on_destroy: bool = False

    @property
    def identifier(self) -> ResourceId:
        return ResourceId(self.kind, self.key)


@dataclass(frozen=True)
class StackSpec:
    """Declarative description of a named resource bundle."""

    name: str
    parameters: Mapping[str, str] = field(default_factory=dict)
    resources: tuple[ResourceDescriptor, ...] = ()
    template_body: str = ""
    discovery: Mapping[ResourceKind, str] = field(default_factory=dict)
    capabilities: tuple[str, ...] = ("CAPABILITY_NAMED_IAM",)
    tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise ValueError("StackSpec.name must not be empty")
        # Mappings are frozen once built.
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))
        object.__setattr__(self, "discovery", MappingProxyType(dict(self.discovery)))
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))
        object.__setattr__(self, "resources", tuple(self.resources))

    @property
    def identifiers(self) -> set[ResourceId]:
        return {r.identifier for r in self.resources}

    @property
    def retained_logical_ids(self) -> frozenset[str]:
        return frozenset(r.logical_id for r in self.resources if r.retain_on_destroy and r.logical_id)

    @property
    def retained_identifiers(self) -> frozenset[ResourceId]:
        return frozenset(r.identifier for r in self.resources if r.retain_on_destroy)


@dataclass(frozen=True)
class StackResource:
    """A resource tracked by the stack record."""

    logical_id: str
    physical_id: str
    resource_type: str
    status: str
    reason: str | None = None

    @property
    def identifier(self) -> ResourceId | None:
        """The probe identity for this resource, or None when its type cannot be probed."""
        kind = RESOURCE_TYPE_KINDS.get(self.resource_type)
        if kind is None or not self.physical_id:
            return None
        return ResourceId(kind, self.physical_id)


@dataclass(frozen=True)
class StackState:
    """Provider-side state of a stack as last observed."""

    name: str
    status: StackStatus
    resources: Mapping[str, StackResource] = field(default_factory=dict)
    outputs: Mapping[str, str] = field(default_factory=dict)
    stack_id: str | None = None
    creation_time: datetime | None = None
    last_updated_time: datetime | None = None
    status_reason: str | None = None

    @classmethod
    def absent(cls, name: str) -> "StackState":
        return cls(name=name, status=StackStatus.ABSENT)

    @property
    def exists(self) -> bool:
        return self.status not in (StackStatus.ABSENT, StackStatus.DELETE_COMPLETE)


@dataclass(frozen=True)
class ResourceEvent:
    """One entry of a stack's resource event log."""

    logical_id: str
    resource_type: str
    status: str
    reason: str
    timestamp: datetime | None = None


@dataclass(frozen=True)
class OperationHandle:
    """Tracks an in-flight stack operation for polling."""

    name: str
    operation: Operation
    started_at: datetime
    stack_id: str | None = None


@dataclass(frozen=True)
class ApplyResult:
    """Result of driving a stack to its declared state."""

    state: StackState
    outcome: ApplyOutcome
    recovered: bool = False
    published: int = 0


@dataclass(frozen=True)
class DestroyResult:
    """Result of tearing a stack down."""

    name: str
    stack_found: bool
    final_status: StackStatus
    retained: frozenset[str] = frozenset()
    parameters_deleted: int = 0


@dataclass(frozen=True)
class ReconciliationReport:
    """Declared vs observed resources for one stack. Computed, never persisted."""

    stack_name: str
    stack_status: StackStatus
    declared: frozenset[ResourceId]
    observed: frozenset[ResourceId]
    managed: frozenset[ResourceId]
    orphaned: frozenset[ResourceId]
    missing: frozenset[ResourceId]
    retained: frozenset[ResourceId] = frozenset()

    @property
    def provisional(self) -> bool:
        """Findings taken while an operation is in flight may be transient."""
        return not self.stack_status.is_terminal

    @property
    def has_drift(self) -> bool:
        return bool(self.orphaned or self.missing)


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a single prerequisite check."""

    name: str
    passed: bool
    message: str


@dataclass(frozen=True)
class PrerequisiteReport:
    """Aggregated prerequisite check results."""

    checks: tuple[CheckResult, ...]

    @property
    def passed(self) -> list[CheckResult]:
        return [c for c in self.checks if c.passed]

    @property
    def failed(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.passed]

    @property
    def ok(self) -> bool:
        return not self.failed

    def require(self) -> None:
        """Raise PrerequisiteError if any check failed."""
        if self.failed:
            raise PrerequisiteError([f"{c.name}: {c.message}" for c in self.failed])
