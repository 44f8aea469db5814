"""The CloudTrail governance foundation: names, parameters, and stack spec."""

from pathlib import Path

from stackwarden.config import Settings
from stackwarden.errors import ConfigurationError
from stackwarden.metadata import DeploymentMetadata
from stackwarden.models import ResourceDescriptor, ResourceKind, StackSpec

TRAIL_NAME = "governance-cloudtrail-trail"
LOG_GROUP_NAME = "governance-cloudtrail-logs"
BUCKET_PREFIX = "governance-cloudtrail-"
ROLE_PREFIX = "governance-cloudtrail-cw-logs-"
BUCKET_LOGICAL_ID = "CloudTrailBucket"


def bucket_name(account_id: str) -> str:
    return f"{BUCKET_PREFIX}{account_id}"


def _flag(value: bool) -> str:
    return "true" if value else "false"


def build_parameters(settings: Settings, metadata: DeploymentMetadata) -> dict[str, str]:
    """CloudFormation parameters for the foundation template."""
    return {
        "AccountId": metadata.account_id,
        "AccountAlias": metadata.account_alias,
        "CostCenter": settings.cost_center,
        "Environment": settings.environment,
        "Owner": settings.owner,
        "Project": metadata.project_name,
        "Repository": metadata.repository_url,
        "Region": settings.region or "",
        "ManagedBy": "CloudFormation",
        "DeploymentRole": metadata.deployment_role,
        "IsMultiRegion": _flag(settings.is_multi_region),
        "IncludeManagementEvents": _flag(settings.include_management_events),
        "IncludeDataEvents": _flag(settings.include_data_events),
        "EventSelectors": settings.event_selectors,
        "EnableCloudWatchLogs": _flag(settings.enable_cloudwatch_logs),
        "RetentionDays": str(settings.log_retention_days),
        "IntelligentTieringDays": str(settings.intelligent_tiering_days),
        "GlacierTransitionDays": str(settings.glacier_transition_days),
        "ExpirationDays": str(settings.expiration_days),
    }


def declared_resources(settings: Settings, account_id: str) -> tuple[ResourceDescriptor, ...]:
    """Resources the foundation stack is expected to own."""
    resources = [
        ResourceDescriptor(
            ResourceKind.S3_BUCKET,
            bucket_name(account_id),
            logical_id=BUCKET_LOGICAL_ID,
            retain_on_destroy=True,
        ),
        ResourceDescriptor(ResourceKind.CLOUDTRAIL_TRAIL, TRAIL_NAME, logical_id="CloudTrail"),
    ]
    if settings.enable_cloudwatch_logs:
        resources.append(
            ResourceDescriptor(ResourceKind.LOG_GROUP, LOG_GROUP_NAME, logical_id="CloudTrailLogGroup")
        )
    return tuple(resources)


def read_template(path: Path) -> str:
    try:
        return Path(path).read_text()
    except FileNotFoundError:
        raise ConfigurationError(f"CloudFormation template not found at {path}") from None


def foundation_spec(
    settings: Settings,
    account_id: str,
    metadata: DeploymentMetadata | None = None,
    template_body: str = "",
) -> StackSpec:
    """Build the StackSpec for the foundation.

    Without ``metadata`` the spec carries no parameters; that form is enough
    for inventory and drift reconciliation.
    """
    parameters = build_parameters(settings, metadata) if metadata else {}
    tags = {}
    if metadata:
        tags = {
            "Environment": settings.environment,
            "Owner": settings.owner,
            "CostCenter": settings.cost_center,
            "Project": metadata.project_name,
            "ManagedBy": "CloudFormation",
        }
    return StackSpec(
        name=settings.stack_name,
        parameters=parameters,
        resources=declared_resources(settings, account_id),
        template_body=template_body,
        discovery={
            ResourceKind.S3_BUCKET: BUCKET_PREFIX,
            ResourceKind.CLOUDTRAIL_TRAIL: settings.stack_name,
            ResourceKind.LOG_GROUP: settings.stack_name,
            ResourceKind.IAM_ROLE: ROLE_PREFIX,
        },
        tags={k: v for k, v in tags.items() if v},
    )
