"""Direct existence probes and attribute reads for individual resources."""

import logging

import boto3
from botocore.exceptions import ClientError

from stackwarden.aws.session import error_code, translate_errors
from stackwarden.models import ResourceId, ResourceKind

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {
    "404",
    "NoSuchBucket",
    "NotFound",
    "TrailNotFoundException",
    "ResourceNotFoundException",
    "NoSuchEntity",
    "ParameterNotFound",
}


class ResourceInspector:
    """Queries S3, CloudTrail, CloudWatch Logs, IAM and SSM directly.

    Nothing here consults CloudFormation: a resource exists if and only if its
    own service says so.
    """

    def __init__(self, region: str | None = None, session: boto3.Session | None = None):
        factory = session or boto3
        kwargs = {"region_name": region} if region else {}
        self._s3 = factory.client("s3", **kwargs)
        self._cloudtrail = factory.client("cloudtrail", **kwargs)
        self._logs = factory.client("logs", **kwargs)
        self._iam = factory.client("iam", **kwargs)
        self._ssm = factory.client("ssm", **kwargs)

    def exists(self, resource_id: ResourceId) -> bool:
        """Check whether a resource exists, independent of any stack record."""
        probes = {
            ResourceKind.S3_BUCKET: lambda key: self._s3.head_bucket(Bucket=key),
            ResourceKind.CLOUDTRAIL_TRAIL: lambda key: self._cloudtrail.get_trail_status(Name=key),
            ResourceKind.LOG_GROUP: self._log_group,
            ResourceKind.IAM_ROLE: lambda key: self._iam.get_role(RoleName=key),
            ResourceKind.SSM_PARAMETER: lambda key: self._ssm.get_parameter(Name=key),
        }
        try:
            with translate_errors():
                return probes[resource_id.kind](resource_id.key) is not None
        except ClientError as e:
            if error_code(e) in NOT_FOUND_CODES:
                return False
            raise

    def discover(self, kind: str, prefix: str) -> set[ResourceId]:
        """List live resources of ``kind`` whose name starts with ``prefix``."""
        kind = ResourceKind(kind)
        with translate_errors():
            if kind == ResourceKind.S3_BUCKET:
                names = [b["Name"] for b in self._s3.list_buckets().get("Buckets", [])]
            elif kind == ResourceKind.CLOUDTRAIL_TRAIL:
                trails = self._cloudtrail.describe_trails(includeShadowTrails=False)
                names = [t["Name"] for t in trails.get("trailList", [])]
            elif kind == ResourceKind.LOG_GROUP:
                names = []
                paginator = self._logs.get_paginator("describe_log_groups")
                for page in paginator.paginate(logGroupNamePrefix=prefix):
                    names.extend(g["logGroupName"] for g in page["logGroups"])
            elif kind == ResourceKind.IAM_ROLE:
                names = []
                for page in self._iam.get_paginator("list_roles").paginate():
                    names.extend(r["RoleName"] for r in page["Roles"])
            else:
                names = []
                paginator = self._ssm.get_paginator("get_parameters_by_path")
                for page in paginator.paginate(Path=prefix.rstrip("/") or "/", Recursive=True):
                    names.extend(p["Name"] for p in page["Parameters"])

        return {ResourceId(kind, name) for name in names if name.startswith(prefix)}

    def attributes(self, resource_id: ResourceId) -> dict[str, str]:
        """Read display-only attributes of an existing resource."""
        readers = {
            ResourceKind.S3_BUCKET: self._bucket_attributes,
            ResourceKind.CLOUDTRAIL_TRAIL: self._trail_attributes,
            ResourceKind.LOG_GROUP: self._log_group_attributes,
            ResourceKind.IAM_ROLE: self._role_attributes,
            ResourceKind.SSM_PARAMETER: self._parameter_attributes,
        }
        with translate_errors():
            return readers[resource_id.kind](resource_id.key)

    def purge_bucket(self, name: str) -> int:
        """Delete every object version and delete marker in a bucket, then the bucket.

        Returns the number of versions removed.
        """
        removed = 0
        paginator = self._s3.get_paginator("list_object_versions")
        with translate_errors():
            for page in paginator.paginate(Bucket=name):
                batch = [
                    {"Key": v["Key"], "VersionId": v["VersionId"]}
                    for v in page.get("Versions", []) + page.get("DeleteMarkers", [])
                ]
                # delete_objects accepts at most 1000 keys, the same as a page.
                if batch:
                    self._s3.delete_objects(Bucket=name, Delete={"Objects": batch, "Quiet": True})
                    removed += len(batch)
                    logger.info("Deleted %d object version(s) from %s", removed, name)
            self._s3.delete_bucket(Bucket=name)
        logger.info("Deleted bucket %s", name)
        return removed

    def _log_group(self, key: str):
        groups = self._logs.describe_log_groups(logGroupNamePrefix=key).get("logGroups", [])
        return next((g for g in groups if g["logGroupName"] == key), None)

    def _bucket_attributes(self, name: str) -> dict[str, str]:
        versioning = self._s3.get_bucket_versioning(Bucket=name).get("Status", "Disabled")
        try:
            rules = self._s3.get_bucket_encryption(Bucket=name)[
                "ServerSideEncryptionConfiguration"
            ]["Rules"]
            encryption = rules[0]["ApplyServerSideEncryptionByDefault"]["SSEAlgorithm"]
        except ClientError:
            encryption = "Not configured"
        try:
            lifecycle = len(self._s3.get_bucket_lifecycle_configuration(Bucket=name)["Rules"])
        except ClientError:
            lifecycle = 0
        return {
            "Versioning": versioning,
            "Encryption": encryption,
            "Lifecycle Rules": str(lifecycle),
        }

    def _trail_attributes(self, name: str) -> dict[str, str]:
        status = self._cloudtrail.get_trail_status(Name=name)
        delivery = status.get("LatestDeliveryTime")
        return {
            "Is Logging": str(status.get("IsLogging", False)),
            "Latest Delivery": delivery.isoformat() if delivery else "Not available",
        }

    def _log_group_attributes(self, name: str) -> dict[str, str]:
        group = self._log_group(name) or {}
        retention = group.get("retentionInDays")
        return {
            "Retention": f"{retention} days" if retention else "Never expires",
            "Stored Bytes": str(group.get("storedBytes", 0)),
        }

    def _role_attributes(self, name: str) -> dict[str, str]:
        role = self._iam.get_role(RoleName=name)["Role"]
        return {"Arn": role["Arn"]}

    def _parameter_attributes(self, name: str) -> dict[str, str]:
        parameter = self._ssm.get_parameter(Name=name)["Parameter"]
        return {"Value": parameter["Value"]}
