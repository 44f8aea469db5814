"""SSM Parameter Store publication of stack outputs."""

import logging
from collections.abc import Mapping

import boto3

from stackwarden.aws.session import translate_errors

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 10


def _join(path_prefix: str, key: str) -> str:
    return f"{path_prefix.rstrip('/')}/{key.lstrip('/')}"


class ParameterStore:
    """Publishes key/value mappings as String parameters under a path prefix."""

    def __init__(self, region: str | None = None, session: boto3.Session | None = None):
        factory = session or boto3
        self._client = factory.client("ssm", **({"region_name": region} if region else {}))

    def publish(self, path_prefix: str, values: Mapping[str, str]) -> int:
        """Write every value under ``path_prefix``, overwriting existing ones."""
        with translate_errors():
            for key, value in values.items():
                self._client.put_parameter(
                    Name=_join(path_prefix, key),
                    Value=str(value),
                    Type="String",
                    Overwrite=True,
                )
        return len(values)

    def list_under(self, path_prefix: str) -> dict[str, str]:
        """Return every parameter below ``path_prefix`` keyed by full name."""
        found = {}
        paginator = self._client.get_paginator("get_parameters_by_path")
        with translate_errors():
            for page in paginator.paginate(Path=path_prefix.rstrip("/") or "/", Recursive=True):
                for parameter in page["Parameters"]:
                    found[parameter["Name"]] = parameter["Value"]
        return found

    def delete_under(self, path_prefix: str) -> int:
        """Delete every parameter below ``path_prefix``. Returns how many were deleted."""
        names = sorted(self.list_under(path_prefix))
        deleted = 0
        with translate_errors():
            for start in range(0, len(names), DELETE_BATCH_SIZE):
                batch = names[start : start + DELETE_BATCH_SIZE]
                resp = self._client.delete_parameters(Names=batch)
                deleted += len(resp.get("DeletedParameters", []))
                for name in resp.get("InvalidParameters", []):
                    logger.warning("Failed to delete parameter %s", name)
        return deleted
