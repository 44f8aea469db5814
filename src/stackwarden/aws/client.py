"""Thin boto3 wrapper for CloudFormation stack lifecycle calls."""

import logging
import re
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime

import boto3
from botocore.exceptions import ClientError

from stackwarden.aws.session import error_code, error_message, translate_errors
from stackwarden.errors import StackBusy
from stackwarden.models import (
    Operation,
    OperationHandle,
    ResourceEvent,
    StackResource,
    StackState,
    StackStatus,
)

logger = logging.getLogger(__name__)

NO_UPDATES_MESSAGE = "No updates are to be performed"
IN_PROGRESS_PATTERN = re.compile(r"is in (\w+) state")


def _is_not_found(exc: ClientError) -> bool:
    return error_code(exc) == "ValidationError" and "does not exist" in error_message(exc)


class CloudFormationClient:
    """Wraps boto3 CloudFormation calls and returns stackwarden dataclasses."""

    def __init__(self, region: str | None = None, session: boto3.Session | None = None):
        factory = session or boto3
        self._client = factory.client("cloudformation", **({"region_name": region} if region else {}))

    def describe(self, name: str) -> StackState | None:
        """Describe a stack. Returns None when it does not exist."""
        try:
            with translate_errors():
                resp = self._client.describe_stacks(StackName=name)
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise

        if not resp["Stacks"]:
            return None
        stack = resp["Stacks"][0]
        status = StackStatus(stack["StackStatus"])
        if status == StackStatus.DELETE_COMPLETE:
            return None

        resources = {}
        if status.is_terminal:
            resources = {r.logical_id: r for r in self.list_stack_resources(name)}

        return StackState(
            name=stack["StackName"],
            status=status,
            resources=resources,
            outputs={o["OutputKey"]: o["OutputValue"] for o in stack.get("Outputs", [])},
            stack_id=stack.get("StackId"),
            creation_time=stack.get("CreationTime"),
            last_updated_time=stack.get("LastUpdatedTime"),
            status_reason=stack.get("StackStatusReason"),
        )

    def create(
        self,
        name: str,
        parameters: Mapping[str, str],
        template_body: str = "",
        capabilities: Iterable[str] = (),
        tags: Mapping[str, str] | None = None,
    ) -> OperationHandle:
        """Start stack creation."""
        kwargs = self._stack_kwargs(name, parameters, template_body, capabilities, tags)
        try:
            with translate_errors():
                resp = self._client.create_stack(**kwargs)
        except ClientError as e:
            if error_code(e) == "AlreadyExistsException":
                raise StackBusy(name, "ALREADY_EXISTS") from e
            self._raise_if_busy(name, e)
            raise

        logger.info("Creating stack %s", name)
        return OperationHandle(
            name=name,
            operation=Operation.CREATE,
            started_at=datetime.now(UTC),
            stack_id=resp.get("StackId"),
        )

    def update(
        self,
        name: str,
        parameters: Mapping[str, str],
        template_body: str = "",
        capabilities: Iterable[str] = (),
        tags: Mapping[str, str] | None = None,
    ) -> OperationHandle | None:
        """Start a stack update. Returns None when CloudFormation reports nothing to change."""
        kwargs = self._stack_kwargs(name, parameters, template_body, capabilities, tags)
        try:
            with translate_errors():
                resp = self._client.update_stack(**kwargs)
        except ClientError as e:
            if error_code(e) == "ValidationError" and NO_UPDATES_MESSAGE in error_message(e):
                return None
            self._raise_if_busy(name, e)
            raise

        logger.info("Updating stack %s", name)
        return OperationHandle(
            name=name,
            operation=Operation.UPDATE,
            started_at=datetime.now(UTC),
            stack_id=resp.get("StackId"),
        )

    def delete(self, name: str, retain: Iterable[str] = ()) -> OperationHandle:
        """Start stack deletion.

        CloudFormation only accepts RetainResources for a stack in
        DELETE_FAILED; otherwise the template's DeletionPolicy decides what is
        kept.
        """
        retain = sorted(retain)
        kwargs = {"StackName": name}
        if retain:
            current = self.describe(name)
            if current is not None and current.status == StackStatus.DELETE_FAILED:
                kwargs["RetainResources"] = retain
            else:
                logger.info(
                    "Resources %s are retained by their DeletionPolicy",
                    ", ".join(retain),
                )

        try:
            with translate_errors():
                self._client.delete_stack(**kwargs)
        except ClientError as e:
            self._raise_if_busy(name, e)
            raise

        logger.info("Deleting stack %s", name)
        return OperationHandle(
            name=name,
            operation=Operation.DELETE,
            started_at=datetime.now(UTC),
        )

    def list_resource_events(self, name: str) -> list[ResourceEvent]:
        """Fetch the stack's resource events, newest first."""
        events = []
        paginator = self._client.get_paginator("describe_stack_events")
        try:
            with translate_errors():
                for page in paginator.paginate(StackName=name):
                    for event in page["StackEvents"]:
                        events.append(
                            ResourceEvent(
                                logical_id=event["LogicalResourceId"],
                                resource_type=event.get("ResourceType", ""),
                                status=event.get("ResourceStatus", ""),
                                reason=event.get("ResourceStatusReason", "No reason provided"),
                                timestamp=event.get("Timestamp"),
                            )
                        )
        except ClientError as e:
            if _is_not_found(e):
                return []
            raise
        return events

    def list_stack_resources(self, name: str) -> list[StackResource]:
        """Fetch the resources tracked by the stack record."""
        results = []
        paginator = self._client.get_paginator("list_stack_resources")
        try:
            with translate_errors():
                for page in paginator.paginate(StackName=name):
                    for summary in page["StackResourceSummaries"]:
                        results.append(
                            StackResource(
                                logical_id=summary["LogicalResourceId"],
                                physical_id=summary.get("PhysicalResourceId", ""),
                                resource_type=summary["ResourceType"],
                                status=summary["ResourceStatus"],
                                reason=summary.get("ResourceStatusReason"),
                            )
                        )
        except ClientError as e:
            if _is_not_found(e):
                return []
            raise
        return results

    def validate_template(self, template_body: str) -> list[str]:
        """Validate a template, returning the parameter keys it declares."""
        with translate_errors():
            resp = self._client.validate_template(TemplateBody=template_body)
        return [p["ParameterKey"] for p in resp.get("Parameters", [])]

    @staticmethod
    def _stack_kwargs(name, parameters, template_body, capabilities, tags) -> dict:
        kwargs: dict = {
            "StackName": name,
            "TemplateBody": template_body,
            "Parameters": [
                {"ParameterKey": key, "ParameterValue": value} for key, value in parameters.items()
            ],
        }
        if capabilities:
            kwargs["Capabilities"] = list(capabilities)
        if tags:
            kwargs["Tags"] = [{"Key": k, "Value": v} for k, v in tags.items()]
        return kwargs

    @staticmethod
    def _raise_if_busy(name: str, exc: ClientError) -> None:
        if error_code(exc) != "ValidationError":
            return
        match = IN_PROGRESS_PATTERN.search(error_message(exc))
        if match and match.group(1).endswith("_IN_PROGRESS"):
            raise StackBusy(name, match.group(1)) from exc
