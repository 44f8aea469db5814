"""Shared test fixtures."""

from datetime import UTC, datetime

import boto3
import pytest
from moto import mock_aws

from stackwarden.models import (
    Operation,
    OperationHandle,
    StackState,
    StackStatus,
)
from stackwarden.poller import Poller

STACK_NAME = "governance-cloudtrail"
ACCOUNT_ID = "123456789012"


@pytest.fixture
def aws_credentials(monkeypatch):
    """Set dummy AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def cfn_client(aws_credentials):
    """Create a moto-mocked CloudFormation boto3 client."""
    with mock_aws():
        yield boto3.client("cloudformation", region_name="us-east-1")


class FakeProvider:
    """In-memory stack provider.

    Every mutating call loads a script of statuses; each describe() advances
    the script by one tick. ``journal`` records calls in order and may be
    shared with a FakeSink.
    """

    def __init__(self, status=StackStatus.ABSENT, outputs=None, journal=None, name=STACK_NAME):
        self.name = name
        self.status = status
        self.outputs = dict(outputs or {})
        self.journal = journal if journal is not None else []
        self.pending: list[StackStatus] = []
        self.events = []
        self.resources = {}
        self.no_changes = False
        self.create_ticks = [StackStatus.CREATE_IN_PROGRESS, StackStatus.CREATE_COMPLETE]
        self.update_ticks = [StackStatus.UPDATE_IN_PROGRESS, StackStatus.UPDATE_COMPLETE]
        self.delete_ticks = [StackStatus.DELETE_IN_PROGRESS, StackStatus.ABSENT]
        self.created_with = None
        self.retained = None

    @property
    def mutations(self):
        return [entry for entry in self.journal if entry in ("create", "update", "delete")]

    def describe(self, name):
        if self.pending:
            self.status = self.pending.pop(0)
        self.journal.append(f"describe:{self.status.value}")
        if self.status == StackStatus.ABSENT:
            return None
        return StackState(
            name=name,
            status=self.status,
            resources=self.resources if self.status.is_terminal else {},
            outputs=self.outputs if self.status.is_complete else {},
            stack_id=f"arn:aws:cloudformation:us-east-1:{ACCOUNT_ID}:stack/{name}/uuid",
        )

    def create(self, name, parameters, **kwargs):
        self.journal.append("create")
        self.created_with = (name, dict(parameters), kwargs)
        self.pending = list(self.create_ticks)
        return OperationHandle(name, Operation.CREATE, datetime.now(UTC))

    def update(self, name, parameters, **kwargs):
        self.journal.append("update")
        if self.no_changes:
            return None
        self.pending = list(self.update_ticks)
        return OperationHandle(name, Operation.UPDATE, datetime.now(UTC))

    def delete(self, name, retain=()):
        self.journal.append("delete")
        self.retained = frozenset(retain)
        self.pending = list(self.delete_ticks)
        return OperationHandle(name, Operation.DELETE, datetime.now(UTC))

    def list_resource_events(self, name):
        return list(self.events)

    def list_stack_resources(self, name):
        return list(self.resources.values())


class FakeSink:
    """In-memory publication sink sharing a call journal with FakeProvider."""

    def __init__(self, journal=None, values=None):
        self.journal = journal if journal is not None else []
        self.values = dict(values or {})

    def publish(self, path_prefix, values):
        self.journal.append("publish")
        for key, value in values.items():
            self.values[f"{path_prefix.rstrip('/')}/{key}"] = value
        return len(values)

    def list_under(self, path_prefix):
        return {k: v for k, v in self.values.items() if k.startswith(path_prefix)}

    def delete_under(self, path_prefix):
        self.journal.append("delete_under")
        doomed = self.list_under(path_prefix)
        for key in doomed:
            del self.values[key]
        return len(doomed)


class FakeProbe:
    """Resource probe backed by a set of live ResourceIds."""

    def __init__(self, live=(), attributes=None):
        self.live = set(live)
        self.exists_calls = []
        self._attributes = attributes or {}

    def exists(self, resource_id):
        self.exists_calls.append(resource_id)
        return resource_id in self.live

    def discover(self, kind, prefix):
        return {r for r in self.live if r.kind == kind and r.key.startswith(prefix)}

    def attributes(self, resource_id):
        return dict(self._attributes.get(resource_id, {}))


@pytest.fixture
def journal():
    return []


@pytest.fixture
def provider(journal):
    return FakeProvider(journal=journal)


@pytest.fixture
def sink(journal):
    return FakeSink(journal=journal)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def poller(sleeps):
    """A poller that records its delays instead of waiting."""
    return Poller(sleep=sleeps.append)


SIMPLE_TEMPLATE = """{
    "AWSTemplateFormatVersion": "2010-09-09",
    "Resources": {
        "AuditBucket": {
            "Type": "AWS::S3::Bucket",
            "Properties": {
                "BucketName": "governance-cloudtrail-123456789012"
            }
        }
    },
    "Outputs": {
        "BucketName": {
            "Value": {"Ref": "AuditBucket"}
        }
    }
}"""

QUEUE_TEMPLATE = """{
    "AWSTemplateFormatVersion": "2010-09-09",
    "Resources": {
        "MyQueue": {
            "Type": "AWS::SQS::Queue",
            "Properties": {
                "QueueName": "my-test-queue"
            }
        }
    }
}"""
