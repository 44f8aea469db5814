"""Tests for the CLI entrypoint."""

import json
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from stackwarden.cli import main
from stackwarden.errors import PollCancelled, PollTimeout, ProviderUnavailable, StackBusy
from stackwarden.metadata import DeploymentMetadata
from stackwarden.models import (
    CheckResult,
    PrerequisiteReport,
    ResourceEvent,
    ResourceId,
    ResourceKind,
    StackStatus,
)
from tests.conftest import ACCOUNT_ID, FakeProbe, FakeProvider, FakeSink

BUCKET = ResourceId(ResourceKind.S3_BUCKET, f"governance-cloudtrail-{ACCOUNT_ID}")
TRAIL = ResourceId(ResourceKind.CLOUDTRAIL_TRAIL, "governance-cloudtrail-trail")
LOG_GROUP = ResourceId(ResourceKind.LOG_GROUP, "governance-cloudtrail-logs")

METADATA = DeploymentMetadata(
    account_id=ACCOUNT_ID,
    account_alias="acme-audit",
    deployment_role=f"arn:aws:iam::{ACCOUNT_ID}:role/deployer",
    repository_url="git@github.com:acme/aws-audit-foundation.git",
    project_name="aws-audit-foundation",
    git_commit="0123456789abcdef",
)

PASSED = PrerequisiteReport(checks=(CheckResult("aws_credentials", True, "AWS credentials valid"),))
FAILED = PrerequisiteReport(
    checks=(CheckResult("aws_credentials", False, "AWS credentials not configured or invalid"),)
)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def env_file(tmp_path):
    template = tmp_path / "bootstrap.yaml"
    template.write_text("Resources: {}\n")
    path = tmp_path / ".env"
    path.write_text(
        "\n".join(
            [
                "AWS_REGION=us-east-1",
                "TAG_ENVIRONMENT=prod",
                "TAG_OWNER=platform-team",
                "TAG_COST_CENTER=CC-1234",
                "AUTO_DELETE_FAILED_STACK=false",
                "CLOUDTRAIL_IS_MULTI_REGION=true",
                "CLOUDTRAIL_INCLUDE_MANAGEMENT_EVENTS=true",
                "CLOUDTRAIL_INCLUDE_DATA_EVENTS=false",
                "CLOUDTRAIL_EVENT_SELECTORS=none",
                "ENABLE_CLOUDWATCH_LOGS=true",
                "CLOUDWATCH_LOGS_RETENTION_DAYS=90",
                "S3_INTELLIGENT_TIERING_DAYS=30",
                "S3_GLACIER_TRANSITION_DAYS=90",
                "S3_EXPIRATION_DAYS=2555",
                f"TEMPLATE_PATH={template}",
            ]
        )
    )
    return str(path)


@pytest.fixture
def session():
    session = MagicMock()
    session.client.return_value.get_caller_identity.return_value = {
        "Account": ACCOUNT_ID,
        "Arn": f"arn:aws:iam::{ACCOUNT_ID}:role/deployer",
    }
    return session


def _provider(status=StackStatus.ABSENT, **kwargs):
    provider = FakeProvider(status=status, **kwargs)
    # No in-progress ticks, so the real poller never sleeps.
    provider.create_ticks = [StackStatus.CREATE_COMPLETE]
    provider.update_ticks = [StackStatus.UPDATE_COMPLETE]
    provider.delete_ticks = [StackStatus.ABSENT]
    return provider


@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.collect_metadata", return_value=METADATA)
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_apply_creates_stack(
    mock_session, mock_checks, mock_metadata, mock_client_cls, mock_store_cls, runner, env_file, session
):
    mock_session.return_value = session
    provider = _provider(outputs={"BucketName": BUCKET.key})
    sink = FakeSink()
    mock_client_cls.return_value = provider
    mock_store_cls.return_value = sink

    result = runner.invoke(main, ["--env-file", env_file, "apply"])

    assert result.exit_code == 0, result.output
    assert "Deployment Summary" in result.output
    assert "Outcome: CREATED" in result.output
    name, parameters, kwargs = provider.created_with
    assert name == "governance-cloudtrail"
    assert parameters["AccountId"] == ACCOUNT_ID
    assert kwargs["template_body"] == "Resources: {}\n"
    assert sink.values == {"/governance/cloudtrail/BucketName": BUCKET.key}


@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.collect_metadata", return_value=METADATA)
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_apply_failed_stack_prints_remediation(
    mock_session, mock_checks, mock_metadata, mock_client_cls, mock_store_cls, runner, env_file, session
):
    mock_session.return_value = session
    provider = _provider(status=StackStatus.ROLLBACK_COMPLETE)
    mock_client_cls.return_value = provider
    mock_store_cls.return_value = FakeSink()

    result = runner.invoke(main, ["--env-file", env_file, "apply"])

    assert result.exit_code == 1
    assert "ROLLBACK_COMPLETE" in result.output
    assert "To resolve this issue:" in result.output
    assert provider.mutations == []


@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.collect_metadata", return_value=METADATA)
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_apply_auto_recover_flag(
    mock_session, mock_checks, mock_metadata, mock_client_cls, mock_store_cls, runner, env_file, session
):
    mock_session.return_value = session
    provider = _provider(status=StackStatus.ROLLBACK_COMPLETE)
    mock_client_cls.return_value = provider
    mock_store_cls.return_value = FakeSink()

    result = runner.invoke(main, ["--env-file", env_file, "apply", "--auto-recover"])

    assert result.exit_code == 0, result.output
    assert provider.mutations == ["delete", "create"]
    assert "re-created" in result.output


@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.run_checks", return_value=FAILED)
@patch("stackwarden.cli.build_session")
def test_apply_stops_on_failed_prerequisites(mock_session, mock_checks, mock_client_cls, runner, env_file):
    result = runner.invoke(main, ["--env-file", env_file, "apply"])

    assert result.exit_code == 2
    assert "aws_credentials" in result.output
    mock_client_cls.return_value.create.assert_not_called()


def test_apply_without_env_file_exits_2(runner, tmp_path):
    result = runner.invoke(main, ["--env-file", str(tmp_path / ".env"), "apply"])

    assert result.exit_code == 2
    assert "not found" in result.output


@patch("stackwarden.cli.LifecycleController")
@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.collect_metadata", return_value=METADATA)
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_apply_cancelled_exits_130(
    mock_session, mock_checks, mock_metadata, mock_client_cls, mock_store_cls, mock_controller_cls, runner, env_file
):
    mock_controller_cls.return_value.apply.side_effect = PollCancelled("governance-cloudtrail")

    result = runner.invoke(main, ["--env-file", env_file, "apply"])

    assert result.exit_code == 130
    assert "still running" in result.output


@patch("stackwarden.cli.ResourceInspector")
@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_destroy_retains_bucket(
    mock_session, mock_checks, mock_client_cls, mock_store_cls, mock_inspector_cls, runner, env_file, session
):
    mock_session.return_value = session
    provider = _provider(status=StackStatus.CREATE_COMPLETE)
    mock_client_cls.return_value = provider
    mock_store_cls.return_value = FakeSink(values={"/governance/cloudtrail/BucketName": BUCKET.key})
    mock_inspector_cls.return_value = FakeProbe(live={BUCKET})

    result = runner.invoke(main, ["--env-file", env_file, "destroy"], input="DESTROY\n1\n")

    assert result.exit_code == 0, result.output
    assert provider.retained == frozenset({"CloudTrailBucket"})
    assert "Destruction Summary" in result.output
    assert "Parameters Deleted: 1" in result.output
    assert f"Retained as expected: s3_bucket:{BUCKET.key}" in result.output
    assert "No orphaned resources remain" in result.output
    assert "No parameters remain under /governance/cloudtrail/" in result.output
    mock_checks.assert_called_once_with(session, template_path=None, include_git=False)


@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.build_session")
def test_destroy_requires_exact_token(mock_session, mock_client_cls, runner, env_file):
    result = runner.invoke(main, ["--env-file", env_file, "destroy"], input="destroy\n")

    assert result.exit_code == 0
    assert "Destruction cancelled" in result.output
    mock_client_cls.assert_not_called()


@patch("stackwarden.cli.ResourceInspector")
@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_destroy_and_delete_bucket(
    mock_session, mock_checks, mock_client_cls, mock_store_cls, mock_inspector_cls, runner, env_file, session
):
    mock_session.return_value = session
    provider = _provider(status=StackStatus.CREATE_COMPLETE)
    mock_client_cls.return_value = provider
    mock_store_cls.return_value = FakeSink()
    inspector = MagicMock()
    inspector.discover.return_value = set()
    inspector.exists.side_effect = [True, False, False, False]
    inspector.purge_bucket.return_value = 3
    mock_inspector_cls.return_value = inspector

    result = runner.invoke(
        main, ["--env-file", env_file, "destroy"], input="DESTROY\n2\nDELETE BUCKET\n"
    )

    assert result.exit_code == 0, result.output
    assert provider.retained == frozenset()
    inspector.purge_bucket.assert_called_once_with(BUCKET.key)
    assert f"Deleted bucket {BUCKET.key} (3 object version(s))" in result.output


@patch("stackwarden.cli.ResourceInspector")
@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_destroy_bucket_choice_without_token_keeps_bucket(
    mock_session, mock_checks, mock_client_cls, mock_store_cls, mock_inspector_cls, runner, env_file, session
):
    mock_session.return_value = session
    provider = _provider(status=StackStatus.CREATE_COMPLETE)
    mock_client_cls.return_value = provider
    mock_store_cls.return_value = FakeSink()
    mock_inspector_cls.return_value = FakeProbe(live={BUCKET})

    result = runner.invoke(main, ["--env-file", env_file, "destroy"], input="DESTROY\n2\ndelete bucket\n")

    assert result.exit_code == 0, result.output
    assert "S3 bucket will be retained" in result.output
    assert provider.retained == frozenset({"CloudTrailBucket"})


@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.collect_metadata", return_value=METADATA)
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_apply_busy_stack_exits_1(
    mock_session, mock_checks, mock_metadata, mock_client_cls, mock_store_cls, runner, env_file, session
):
    mock_session.return_value = session
    provider = _provider(status=StackStatus.UPDATE_IN_PROGRESS)
    mock_client_cls.return_value = provider
    mock_store_cls.return_value = FakeSink()

    result = runner.invoke(main, ["--env-file", env_file, "apply"])

    assert result.exit_code == 1
    assert "is busy (UPDATE_IN_PROGRESS)" in result.output
    assert provider.mutations == []


@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.collect_metadata", return_value=METADATA)
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_apply_rejected_concurrent_create_exits_1(
    mock_session, mock_checks, mock_metadata, mock_client_cls, mock_store_cls, runner, env_file, session
):
    mock_session.return_value = session
    provider = _provider()
    provider.create = MagicMock(side_effect=StackBusy("governance-cloudtrail", "CREATE_IN_PROGRESS"))
    mock_client_cls.return_value = provider
    sink = FakeSink()
    mock_store_cls.return_value = sink

    result = runner.invoke(main, ["--env-file", env_file, "apply"])

    assert result.exit_code == 1
    assert "is busy (CREATE_IN_PROGRESS)" in result.output
    assert sink.values == {}


@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.collect_metadata", return_value=METADATA)
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_apply_provider_unavailable_exits_1(
    mock_session, mock_checks, mock_metadata, mock_client_cls, mock_store_cls, runner, env_file, session
):
    mock_session.return_value = session
    provider = _provider()
    provider.describe = MagicMock(side_effect=ProviderUnavailable("Rate exceeded"))
    mock_client_cls.return_value = provider
    mock_store_cls.return_value = FakeSink()

    result = runner.invoke(main, ["--env-file", env_file, "apply"])

    assert result.exit_code == 1
    assert "Error: Rate exceeded" in result.output
    assert provider.mutations == []


@patch("stackwarden.cli.LifecycleController")
@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.collect_metadata", return_value=METADATA)
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_apply_poll_timeout_exits_1(
    mock_session, mock_checks, mock_metadata, mock_client_cls, mock_store_cls, mock_controller_cls, runner, env_file
):
    mock_controller_cls.return_value.apply.side_effect = PollTimeout(
        "governance-cloudtrail", 1800, "CREATE_IN_PROGRESS"
    )

    result = runner.invoke(main, ["--env-file", env_file, "apply"])

    assert result.exit_code == 1
    assert "Gave up waiting on 'governance-cloudtrail' after 1800s" in result.output


@patch("stackwarden.cli.ResourceInspector")
@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_destroy_delete_failure_exits_1(
    mock_session, mock_checks, mock_client_cls, mock_store_cls, mock_inspector_cls, runner, env_file, session
):
    mock_session.return_value = session
    provider = _provider(status=StackStatus.CREATE_COMPLETE)
    provider.delete_ticks = [StackStatus.DELETE_FAILED]
    provider.events = [
        ResourceEvent(
            "CloudTrailLogGroup", "AWS::Logs::LogGroup", "DELETE_FAILED", "Log group is in use"
        ),
    ]
    mock_client_cls.return_value = provider
    sink = FakeSink(values={"/governance/cloudtrail/BucketName": BUCKET.key})
    mock_store_cls.return_value = sink
    mock_inspector_cls.return_value = FakeProbe(live={BUCKET, LOG_GROUP})

    result = runner.invoke(main, ["--env-file", env_file, "destroy"], input="DESTROY\n1\n")

    assert result.exit_code == 1
    assert "Stack delete failed for 'governance-cloudtrail': DELETE_FAILED" in result.output
    assert "Failed resources:" in result.output
    assert "CloudTrailLogGroup (AWS::Logs::LogGroup): Log group is in use" in result.output
    assert sink.values == {"/governance/cloudtrail/BucketName": BUCKET.key}


@patch("stackwarden.cli.ResourceInspector")
@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_destroy_reports_leftover_parameters(
    mock_session, mock_checks, mock_client_cls, mock_store_cls, mock_inspector_cls, runner, env_file, session
):
    mock_session.return_value = session
    mock_client_cls.return_value = _provider(status=StackStatus.CREATE_COMPLETE)
    store = MagicMock()
    store.delete_under.return_value = 0
    store.list_under.return_value = {"/governance/cloudtrail/TrailArn": "arn"}
    mock_store_cls.return_value = store
    mock_inspector_cls.return_value = FakeProbe(live={BUCKET})

    result = runner.invoke(main, ["--env-file", env_file, "destroy"], input="DESTROY\n1\n")

    assert result.exit_code == 0, result.output
    assert "1 parameter(s) still under /governance/cloudtrail/" in result.output
    store.list_under.assert_called_with("/governance/cloudtrail/")


@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.build_session")
def test_inventory_absent_stack(mock_session, mock_client_cls, runner, env_file):
    mock_client_cls.return_value = _provider()

    result = runner.invoke(main, ["--env-file", env_file, "inventory"])

    assert result.exit_code == 0
    assert "not found; nothing to report." in result.output


@patch("stackwarden.cli.ResourceInspector")
@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.build_session")
def test_inventory_json(
    mock_session, mock_client_cls, mock_store_cls, mock_inspector_cls, runner, env_file, session
):
    mock_session.return_value = session
    mock_client_cls.return_value = _provider(
        status=StackStatus.CREATE_COMPLETE, outputs={"BucketName": BUCKET.key}
    )
    mock_store_cls.return_value = FakeSink(values={"/governance/cloudtrail/BucketName": BUCKET.key})
    mock_inspector_cls.return_value = FakeProbe(live={BUCKET, TRAIL, LOG_GROUP})

    result = runner.invoke(main, ["--env-file", env_file, "inventory", "--format", "json"])

    assert result.exit_code == 0, result.output
    output = json.loads(result.output)
    assert output["stack"]["status"] == "CREATE_COMPLETE"
    assert output["stack"]["healthy"] is True
    assert output["reconciliation"]["summary"]["managed"] == 3
    assert output["parameters"] == {"/governance/cloudtrail/BucketName": BUCKET.key}


@patch("stackwarden.cli.ResourceInspector")
@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.build_session")
def test_list_is_an_alias_for_inventory(
    mock_session, mock_client_cls, mock_store_cls, mock_inspector_cls, runner, env_file, session
):
    mock_session.return_value = session
    mock_client_cls.return_value = _provider(status=StackStatus.CREATE_COMPLETE)
    mock_store_cls.return_value = FakeSink()
    mock_inspector_cls.return_value = FakeProbe(live={BUCKET, TRAIL})

    result = runner.invoke(main, ["--env-file", env_file, "list", "--format", "markdown"])

    assert result.exit_code == 0, result.output
    assert "## Resource Inventory" in result.output
    assert "MISSING" in result.output


@patch("stackwarden.cli.post_to_slack")
@patch("stackwarden.cli.ResourceInspector")
@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.build_session")
def test_inventory_post_slack(
    mock_session,
    mock_client_cls,
    mock_store_cls,
    mock_inspector_cls,
    mock_slack,
    runner,
    env_file,
    session,
    monkeypatch,
):
    monkeypatch.setenv("STACKWARDEN_SLACK_WEBHOOK", "https://hooks.slack.com/services/T00/B00/xxx")
    mock_session.return_value = session
    mock_client_cls.return_value = _provider(status=StackStatus.CREATE_COMPLETE)
    mock_store_cls.return_value = FakeSink()
    mock_inspector_cls.return_value = FakeProbe(live={BUCKET, TRAIL, LOG_GROUP})

    result = runner.invoke(main, ["--env-file", env_file, "inventory", "--post-slack"])

    assert result.exit_code == 0, result.output
    mock_slack.assert_called_once()
    assert mock_slack.call_args.kwargs["webhook_url"] == "https://hooks.slack.com/services/T00/B00/xxx"
    assert "## Resource Inventory" in mock_slack.call_args.kwargs["report"]
    assert mock_slack.call_args.kwargs["headline"].startswith(":white_check_mark: governance-cloudtrail is healthy")


@patch("stackwarden.cli.ResourceInspector")
@patch("stackwarden.cli.ParameterStore")
@patch("stackwarden.cli.CloudFormationClient")
@patch("stackwarden.cli.build_session")
def test_inventory_post_slack_without_webhook(
    mock_session, mock_client_cls, mock_store_cls, mock_inspector_cls, runner, env_file, session, monkeypatch
):
    monkeypatch.delenv("STACKWARDEN_SLACK_WEBHOOK", raising=False)
    mock_session.return_value = session
    mock_client_cls.return_value = _provider(status=StackStatus.CREATE_COMPLETE)
    mock_store_cls.return_value = FakeSink()
    mock_inspector_cls.return_value = FakeProbe(live={BUCKET, TRAIL, LOG_GROUP})

    result = runner.invoke(main, ["--env-file", env_file, "inventory", "--post-slack"])

    assert result.exit_code == 2
    assert "STACKWARDEN_SLACK_WEBHOOK" in result.output


@patch("stackwarden.cli.run_checks", return_value=PASSED)
@patch("stackwarden.cli.build_session")
def test_verify_passes(mock_session, mock_checks, runner, env_file):
    result = runner.invoke(main, ["--env-file", env_file, "verify"])

    assert result.exit_code == 0
    assert "All prerequisites verified successfully!" in result.output


@patch("stackwarden.cli.run_checks", return_value=FAILED)
@patch("stackwarden.cli.build_session")
def test_verify_fails(mock_session, mock_checks, runner, env_file):
    result = runner.invoke(main, ["--env-file", env_file, "verify"])

    assert result.exit_code == 1
    assert "1 check(s) failed" in result.output
