"""Prerequisite checks run before any mutating provider call."""

import logging
import shutil
from collections.abc import Callable
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from stackwarden.aws.client import CloudFormationClient
from stackwarden.aws.session import error_code, error_message
from stackwarden.errors import ProviderUnavailable
from stackwarden.metadata import run_git
from stackwarden.models import CheckResult, PrerequisiteReport

logger = logging.getLogger(__name__)

DENIED_CODES = {"AccessDenied", "AccessDeniedException", "UnauthorizedOperation"}


def _check(name: str, passed: bool, message: str) -> CheckResult:
    log = logger.debug if passed else logger.warning
    log("%s: %s", name, message)
    return CheckResult(name=name, passed=passed, message=message)


def check_git(repo_dir: str | Path | None = None) -> list[CheckResult]:
    """git is installed and the working tree is a clean, synced checkout with an origin."""
    if shutil.which("git") is None:
        return [_check("git", False, "git not found in PATH")]

    results = [_check("git", True, run_git(["--version"], repo_dir).stdout.strip())]
    if run_git(["rev-parse", "--git-dir"], repo_dir).returncode != 0:
        results.append(_check("git_repo", False, "Current directory is not a git repository"))
        return results
    results.append(_check("git_repo", True, "Current directory is a git repository"))

    origin = run_git(["remote", "get-url", "origin"], repo_dir)
    if origin.returncode == 0:
        results.append(_check("git_origin", True, f"Remote origin configured: {origin.stdout.strip()}"))
    else:
        results.append(_check("git_origin", False, "Remote origin not configured"))

    clean = run_git(["diff-index", "--quiet", "HEAD", "--"], repo_dir).returncode == 0
    results.append(
        _check("git_clean", clean, "No uncommitted changes" if clean else "Uncommitted changes detected")
    )

    untracked = run_git(["ls-files", "--others", "--exclude-standard"], repo_dir).stdout.strip()
    results.append(
        _check(
            "git_untracked",
            not untracked,
            "Untracked files detected" if untracked else "No untracked files",
        )
    )

    branch = run_git(["branch", "--show-current"], repo_dir).stdout.strip()
    if run_git(["rev-parse", "--verify", "@{upstream}"], repo_dir).returncode != 0:
        results.append(
            _check("git_sync", True, "No upstream branch configured (acceptable for new repositories)")
        )
    elif run_git(["diff", "--quiet", "HEAD", "@{upstream}"], repo_dir).returncode == 0:
        results.append(_check("git_sync", True, f"Local branch '{branch}' up to date with remote"))
    else:
        results.append(_check("git_sync", False, f"Local branch '{branch}' differs from remote"))
    return results


def check_credentials(session: boto3.Session) -> CheckResult:
    try:
        identity = session.client("sts").get_caller_identity()
    except (ClientError, BotoCoreError) as e:
        return _check("aws_credentials", False, f"AWS credentials not configured or invalid ({e})")
    return _check(
        "aws_credentials",
        True,
        f"AWS credentials valid - Account: {identity['Account']}, Principal: {identity['Arn']}",
    )


def _cloudformation_probe(session: boto3.Session) -> None:
    try:
        session.client("cloudformation").describe_stacks(StackName="stackwarden-permission-probe")
    except ClientError as e:
        if "does not exist" not in error_message(e):
            raise


PERMISSION_PROBES: dict[str, tuple[str, Callable[[boto3.Session], object]]] = {
    "cfn_permissions": ("CloudFormation describe-stacks", _cloudformation_probe),
    "s3_permissions": ("S3 list-buckets", lambda s: s.client("s3").list_buckets()),
    "cloudtrail_permissions": (
        "CloudTrail describe-trails",
        lambda s: s.client("cloudtrail").describe_trails(),
    ),
    "iam_permissions": (
        "IAM list-account-aliases",
        lambda s: s.client("iam").list_account_aliases(),
    ),
    "logs_permissions": (
        "CloudWatch Logs describe-log-groups",
        lambda s: s.client("logs").describe_log_groups(limit=1),
    ),
    "ssm_permissions": (
        "SSM describe-parameters",
        lambda s: s.client("ssm").describe_parameters(MaxResults=1),
    ),
}


def check_permissions(session: boto3.Session) -> list[CheckResult]:
    """Exercise one read-only call per service the foundation touches."""
    results = []
    for name, (description, probe) in PERMISSION_PROBES.items():
        try:
            probe(session)
        except ClientError as e:
            reason = "denied" if error_code(e) in DENIED_CODES else error_code(e)
            results.append(_check(name, False, f"{description} permission {reason}"))
        except BotoCoreError as e:
            results.append(_check(name, False, f"{description} unavailable ({e})"))
        else:
            results.append(_check(name, True, f"{description} permission verified"))
    return results


def check_template(session: boto3.Session, template_path: str | Path) -> CheckResult:
    path = Path(template_path)
    if not path.is_file():
        return _check("cfn_template", False, f"CloudFormation template not found at {path}")
    try:
        CloudFormationClient(session=session).validate_template(path.read_text())
    except (ClientError, BotoCoreError, ProviderUnavailable) as e:
        return _check("cfn_template", False, f"CloudFormation template validation failed ({e})")
    return _check("cfn_template", True, "CloudFormation template validation successful")


def run_checks(
    session: boto3.Session,
    template_path: str | Path | None = None,
    repo_dir: str | Path | None = None,
    include_git: bool = True,
) -> PrerequisiteReport:
    """Run every prerequisite check and aggregate the results."""
    checks: list[CheckResult] = []
    if include_git:
        checks.extend(check_git(repo_dir))

    credentials = check_credentials(session)
    checks.append(credentials)
    if credentials.passed:
        checks.extend(check_permissions(session))
        if template_path is not None:
            checks.append(check_template(session, template_path))

    return PrerequisiteReport(checks=tuple(checks))
