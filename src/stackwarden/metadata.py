"""Deployment metadata gathered from STS, IAM and git."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

import boto3
from botocore.exceptions import ClientError

from stackwarden.aws.session import translate_errors
from stackwarden.errors import PrerequisiteError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentMetadata:
    """Who is deploying what, from where."""

    account_id: str
    account_alias: str
    deployment_role: str
    repository_url: str
    project_name: str
    git_commit: str


def run_git(args: list[str], cwd: str | Path | None = None) -> subprocess.CompletedProcess:
    """Run a git command, capturing text output. Never raises on a non-zero exit."""
    return subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=False)


def _git_value(args: list[str], cwd) -> str:
    try:
        result = run_git(args, cwd)
    except FileNotFoundError:
        raise PrerequisiteError(["git: not found in PATH"]) from None
    if result.returncode != 0:
        raise PrerequisiteError([f"git {' '.join(args)}: {result.stderr.strip()}"])
    return result.stdout.strip()


def project_name_from_url(url: str) -> str:
    """Repository name from a git remote URL, without the .git suffix."""
    name = url.rstrip("/").rsplit("/", 1)[-1].rsplit(":", 1)[-1]
    return name.removesuffix(".git")


def account_alias(session: boto3.Session) -> str:
    """The first IAM account alias, or an empty string when there is none or it cannot be read."""
    try:
        with translate_errors():
            aliases = session.client("iam").list_account_aliases().get("AccountAliases", [])
    except ClientError as e:
        logger.debug("Could not read account aliases: %s", e)
        return ""
    return aliases[0] if aliases else ""


def collect_metadata(session: boto3.Session, repo_dir: str | Path | None = None) -> DeploymentMetadata:
    """Collect account identity and repository metadata for stack parameters."""
    with translate_errors():
        identity = session.client("sts").get_caller_identity()

    repository_url = _git_value(["remote", "get-url", "origin"], repo_dir)
    metadata = DeploymentMetadata(
        account_id=identity["Account"],
        account_alias=account_alias(session),
        deployment_role=identity["Arn"],
        repository_url=repository_url,
        project_name=project_name_from_url(repository_url),
        git_commit=_git_value(["rev-parse", "HEAD"], repo_dir),
    )
    logger.info(
        "Deploying %s@%s to account %s as %s",
        metadata.project_name,
        metadata.git_commit[:12],
        metadata.account_id,
        metadata.deployment_role,
    )
    return metadata
