"""CLI entrypoint for stackwarden."""

import logging
import os
import sys
from contextlib import contextmanager

import click
from botocore.exceptions import BotoCoreError, ClientError
from rich.console import Console
from rich.logging import RichHandler

from stackwarden.aws.client import CloudFormationClient
from stackwarden.aws.parameters import ParameterStore
from stackwarden.aws.resources import ResourceInspector
from stackwarden.aws.session import build_session
from stackwarden.config import Settings
from stackwarden.detector import DriftDetector
from stackwarden.errors import (
    ConfigurationError,
    PollCancelled,
    PrerequisiteError,
    StackInFailedState,
    StackOperationFailed,
    StackwardenError,
)
from stackwarden.formatter import (
    format_apply,
    format_checks,
    format_destroy,
    format_headline,
    format_json,
    format_markdown,
    format_table,
)
from stackwarden.foundation import bucket_name, foundation_spec, read_template
from stackwarden.integrations.slack import post_to_slack
from stackwarden.inventory import take_inventory
from stackwarden.lifecycle import LifecycleController, require_confirmation
from stackwarden.metadata import collect_metadata
from stackwarden.models import ResourceId, ResourceKind, StackStatus
from stackwarden.poller import Backoff, Poller
from stackwarden.prerequisites import run_checks

logger = logging.getLogger(__name__)

DESTROY_TOKEN = "DESTROY"
DELETE_BUCKET_TOKEN = "DELETE BUCKET"

EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def _configure_logging(verbosity: int) -> None:
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbosity, logging.DEBUG)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # botocore is chatty at DEBUG.
    logging.getLogger("botocore").setLevel(max(level, logging.INFO))


@contextmanager
def _handle_errors():
    """Render stackwarden errors for operators and exit with the matching code."""
    try:
        yield
    except PollCancelled as e:
        click.echo(f"Cancelled: {e}", err=True)
        sys.exit(EXIT_CANCELLED)
    except (ConfigurationError, PrerequisiteError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_USAGE)
    except StackInFailedState as e:
        click.echo(f"Error: {e}", err=True)
        click.echo("To resolve this issue:", err=True)
        for number, step in enumerate(e.remediation, start=1):
            click.echo(f"  {number}. {step}", err=True)
        sys.exit(EXIT_FAILURE)
    except StackOperationFailed as e:
        click.echo(f"Error: {e}", err=True)
        if e.failed_resources:
            click.echo("Failed resources:", err=True)
            for event in e.failed_resources:
                click.echo(f"  {event.logical_id} ({event.resource_type}): {event.reason}", err=True)
        if e.remediation:
            click.echo(e.remediation, err=True)
        sys.exit(EXIT_FAILURE)
    except StackwardenError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)
    except (ClientError, BotoCoreError) as e:
        click.echo(f"AWS error: {e}", err=True)
        sys.exit(EXIT_FAILURE)


def _settings(ctx: click.Context, strict: bool) -> Settings:
    with _handle_errors():
        return Settings.load(ctx.obj["env_file"], strict=strict)


def _session(ctx: click.Context, settings: Settings):
    return build_session(
        region=ctx.obj["region"] or settings.region,
        profile=ctx.obj["profile"] or settings.profile,
    )


def _account_id(session) -> str:
    return session.client("sts").get_caller_identity()["Account"]


def _controller(session, settings: Settings, sink=None) -> LifecycleController:
    return LifecycleController(
        CloudFormationClient(session=session),
        sink=sink,
        poller=Poller(Backoff(ceiling=settings.poll_max_wait_seconds)),
        parameter_path=settings.parameter_path,
    )


def _require_prerequisites(session, template_path=None, include_git=True) -> None:
    report = run_checks(session, template_path=template_path, include_git=include_git)
    if not report.ok:
        click.echo(format_checks(report), err=True)
        report.require()


@click.group()
@click.option(
    "--env-file",
    default=".env",
    show_default=True,
    type=click.Path(dir_okay=False),
    help="Configuration file to load.",
)
@click.option("--region", default=None, help="AWS region (overrides AWS_REGION).")
@click.option("--profile", default=None, help="AWS profile.")
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v info, -vv debug).")
@click.pass_context
def main(ctx, env_file, region, profile, verbose):
    """Deploy, inventory, and tear down the CloudTrail governance foundation."""
    _configure_logging(verbose)
    ctx.obj = {"env_file": env_file, "region": region, "profile": profile}


@main.command()
@click.option(
    "--auto-recover/--no-auto-recover",
    default=None,
    help="Delete and re-create a stack found in a failed state (default: AUTO_DELETE_FAILED_STACK).",
)
@click.option("--skip-prerequisites", is_flag=True, help="Skip prerequisite verification.")
@click.pass_context
def apply(ctx, auto_recover, skip_prerequisites):
    """Create or update the foundation stack."""
    settings = _settings(ctx, strict=True)
    session = _session(ctx, settings)

    with _handle_errors():
        if not skip_prerequisites:
            _require_prerequisites(session, template_path=settings.template_path)
        metadata = collect_metadata(session)
        spec = foundation_spec(
            settings,
            metadata.account_id,
            metadata=metadata,
            template_body=read_template(settings.template_path),
        )
        controller = _controller(session, settings, sink=ParameterStore(session=session))
        recover = settings.auto_delete_failed_stack if auto_recover is None else auto_recover
        result = controller.apply(spec, auto_recover_failed=recover)

    click.echo(format_apply(result))
    sys.exit(0)


@main.command()
@click.pass_context
def destroy(ctx):
    """Delete the foundation stack and its published parameters."""
    settings = _settings(ctx, strict=False)
    click.secho("AWS CloudTrail Governance Foundation - DESTRUCTION WARNING", fg="red", bold=True)
    click.echo(f"This will permanently delete the CloudFormation stack {settings.stack_name!r},")
    click.echo("its trail, log group, delivery role, and parameters under " + settings.parameter_path)
    click.secho("THIS ACTION CANNOT BE UNDONE", fg="red")

    answer = click.prompt(
        f"To proceed with destruction, type '{DESTROY_TOKEN}' exactly",
        default="",
        show_default=False,
    )
    if not require_confirmation(DESTROY_TOKEN, answer):
        click.secho("Destruction cancelled", fg="green")
        sys.exit(0)

    click.echo("The S3 bucket contains audit logs and has DeletionPolicy: Retain")
    click.echo("1) Retain S3 bucket (recommended - preserves audit history)")
    click.echo("2) Delete S3 bucket (WARNING: permanently destroys all audit logs)")
    choice = click.prompt("Enter choice", type=click.Choice(["1", "2"]), default="1")
    retain_bucket = True
    if choice == "2":
        answer = click.prompt(
            f"Type '{DELETE_BUCKET_TOKEN}' to confirm",
            default="",
            show_default=False,
        )
        retain_bucket = not require_confirmation(DELETE_BUCKET_TOKEN, answer)
    click.echo("S3 bucket will be retained" if retain_bucket else "S3 bucket will be deleted")

    session = _session(ctx, settings)
    with _handle_errors():
        _require_prerequisites(session, include_git=False)
        account_id = _account_id(session)
        spec = foundation_spec(settings, account_id)
        inspector = ResourceInspector(session=session)
        store = ParameterStore(session=session)
        controller = _controller(session, settings, sink=store)

        result = controller.destroy(
            spec.name,
            retain=spec.retained_logical_ids if retain_bucket else (),
        )

        bucket = bucket_name(account_id)
        if not retain_bucket:
            if inspector.exists(ResourceId(ResourceKind.S3_BUCKET, bucket)):
                removed = inspector.purge_bucket(bucket)
                click.echo(f"Deleted bucket {bucket} ({removed} object version(s))")

        report = DriftDetector(inspector).reconcile(
            spec,
            controller.status(spec.name),
            retained=spec.retained_identifiers if retain_bucket else (),
        )
        remaining = store.list_under(settings.parameter_path)

    click.echo(format_destroy(result))
    click.echo("Resource Status After Destruction:")
    for resource in sorted(report.retained):
        click.echo(f"  ○ Retained as expected: {resource}")
    for resource in sorted(report.orphaned):
        click.echo(f"  ! Still exists (potential orphan): {resource}")
    if not report.orphaned:
        click.echo("  ✓ No orphaned resources remain")
    if remaining:
        click.echo(f"  ! {len(remaining)} parameter(s) still under {settings.parameter_path}")
    else:
        click.echo(f"  ✓ No parameters remain under {settings.parameter_path}")
    sys.exit(0)


@main.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json", "markdown"]),
    default="table",
    help="Output format.",
)
@click.option("--post-slack", is_flag=True, help="Post report to Slack webhook.")
@click.pass_context
def inventory(ctx, output_format, post_slack):
    """Inventory deployed resources and reconcile them against the stack."""
    settings = _settings(ctx, strict=False)
    session = _session(ctx, settings)

    with _handle_errors():
        controller = _controller(session, settings)
        state = controller.status(settings.stack_name)
        if state.status == StackStatus.ABSENT:
            click.echo(f"CloudFormation stack '{settings.stack_name}' not found; nothing to report.")
            click.echo("To deploy the stack, run: stackwarden apply")
            sys.exit(0)

        spec = foundation_spec(settings, _account_id(session))
        inspector = ResourceInspector(session=session)
        result = take_inventory(
            spec,
            controller,
            DriftDetector(inspector),
            inspector=inspector,
            sink=ParameterStore(session=session),
            parameter_path=settings.parameter_path,
            state=state,
        )

    formatters = {
        "table": format_table,
        "json": format_json,
        "markdown": format_markdown,
    }
    click.echo(formatters[output_format](result))

    if post_slack:
        webhook_url = os.environ.get("STACKWARDEN_SLACK_WEBHOOK")
        if not webhook_url:
            click.echo("Error: STACKWARDEN_SLACK_WEBHOOK env var not set.", err=True)
            sys.exit(EXIT_USAGE)
        post_to_slack(
            report=format_markdown(result),
            webhook_url=webhook_url,
            headline=format_headline(result),
        )

    sys.exit(0)


main.add_command(inventory, name="list")


@main.command()
@click.pass_context
def verify(ctx):
    """Verify tools, repository state, credentials, and permissions."""
    settings = _settings(ctx, strict=False)
    session = _session(ctx, settings)
    report = run_checks(session, template_path=settings.template_path)
    click.echo(format_checks(report))
    sys.exit(0 if report.ok else EXIT_FAILURE)
