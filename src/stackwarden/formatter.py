"""Output formatters for inventories, apply results, and prerequisite checks."""

import json

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from stackwarden.analyzer import Category, Severity
from stackwarden.inventory import Inventory
from stackwarden.models import ApplyResult, DestroyResult, PrerequisiteReport

SEVERITY_COLORS = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "dim",
}

CATEGORY_LABELS = {
    Category.MANAGED: ("green", "✓", "Managed by CloudFormation"),
    Category.RETAINED: ("yellow", "○", "Retained (DeletionPolicy: Retain)"),
    Category.ORPHANED: ("red", "!", "Potential orphan (not tracked by the stack)"),
    Category.MISSING: ("red", "✗", "Missing (tracked but not found)"),
}

WIDTH = 120


def _escape_md_cell(value: str) -> str:
    """Escape characters that break markdown table cells."""
    return value.replace("|", "\\|").replace("\n", " ")


def _render(renderable) -> str:
    console = Console(record=True, width=WIDTH)
    console.print(renderable)
    return console.export_text()


def format_json(inventory: Inventory) -> str:
    """Format an inventory as JSON."""
    state = inventory.state
    report = inventory.analyzed.report
    return json.dumps(
        {
            "stack": {
                "name": state.name,
                "status": state.status.value,
                "creation_time": state.creation_time.isoformat() if state.creation_time else None,
                "last_updated_time": (
                    state.last_updated_time.isoformat() if state.last_updated_time else None
                ),
                "outputs": dict(state.outputs),
                "healthy": inventory.healthy,
            },
            "resources": [
                {
                    "logical_id": r.logical_id,
                    "physical_id": r.physical_id,
                    "resource_type": r.resource_type,
                    "status": r.status,
                }
                for r in state.resources.values()
            ],
            "reconciliation": {
                "provisional": report.provisional,
                "severity": inventory.analyzed.severity.name if inventory.analyzed.severity else None,
                "findings": [
                    {
                        "kind": f.resource.kind.value,
                        "key": f.resource.key,
                        "category": f.category.value,
                        "severity": f.severity.name if f.severity else None,
                        "attributes": inventory.attributes.get(f.resource, {}),
                    }
                    for f in inventory.analyzed.findings
                ],
                "summary": {
                    "declared": len(report.declared),
                    "observed": len(report.observed),
                    "managed": len(report.managed),
                    "orphaned": len(report.orphaned),
                    "missing": len(report.missing),
                    "retained": len(report.retained),
                },
            },
            "parameters": inventory.parameters,
        },
        indent=2,
    )


def format_markdown(inventory: Inventory) -> str:
    """Format an inventory as Markdown."""
    state = inventory.state
    report = inventory.analyzed.report
    severity = inventory.analyzed.severity
    severity_label = f" [{severity.name}]" if severity else ""

    lines = [
        f"## Resource Inventory — {_escape_md_cell(state.name)} — {state.status.value}{severity_label}",
        "",
    ]
    if report.provisional:
        lines += ["_Stack operation in progress; findings are provisional._", ""]

    if state.outputs:
        lines += ["| Output | Value |", "|--------|-------|"]
        for key, value in state.outputs.items():
            lines.append(f"| {_escape_md_cell(key)} | `{_escape_md_cell(value)}` |")
        lines.append("")

    lines += [
        "| Resource | Kind | Category | Severity |",
        "|----------|------|----------|----------|",
    ]
    for f in inventory.analyzed.findings:
        sev = f.severity.name if f.severity else "—"
        lines.append(
            f"| {_escape_md_cell(f.resource.key)} | {f.resource.kind.value} "
            f"| {f.category.value} | {sev} |"
        )
    lines.append("")

    if not report.has_drift:
        lines.append("No drift detected.")
    else:
        lines.append(
            f"{len(report.orphaned)} orphaned, {len(report.missing)} missing "
            f"of {len(report.declared)} declared resources."
        )
    return "\n".join(lines)


def format_headline(inventory: Inventory) -> str:
    """One-line health summary for chat notifications."""
    state = inventory.state
    if inventory.healthy:
        return f":white_check_mark: {state.name} is healthy ({state.status.value})"
    report = inventory.analyzed.report
    severity = inventory.analyzed.severity
    severity_label = f" [{severity.name}]" if severity else ""
    return (
        f":warning: {state.name} needs attention ({state.status.value}): "
        f"{len(report.orphaned)} orphaned, {len(report.missing)} missing{severity_label}"
    )


def format_table(inventory: Inventory) -> str:
    """Format an inventory as Rich tables and a tree, returned as a string."""
    state = inventory.state
    report = inventory.analyzed.report
    console = Console(record=True, width=WIDTH)

    console.print(Text.from_markup("[bold]Stack[/bold]"))
    console.print(f"  Stack Name: {state.name}")
    console.print(f"  Stack Status: {state.status.value}")
    console.print(f"  Creation Time: {state.creation_time or 'Unknown'}")
    console.print(f"  Last Update Time: {state.last_updated_time or 'Never'}")
    if state.outputs:
        console.print("  Stack Outputs:")
        for key, value in state.outputs.items():
            console.print(f"    {key}: {value}")
    else:
        console.print("  No outputs available")

    if state.resources:
        table = Table(title="CloudFormation Stack Resources", title_justify="left")
        for column in ("Type", "Logical ID", "Physical ID", "Status"):
            table.add_column(column)
        for r in state.resources.values():
            table.add_row(r.resource_type, r.logical_id, r.physical_id or "—", r.status)
        console.print(table)

    tree = Tree("[bold]Resource Verification[/bold]")
    for f in inventory.analyzed.findings:
        color, mark, label = CATEGORY_LABELS[f.category]
        sev = ""
        if f.severity is not None:
            sev_color = SEVERITY_COLORS.get(f.severity, "dim")
            sev = f" [{sev_color}]{escape(f'[{f.severity.name}]')}[/{sev_color}]"
        branch = tree.add(
            Text.from_markup(
                f"[{color}]{mark}[/{color}] {f.resource.kind.value}: {escape(f.resource.key)} — {label}{sev}",
            )
        )
        for key, value in inventory.attributes.get(f.resource, {}).items():
            branch.add(f"{key}: {value}")
    console.print(tree)

    if inventory.parameters:
        console.print(f"Published parameters ({len(inventory.parameters)}):")
        for name, value in sorted(inventory.parameters.items()):
            console.print(f"  {name}: {value}")

    if report.provisional:
        console.print("[yellow]Stack operation in progress; findings are provisional.[/yellow]")
    console.print(
        f"Declared: {len(report.declared)}  Observed: {len(report.observed)}  "
        f"Managed: {len(report.managed)}  Orphaned: {len(report.orphaned)}  "
        f"Missing: {len(report.missing)}  Retained: {len(report.retained)}"
    )
    if inventory.healthy:
        console.print("Overall Status: [green]Healthy[/green]")
    else:
        console.print(f"Overall Status: [yellow]{state.status.value}[/yellow]")
    return console.export_text()


def format_checks(report: PrerequisiteReport) -> str:
    """Format prerequisite check results as a Rich table."""
    table = Table(title="Prerequisites Verification Summary", title_justify="left")
    table.add_column("")
    table.add_column("Check")
    table.add_column("Detail")
    for check in report.checks:
        mark = "[green]✓[/green]" if check.passed else "[red]✗[/red]"
        table.add_row(mark, check.name, check.message)
    text = _render(table)
    if report.ok:
        return text + "All prerequisites verified successfully!"
    return text + f"{len(report.failed)} check(s) failed. Resolve the issues above before proceeding."


def format_apply(result: ApplyResult) -> str:
    """Deployment summary for a successful apply."""
    state = result.state
    lines = [
        "Deployment Summary",
        "==================",
        f"Stack Name: {state.name}",
        f"Stack Status: {state.status.value}",
        f"Outcome: {result.outcome.value}",
        f"Resources Deployed: {len(state.resources)}",
        f"Parameters Published: {result.published}",
    ]
    if result.recovered:
        lines.append("A failed stack was deleted and re-created.")
    return "\n".join(lines)


def format_destroy(result: DestroyResult) -> str:
    """Summary of a completed destroy."""
    lines = [
        "Destruction Summary",
        "===================",
        f"CloudFormation Stack: {'Deleted' if result.stack_found else 'Not found'}",
    ]
    if result.retained:
        lines.append(f"Retained: {', '.join(sorted(result.retained))}")
    lines.append(f"Parameters Deleted: {result.parameters_deleted}")
    return "\n".join(lines)
