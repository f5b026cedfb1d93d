"""Output formatting utilities for CLI.

Follows the golden rule:
- stdout = results (the test report, or JSON with ``--format json``)
- stderr = human-readable logs (warnings, errors, debug documents)
"""

import json
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from politest.policy.compose import PreparedSimulation
from politest.runner.evaluator import TestOutcome
from politest.runner.runner import RunReport

# stderr console for human logs (preserves colors when redirected)
console = Console(stderr=True)

# stdout console for the test report; long ARNs must not be wrapped
report_console = Console(soft_wrap=True, highlight=False)

RULE = "=" * 40


def output_json(data: Any, indent: Optional[int] = 2):
    """Output JSON to stdout (machine-readable).

    Args:
        data: Data to serialize as JSON
        indent: Indentation level (None for compact)
    """
    print(json.dumps(data, indent=indent, default=str), flush=True)


def log_success(message: str, quiet: bool = False):
    """Log success message to stderr."""
    if not quiet:
        console.print(f"[green]✓[/green] {escape(message)}")


def log_error(message: str):
    """Log error message to stderr (always shown)."""
    console.print(f"[red]✗[/red] {escape(message)}", style="bold red")


def log_warning(message: str, quiet: bool = False):
    """Log warning message to stderr.

    Args:
        message: Warning message to log
        quiet: If True, suppress output
    """
    if not quiet:
        console.print(f"[yellow]⚠[/yellow] {escape(message)}", style="yellow")


# ============================================================================
# Test report
# ============================================================================

def print_run_header(scenario: str, total: int):
    report_console.print(f"Running {total} test(s) from {escape(scenario)}\n")


def print_outcome(outcome: TestOutcome):
    """Print one outcome as soon as it is known."""
    ex = outcome.execution
    report_console.print(f"[bold]Test {ex.test_index}:[/bold] {escape(ex.name)}")
    report_console.print(f"  Action:   {escape(ex.action)}")
    report_console.print(f"  Resource: {escape(ex.resource_display)}")

    if outcome.passed:
        report_console.print(f"  [green]{escape(outcome.summary)}[/green]")
    else:
        report_console.print(f"  [red]{escape(outcome.summary)}[/red]")
        if outcome.diagnostic:
            for line in outcome.diagnostic.splitlines():
                report_console.print(f"    {escape(line)}")
    if outcome.passed and outcome.matched:
        report_console.print("  Matched statements:")
        for statement in outcome.matched:
            for line in statement.render().splitlines():
                report_console.print(f"  {escape(line)}")
    report_console.print()


def print_summary(report: RunReport):
    style = "green" if report.ok else "red"
    report_console.print(RULE)
    report_console.print(
        f"[{style}]Test Results: {report.passed} passed, {report.failed} failed[/{style}]"
    )
    report_console.print(RULE)


# ============================================================================
# Composed documents
# ============================================================================

def show_documents(prepared: PreparedSimulation, target: Console = console):
    """Show the documents that will be submitted and where statements came from."""
    sections = [("Identity policy", prepared.identity_policy)]
    if prepared.permissions_boundary:
        sections.append(("Permissions boundary (SCP/RCP)", prepared.permissions_boundary))
    if prepared.resource_policy:
        sections.append(("Resource policy", prepared.resource_policy))
    for title, text in sections:
        target.print(Panel(escape(text), title=title, border_style="cyan"))

    if prepared.variables:
        target.print(f"[bold]Variables:[/bold] {escape(', '.join(sorted(prepared.variables)))}")

    if len(prepared.source_map):
        table = Table(title="Statement sources", show_header=True)
        table.add_column("Token")
        table.add_column("Sid")
        table.add_column("File")
        table.add_column("Lines")
        for token, source in prepared.source_map.sources.items():
            table.add_row(
                escape(token),
                escape(source.label or "-"),
                escape(str(source.file_path)),
                source.line_range,
            )
        target.print(table)


def documents_to_dict(prepared: PreparedSimulation) -> dict[str, Any]:
    return {
        "scenario": str(prepared.scenario_path),
        "identity_policy": json.loads(prepared.identity_policy),
        "permissions_boundary": (
            json.loads(prepared.permissions_boundary) if prepared.permissions_boundary else None
        ),
        "resource_policy": json.loads(prepared.resource_policy) if prepared.resource_policy else None,
        "fragments": [str(p) for p in prepared.fragment_files],
        "sources": {
            token: {
                "sid": source.label,
                "file": str(source.file_path),
                "lines": source.line_range,
            }
            for token, source in prepared.source_map.sources.items()
        },
    }
