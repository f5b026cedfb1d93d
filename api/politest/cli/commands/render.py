"""CLI command for composing a scenario's policies without simulating them."""

from pathlib import Path

import typer
from typing_extensions import Annotated

from politest.cli.commands.run import EXIT_ERROR, OutputFormat, configure_logging
from politest.cli.output import (
    documents_to_dict,
    log_error,
    log_warning,
    output_json,
    report_console,
    show_documents,
)
from politest.errors import PolitestError
from politest.policy.compose import prepare_simulation


def render_scenario(
    scenario: Annotated[
        Path,
        typer.Option("--scenario", "-s", help="Scenario file (YAML)", dir_okay=False),
    ],
    strict_policy: Annotated[
        bool,
        typer.Option("--strict-policy", help="Fail if policies contain non-IAM fields"),
    ] = False,
    no_warn: Annotated[
        bool,
        typer.Option("--no-warn", help="Suppress the SCP/RCP simulation approximation warning"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Show files loaded and variables"),
    ] = False,
    format: Annotated[
        OutputFormat,
        typer.Option("--format", "-f", help="Output format"),
    ] = OutputFormat.text,
):
    """Show the documents a run would submit and where each statement came from."""
    configure_logging(debug)
    try:
        prepared = prepare_simulation(scenario, strict_policy=strict_policy)
    except PolitestError as e:
        log_error(str(e))
        raise typer.Exit(EXIT_ERROR)

    if not no_warn:
        for warning in prepared.warnings:
            log_warning(warning)

    if format == OutputFormat.json:
        output_json(documents_to_dict(prepared))
    else:
        show_documents(prepared, target=report_console)
