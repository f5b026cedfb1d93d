"""CLI command for running scenario tests against the IAM policy simulator.

Exit codes:
    0  every test matched its expectation (or ``--no-assert``)
    1  the scenario could not be loaded, composed or simulated
    2  at least one test did not match its expectation
"""

import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional

import typer
from botocore.exceptions import BotoCoreError, ClientError
from typing_extensions import Annotated

from politest.cli.output import (
    log_error,
    log_success,
    log_warning,
    output_json,
    print_outcome,
    print_run_header,
    print_summary,
    show_documents,
)
from politest.errors import PolitestError
from politest.policy.compose import prepare_simulation
from politest.runner.iam_simulator import IamPolicySimulator
from politest.runner.protocol import PolicySimulatorProtocol
from politest.runner.runner import build_executions, run_tests, save_responses

EXIT_ERROR = 1
EXIT_EXPECTATION_FAILED = 2


class OutputFormat(str, Enum):
    """Output format options."""
    text = "text"
    json = "json"


def create_simulator() -> PolicySimulatorProtocol:
    """Simulator used by the CLI. Patched out in tests."""
    return IamPolicySimulator()


def parse_test_filter(values: Optional[List[str]]) -> list[str]:
    """Flatten repeated and comma-separated ``--test`` values."""
    names: list[str] = []
    for value in values or []:
        names.extend(part.strip() for part in value.split(",") if part.strip())
    return names


def configure_logging(debug: bool):
    if debug:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
        # botocore request logging drowns out ours
        logging.getLogger("botocore").setLevel(logging.INFO)
        logging.getLogger("urllib3").setLevel(logging.INFO)


def run_scenario(
    scenario: Annotated[
        Path,
        typer.Option(
            "--scenario",
            "-s",
            help="Scenario file (YAML)",
            dir_okay=False,
        ),
    ],
    save: Annotated[
        Optional[Path],
        typer.Option("--save", help="Save raw simulator responses as JSON (mode 0600)"),
    ] = None,
    no_assert: Annotated[
        bool,
        typer.Option("--no-assert", help="Do not fail on expectation mismatches"),
    ] = False,
    no_warn: Annotated[
        bool,
        typer.Option("--no-warn", help="Suppress the SCP/RCP simulation approximation warning"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Show files loaded, variables and rendered policies"),
    ] = False,
    strict_policy: Annotated[
        bool,
        typer.Option("--strict-policy", help="Fail if policies contain non-IAM fields"),
    ] = False,
    show_matched_success: Annotated[
        bool,
        typer.Option("--show-matched-success", help="Show matched statements for passing tests"),
    ] = False,
    test: Annotated[
        Optional[List[str]],
        typer.Option("--test", "-t", help="Only run tests with these names (repeat or comma-separate)"),
    ] = None,
    format: Annotated[
        OutputFormat,
        typer.Option("--format", "-f", help="Output format"),
    ] = OutputFormat.text,
):
    """Run the tests of a scenario.

    Examples:

        # Run every test
        politest run --scenario scenarios/s3-read.yml

        # Run two named tests and keep the raw responses
        politest run -s scenarios/s3-read.yml --test "read ok,write denied" --save out.json

        # Machine-readable results
        politest run -s scenarios/s3-read.yml --format json
    """
    configure_logging(debug)
    text = format == OutputFormat.text
    test_filter = parse_test_filter(test)

    try:
        prepared = prepare_simulation(scenario, strict_policy=strict_policy)
        if not no_warn:
            for warning in prepared.warnings:
                log_warning(warning)
        if debug:
            show_documents(prepared)

        if text:
            total = len(build_executions(prepared, test_filter))
            print_run_header(str(scenario), total)

        simulator = create_simulator()
        report = run_tests(
            prepared,
            simulator,
            test_filter=test_filter,
            show_matched_success=show_matched_success,
            on_outcome=print_outcome if text else None,
        )
    except PolitestError as e:
        log_error(str(e))
        raise typer.Exit(EXIT_ERROR)
    except (BotoCoreError, ClientError) as e:
        log_error(f"Policy simulator call failed: {e}")
        raise typer.Exit(EXIT_ERROR)

    if save is not None:
        try:
            save_responses(save, report.responses)
        except OSError as e:
            log_error(f"Cannot save responses to {save}: {e}")
            raise typer.Exit(EXIT_ERROR)
        log_success(f"Saved raw responses to {save}")

    if text:
        print_summary(report)
    else:
        output_json(report.to_dict())

    if not report.ok and not no_assert:
        raise typer.Exit(EXIT_EXPECTATION_FAILED)
