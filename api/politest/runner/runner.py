"""Scenario test runner.

Runs every atomic execution of a prepared scenario against a policy
simulator, in declaration order, one call at a time. Expansion happens up
front so a broken test aborts the run before the first simulator call.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from politest.errors import ExpectationMismatchError
from politest.policy.compose import PreparedSimulation
from politest.runner.evaluator import TestOutcome, evaluate
from politest.runner.expander import (
    AtomicExecution,
    ScenarioDefaults,
    effective_tests,
    expand_tests,
    select_tests,
)
from politest.runner.protocol import PolicySimulatorProtocol, SimulationRequest

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[TestOutcome], None]


@dataclass
class RunReport:
    """Outcomes of one scenario run, in execution order."""

    outcomes: list[TestOutcome] = field(default_factory=list)
    responses: list[dict[str, Any]] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for o in self.outcomes if o.passed)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.passed

    @property
    def failures(self) -> list[TestOutcome]:
        return [o for o in self.outcomes if not o.passed]

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def raise_for_failures(self) -> None:
        """Raise ``ExpectationMismatchError`` if any execution failed."""
        if not self.ok:
            raise ExpectationMismatchError(self.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "results": [o.to_dict() for o in self.outcomes],
        }


def build_executions(
    prepared: PreparedSimulation,
    test_filter: Iterable[str] | None = None,
) -> list[AtomicExecution]:
    """Expand the prepared scenario's tests into atomic executions."""
    path = prepared.scenario_path
    tests = select_tests(effective_tests(prepared.scenario, path), test_filter, path)
    defaults = ScenarioDefaults.from_scenario(prepared.scenario, prepared.resource_policy, path)
    return expand_tests(tests, defaults, prepared.variables, prepared.load_resource_policy)


def build_request(prepared: PreparedSimulation, execution: AtomicExecution) -> SimulationRequest:
    return SimulationRequest(
        policy_documents=(prepared.identity_policy,),
        permissions_boundary_documents=(
            (prepared.permissions_boundary,) if prepared.permissions_boundary else ()
        ),
        resource_policy=execution.resource_policy,
        action=execution.action,
        resource_arns=execution.resources,
        context_entries=execution.context,
        caller_arn=execution.caller_arn,
        resource_owner=execution.resource_owner,
        resource_handling_option=execution.resource_handling_option,
    )


def run_tests(
    prepared: PreparedSimulation,
    simulator: PolicySimulatorProtocol,
    test_filter: Iterable[str] | None = None,
    show_matched_success: bool = False,
    on_outcome: OutcomeCallback | None = None,
) -> RunReport:
    """Run a prepared scenario.

    Args:
        prepared: Output of ``prepare_simulation``.
        simulator: Policy simulator to call, once per atomic execution.
        test_filter: Only run tests with these names.
        show_matched_success: Report matched statements for passing tests.
        on_outcome: Called with each outcome as soon as it is known.

    Returns:
        RunReport with every outcome. Mismatches do not raise here; call
        ``RunReport.raise_for_failures`` to escalate them.

    Raises:
        ConfigurationError / RenderError: A test is invalid (before any call).
        Simulator errors propagate unchanged.
    """
    executions = build_executions(prepared, test_filter)
    logger.debug("Expanded %d atomic execution(s)", len(executions))

    report = RunReport()
    for execution in executions:
        request = build_request(prepared, execution)
        result = simulator.simulate(request)
        if result.raw is not None:
            report.responses.append({
                "test": execution.test_index,
                "name": execution.name,
                "action": execution.action,
                "response": result.raw,
            })
        outcome = evaluate(execution, result, prepared.source_map, show_matched_success)
        report.outcomes.append(outcome)
        if on_outcome is not None:
            on_outcome(outcome)
    return report


def save_responses(path: Path | str, responses: list[dict[str, Any]]) -> Path:
    """Write raw simulator responses as indented JSON, readable by the owner only."""
    path = Path(path)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(responses, f, indent=2, default=str)
    os.chmod(path, 0o600)
    logger.debug("Saved %d simulator response(s) to %s", len(responses), path)
    return path
