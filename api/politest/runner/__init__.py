"""Test expansion, simulation and expectation evaluation."""

from politest.runner.evaluator import MatchedStatement, TestOutcome, evaluate
from politest.runner.expander import (
    AtomicExecution,
    ScenarioDefaults,
    effective_tests,
    expand_test,
    expand_tests,
    select_tests,
)
from politest.runner.iam_simulator import IamPolicySimulator
from politest.runner.protocol import PolicySimulatorProtocol, SimulationRequest, SimulationResult
from politest.runner.runner import RunReport, build_executions, run_tests, save_responses

__all__ = [
    "AtomicExecution",
    "IamPolicySimulator",
    "MatchedStatement",
    "PolicySimulatorProtocol",
    "RunReport",
    "ScenarioDefaults",
    "SimulationRequest",
    "SimulationResult",
    "TestOutcome",
    "build_executions",
    "effective_tests",
    "evaluate",
    "expand_test",
    "expand_tests",
    "run_tests",
    "save_responses",
    "select_tests",
]
