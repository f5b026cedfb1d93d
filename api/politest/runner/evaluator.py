"""Expectation evaluation and diagnostics.

Decisions are compared case-insensitively. Matched statements are reported
through the provenance map: each tracking token resolves to its original
``Sid``, file, line range and the literal lines read back from disk at report
time. Tokens with no provenance entry are shown as-is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from politest.policy.provenance import PolicySourceMap
from politest.runner.expander import AtomicExecution
from politest.runner.protocol import SimulationResult

logger = logging.getLogger(__name__)

NO_RESULTS = "no evaluation results returned"


@dataclass(frozen=True)
class MatchedStatement:
    """A matched statement resolved through the provenance map.

    ``file_path`` is None when the simulator reported an identifier no tracked
    statement carries; only ``token`` is meaningful then.
    """

    token: str
    label: str | None = None
    file_path: Path | None = None
    line_range: str | None = None
    lines: tuple[str, ...] = ()

    @property
    def tracked(self) -> bool:
        return self.file_path is not None

    def render(self) -> str:
        if not self.tracked:
            return f"  • {self.token}"
        header = f"  • {self.label or self.token} ({self.file_path}:{self.line_range})"
        if not self.lines:
            return header
        return header + "\n" + "\n".join(f"      {line}" for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "sid": self.label,
            "file": str(self.file_path) if self.file_path else None,
            "lines": self.line_range,
        }


@dataclass(frozen=True)
class TestOutcome:
    """Result of evaluating one atomic execution."""

    __test__ = False

    execution: AtomicExecution
    decision: str | None
    passed: bool
    matched: tuple[MatchedStatement, ...] = ()
    diagnostic: str | None = None

    @property
    def summary(self) -> str:
        if self.passed:
            return "✓ PASS"
        if self.decision is None:
            return f"✗ FAIL: {NO_RESULTS}"
        matched = ", ".join(m.label or m.token for m in self.matched)
        suffix = f" (matched: {matched})" if matched else ""
        return f"✗ FAIL: expected {self.execution.expect}, got {self.decision}{suffix}"

    def to_dict(self) -> dict:
        ex = self.execution
        return {
            "test": ex.test_index,
            "name": ex.name,
            "action": ex.action,
            "resources": list(ex.resources),
            "expected": ex.expect,
            "actual": self.decision,
            "passed": self.passed,
            "matched_statements": [m.to_dict() for m in self.matched],
        }


def decisions_match(expected: str, actual: str | None) -> bool:
    if actual is None:
        return False
    return expected.strip().lower() == actual.strip().lower()


def resolve_matched(tokens: tuple[str, ...] | list[str], source_map: PolicySourceMap) -> list[MatchedStatement]:
    """Resolve tokens to provenance records, re-reading source lines from disk."""
    resolved = []
    for token in tokens:
        source = source_map.lookup(token)
        if source is None:
            resolved.append(MatchedStatement(token=token))
            continue
        resolved.append(MatchedStatement(
            token=token,
            label=source.label,
            file_path=source.file_path,
            line_range=source.line_range,
            lines=tuple(source.read_lines()),
        ))
    return resolved


def format_diagnostic(
    execution: AtomicExecution,
    decision: str | None,
    matched: list[MatchedStatement],
) -> str:
    """Multi-line failure report naming inputs, decisions and matched statements."""
    lines = [
        f"Action:    {execution.action}",
        f"Resources: {execution.resource_display}",
    ]
    if execution.context:
        lines.append("Context:")
        for entry in execution.context:
            values = ", ".join(entry.values)
            lines.append(f"  {entry.key} ({entry.type.value}) = {values}")
    lines.append(f"Expected:  {execution.expect}")
    lines.append(f"Actual:    {decision if decision is not None else NO_RESULTS}")
    if matched:
        lines.append("Matched statements:")
        lines.extend(m.render() for m in matched)
    return "\n".join(lines)


def evaluate(
    execution: AtomicExecution,
    result: SimulationResult,
    source_map: PolicySourceMap,
    show_matched_success: bool = False,
) -> TestOutcome:
    """Compare a simulator result with the execution's expectation.

    Args:
        execution: The atomic execution that was simulated.
        result: Simulator verdict.
        source_map: Provenance of every tracked statement.
        show_matched_success: Resolve matched statements for passing
            executions too.

    Returns:
        TestOutcome with a diagnostic when the expectation failed.
    """
    passed = decisions_match(execution.expect, result.decision)
    if passed and not show_matched_success:
        return TestOutcome(execution=execution, decision=result.decision, passed=True)

    matched = resolve_matched(result.matched_statements, source_map)
    if passed:
        return TestOutcome(
            execution=execution, decision=result.decision, passed=True, matched=tuple(matched)
        )

    logger.debug("Expectation failed for %s: expected %s, got %s",
                 execution.name, execution.expect, result.decision)
    return TestOutcome(
        execution=execution,
        decision=result.decision,
        passed=False,
        matched=tuple(matched),
        diagnostic=format_diagnostic(execution, result.decision, matched),
    )
