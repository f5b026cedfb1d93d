"""Exception hierarchy for politest.

Fatal conditions (configuration, rendering, missing sources) abort a run
before any simulator call is made. Expectation mismatches are collected
during the run and only raised when assertion escalation is enabled.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from politest.runner.evaluator import TestOutcome


class PolitestError(Exception):
    """Base class for all politest errors."""


class ConfigurationError(PolitestError):
    """Scenario is structurally invalid (conflicting or missing fields)."""

    def __init__(self, message: str, path: Path | str | None = None, field: str | None = None):
        self.path = Path(path) if path is not None else None
        self.field = field
        parts = []
        if self.path is not None:
            parts.append(str(self.path))
        if field:
            parts.append(f"'{field}'")
        prefix = ": ".join(parts)
        super().__init__(f"{prefix}: {message}" if prefix else message)


class CyclicInheritanceError(ConfigurationError):
    """A chain of ``extends`` links revisits a scenario already being loaded."""

    def __init__(self, chain: Sequence[Path]):
        self.chain = list(chain)
        rendered = " -> ".join(str(p) for p in self.chain)
        super().__init__(f"cyclic 'extends' chain: {rendered}", path=self.chain[-1], field="extends")


class PolicySchemaError(ConfigurationError):
    """Policy contains fields outside the IAM policy grammar (strict mode)."""

    def __init__(self, label: str, violations: Sequence[str]):
        self.label = label
        self.violations = list(violations)
        listing = "\n".join(f"  {v}" for v in self.violations)
        super().__init__(
            f"{label} contains non-IAM fields:\n{listing}\n\n"
            "Use standard IAM schema fields only, or drop --strict-policy"
        )


class RenderError(PolitestError):
    """Base class for template rendering failures."""


class MissingVariableError(RenderError):
    """A template references a variable that has no binding."""

    def __init__(self, name: str, template: str | None = None):
        self.name = name
        self.template = template
        where = f" in {template}" if template else ""
        super().__init__(f"undefined variable '{name}'{where}")


class MalformedOutputError(RenderError):
    """A JSON template rendered to something that is not valid JSON."""

    def __init__(self, template: str | None, reason: str):
        self.template = template
        self.reason = reason
        where = f" {template}" if template else ""
        super().__init__(f"invalid JSON produced by template{where}: {reason}")


class SourceNotFoundError(PolitestError, FileNotFoundError):
    """A scenario, variables file, policy or fragment does not exist."""

    def __init__(self, path: Path | str, kind: str = "file"):
        self.path = Path(path)
        self.kind = kind
        super().__init__(f"{kind} not found: {self.path}")

    def __str__(self) -> str:
        return f"{self.kind} not found: {self.path}"


class ExpectationMismatchError(PolitestError):
    """One or more atomic executions did not produce the expected decision."""

    def __init__(self, failures: Sequence[TestOutcome]):
        self.failures = list(failures)
        super().__init__(f"{len(self.failures)} test(s) did not match their expected decision")
