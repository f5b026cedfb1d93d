"""Policy simulator protocol.

This module defines the interface the test runner uses to evaluate one
atomic execution. The AWS implementation lives in ``iam_simulator``; tests
use in-memory fakes.

Example:
    >>> class AlwaysAllow:
    ...     def simulate(self, request: SimulationRequest) -> SimulationResult:
    ...         return SimulationResult(decision="allowed")
    >>>
    >>> isinstance(AlwaysAllow(), PolicySimulatorProtocol)
    True
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from politest.config.schemas import ContextEntry


@dataclass(frozen=True)
class SimulationRequest:
    """Payload for one simulator call.

    Attributes:
        policy_documents: Candidate identity policies.
        permissions_boundary_documents: Permissions boundary (merged guardrails).
        resource_policy: Resource-based policy, or None.
        action: The single action to evaluate.
        resource_arns: All resources evaluated together in this call.
        context_entries: Condition context.
        caller_arn: Principal to simulate as, or None.
        resource_owner: Account owning the resources, or None.
        resource_handling_option: EC2 scenario name, or None.
    """

    policy_documents: tuple[str, ...]
    permissions_boundary_documents: tuple[str, ...]
    resource_policy: str | None
    action: str
    resource_arns: tuple[str, ...]
    context_entries: tuple[ContextEntry, ...] = ()
    caller_arn: str | None = None
    resource_owner: str | None = None
    resource_handling_option: str | None = None


@dataclass(frozen=True)
class SimulationResult:
    """Simulator verdict for one request.

    Attributes:
        decision: Decision string (``allowed``, ``explicitDeny``, ``implicitDeny``),
            or None when the simulator returned no evaluation results.
        matched_statements: Tracking tokens (or raw identifiers) of matched statements.
        raw: Simulator response, kept for ``--save``.
    """

    decision: str | None
    matched_statements: tuple[str, ...] = ()
    raw: Any = field(default=None, compare=False)


@runtime_checkable
class PolicySimulatorProtocol(Protocol):
    """Protocol for policy simulators.

    Implementations don't need to inherit from this class. Errors
    (network, throttling, authorization) must propagate: the runner does
    not retry.
    """

    def simulate(self, request: SimulationRequest) -> SimulationResult:
        """Evaluate one action against one resource set."""
        ...
