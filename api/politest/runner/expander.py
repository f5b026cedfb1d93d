"""Test expansion.

A declared test may name one action or several. Actions fan out into one
atomic execution each; the resource list is never split, every execution
carries all of the test's resources. Context from the scenario and the test
is unioned. Caller, resource owner, resource handling option and resource
policy are resolved independently, each from the test override, else the
scenario default, else absent.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from politest.config.schemas import ContextEntry, PolicyRef, ScenarioDocument, TestCase
from politest.errors import ConfigurationError
from politest.template import render_string, render_strings

ResourcePolicyLoader = Callable[[PolicyRef], str]


@dataclass(frozen=True)
class AtomicExecution:
    """One action against one resource set: the unit sent to the simulator.

    Attributes:
        test_index: 1-based position of the declared test in the scenario.
        name: Test name, or ``"<action> on <first resource>"`` when unnamed.
        named: Whether ``name`` was authored.
        action: Rendered action.
        resources: Rendered resource ARNs (empty means ``*``).
        context: Scenario context followed by test context, rendered.
        caller_arn: Effective caller identity, or None.
        resource_owner: Effective resource owner, or None.
        resource_handling_option: Effective EC2 scenario, or None.
        resource_policy: Effective resource policy text, or None.
        expect: Expected decision as authored.
    """

    test_index: int
    name: str
    named: bool
    action: str
    resources: tuple[str, ...]
    context: tuple[ContextEntry, ...]
    caller_arn: str | None
    resource_owner: str | None
    resource_handling_option: str | None
    resource_policy: str | None
    expect: str

    @property
    def resource_display(self) -> str:
        if not self.resources:
            return "*"
        if len(self.resources) == 1:
            return self.resources[0]
        return "[" + ", ".join(self.resources) + "]"


@dataclass(frozen=True)
class ScenarioDefaults:
    """Scenario-level values every test inherits unless it overrides them."""

    context: tuple[ContextEntry, ...] = ()
    caller_arn: str = ""
    resource_owner: str = ""
    resource_handling_option: str = ""
    resource_policy: str = ""
    scenario_path: Path | None = None

    @classmethod
    def from_scenario(
        cls,
        scenario: ScenarioDocument,
        resource_policy: str = "",
        scenario_path: Path | None = None,
    ) -> ScenarioDefaults:
        return cls(
            context=tuple(scenario.context),
            caller_arn=scenario.caller_arn,
            resource_owner=scenario.resource_owner,
            resource_handling_option=scenario.resource_handling_option,
            resource_policy=resource_policy,
            scenario_path=scenario_path,
        )


def effective_tests(scenario: ScenarioDocument, path: Path | None = None) -> list[TestCase]:
    """Tests to run for a scenario.

    Scenarios in the legacy format (top-level ``actions``, ``resources`` and an
    ``expect`` mapping, no ``tests``) yield one test per action.

    Raises:
        ConfigurationError: A legacy action has no expectation.
    """
    if scenario.tests or not scenario.actions:
        return list(scenario.tests)

    tests = []
    for action in scenario.actions:
        if action not in scenario.expect:
            raise ConfigurationError(
                f"legacy action '{action}' has no entry in 'expect'", path=path, field="expect"
            )
        tests.append(TestCase(
            action=action,
            resources=list(scenario.resources),
            expect=scenario.expect[action],
        ))
    return tests


def select_tests(
    tests: Sequence[TestCase],
    names: Iterable[str] | None,
    path: Path | None = None,
) -> list[tuple[int, TestCase]]:
    """Pair tests with their 1-based index, keeping only ``names`` if given.

    Raises:
        ConfigurationError: A requested name matches no test.
    """
    indexed = list(enumerate(tests, start=1))
    if not names:
        return indexed
    wanted = [n.strip() for n in names if n.strip()]
    if not wanted:
        return indexed
    known = {t.name for t in tests if t.name}
    unknown = [n for n in wanted if n not in known]
    if unknown:
        raise ConfigurationError(f"no test named: {', '.join(unknown)}", path=path, field="tests")
    return [(i, t) for i, t in indexed if t.name in wanted]


def _render_context(entries: Iterable[ContextEntry], variables: Mapping[str, Any]) -> list[ContextEntry]:
    return [
        entry.model_copy(update={"values": tuple(render_strings(entry.values, variables))})
        for entry in entries
    ]


def _effective(override: str, default: str, variables: Mapping[str, Any] | None) -> str | None:
    value = override or default
    if not value:
        return None
    return render_string(value, variables) if variables is not None else value


def expand_test(
    test: TestCase,
    defaults: ScenarioDefaults,
    variables: Mapping[str, Any],
    index: int = 1,
    load_resource_policy: ResourcePolicyLoader | None = None,
) -> list[AtomicExecution]:
    """Expand one declared test into atomic executions, one per action.

    Raises:
        ConfigurationError: Both singular and plural forms are declared, no
            action is declared, or a resource policy override is given in
            both forms.
        MissingVariableError: A rendered field references an unbound variable.
    """
    label = test.name or f"#{index}"
    path = defaults.scenario_path
    if test.action and test.actions:
        raise ConfigurationError(
            f"test {label}: cannot specify both 'action' and 'actions'", path=path, field="actions"
        )
    if test.resource and test.resources:
        raise ConfigurationError(
            f"test {label}: cannot specify both 'resource' and 'resources'", path=path, field="resources"
        )
    actions = list(test.actions) if test.actions else ([test.action] if test.action else [])
    if not actions:
        raise ConfigurationError(
            f"test {label}: must specify either 'action' or 'actions'", path=path, field="action"
        )

    declared = [test.resource] if test.resource else list(test.resources)
    resources = tuple(render_strings(declared, variables))
    context = tuple(_render_context(defaults.context, variables) + _render_context(test.context, variables))

    resource_policy = defaults.resource_policy or None
    override = test.resource_policy(path)
    if override is not None:
        if load_resource_policy is None:
            raise ConfigurationError(
                f"test {label}: resource policy override cannot be loaded here",
                path=path,
                field="resource_policy_json",
            )
        resource_policy = load_resource_policy(override)

    caller_arn = _effective(test.caller_arn, defaults.caller_arn, variables)
    resource_owner = _effective(test.resource_owner, defaults.resource_owner, variables)
    handling = _effective(test.resource_handling_option, defaults.resource_handling_option, None)

    executions = []
    for raw_action in actions:
        action = render_string(raw_action, variables)
        name = test.name or f"{action} on {resources[0] if resources else '*'}"
        executions.append(AtomicExecution(
            test_index=index,
            name=name,
            named=bool(test.name),
            action=action,
            resources=resources,
            context=context,
            caller_arn=caller_arn,
            resource_owner=resource_owner,
            resource_handling_option=handling,
            resource_policy=resource_policy,
            expect=test.expect,
        ))
    return executions


def expand_tests(
    tests: Iterable[tuple[int, TestCase]],
    defaults: ScenarioDefaults,
    variables: Mapping[str, Any],
    load_resource_policy: ResourcePolicyLoader | None = None,
) -> list[AtomicExecution]:
    """Expand indexed tests in order. All configuration errors surface before any run."""
    executions: list[AtomicExecution] = []
    for index, test in tests:
        executions.extend(expand_test(test, defaults, variables, index, load_resource_policy))
    return executions
