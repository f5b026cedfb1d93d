"""Prepare a scenario for simulation without contacting the simulator.

Preparation resolves the scenario chain, binds variables, renders or loads
the identity policy, merges guardrail fragments into the permissions
boundary, loads the resource policy, applies IAM grammar checks and injects
tracking tokens. Everything that can be wrong with a scenario surfaces here,
before the first simulator call.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from politest.config import ScenarioDocument, load_scenario, load_variables
from politest.config.schemas import PolicyDocumentRef, PolicyRef, PolicyTemplateRef
from politest.errors import ConfigurationError
from politest.policy.merge import expand_globs, merge_fragments
from politest.policy.provenance import PolicySourceMap, to_json_pretty, track_policy
from politest.policy.schema import strip_non_iam_fields, validate_iam_fields
from politest.sources import read_source_text
from politest.template import render_template_file_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadedPolicy:
    """A policy document and the raw text of the file it came from."""

    path: Path
    document: dict[str, Any]
    source_text: str


def load_policy(ref: PolicyRef, variables: Mapping[str, Any], label: str) -> LoadedPolicy:
    """Render a template or read a JSON policy file.

    Raises:
        SourceNotFoundError: The policy file doesn't exist.
        MissingVariableError / MalformedOutputError: Template rendering failed.
        ConfigurationError: The file is not UTF-8 or not a JSON object.
    """
    path = Path(os.path.abspath(ref.path))
    source_text = read_source_text(path, label)

    if isinstance(ref, PolicyTemplateRef):
        logger.debug("Rendering %s template %s", label, path)
        rendered = render_template_file_json(path, variables)
        document = json.loads(rendered)
    else:
        logger.debug("Loading %s from %s", label, path)
        try:
            document = json.loads(source_text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"invalid JSON in {label}: {e}", path=path) from e

    if not isinstance(document, dict):
        raise ConfigurationError(f"{label} must be a JSON object", path=path)
    return LoadedPolicy(path=path, document=document, source_text=source_text)


def finalize_document(document: dict[str, Any], label: str, strict: bool) -> dict[str, Any]:
    """Apply strict-mode validation, then strip non-IAM fields."""
    if strict:
        validate_iam_fields(document, label)
    return strip_non_iam_fields(document)


@dataclass(frozen=True)
class PreparedSimulation:
    """Everything a run needs, built once and read-only afterwards.

    Attributes:
        scenario_path: Absolute path of the scenario that was loaded.
        scenario: Effective scenario after ``extends`` resolution.
        variables: Variable bindings (``vars_file`` overlaid by ``vars``).
        identity_policy: Tracked identity policy text to submit.
        permissions_boundary: Tracked merged guardrail text, or "".
        resource_policy: Scenario-level resource policy text, or "".
        source_map: Provenance of every tracked statement.
        fragment_files: Guardrail fragments in merge order.
        strict_policy: Whether non-IAM fields are rejected.
    """

    scenario_path: Path
    scenario: ScenarioDocument
    variables: Mapping[str, Any]
    identity_policy: str
    permissions_boundary: str
    resource_policy: str
    source_map: PolicySourceMap
    fragment_files: tuple[Path, ...] = ()
    strict_policy: bool = False
    warnings: tuple[str, ...] = field(default=())

    @property
    def base_dir(self) -> Path:
        return self.scenario_path.parent

    def load_resource_policy(self, ref: PolicyRef) -> str:
        """Load a resource policy (e.g. a per-test override) in submit form."""
        loaded = load_policy(ref, self.variables, "resource policy")
        return to_json_pretty(finalize_document(loaded.document, "resource policy", self.strict_policy))


SCP_APPROXIMATION_WARNING = (
    "SCP/RCP fragments are simulated as a permissions boundary. This approximates "
    "organization policy evaluation and may differ from real AWS Organizations behaviour."
)


def prepare_simulation(scenario_path: Path | str, strict_policy: bool = False) -> PreparedSimulation:
    """Load and compose everything a run needs.

    Args:
        scenario_path: Scenario YAML to load.
        strict_policy: Reject policies with non-IAM fields instead of stripping them.

    Raises:
        ConfigurationError: Missing or conflicting fields, or no tests.
        SourceNotFoundError: A referenced file doesn't exist.
        MissingVariableError / MalformedOutputError: Template rendering failed.
    """
    from politest.runner.expander import effective_tests

    scenario_path = Path(os.path.abspath(scenario_path))
    scenario = load_scenario(scenario_path)
    variables = load_variables(scenario)
    if variables:
        logger.debug("Variables available: %s", ", ".join(sorted(variables)))

    policy_ref = scenario.policy(scenario_path)
    if policy_ref is None:
        raise ConfigurationError(
            "scenario must include 'policy_json' or 'policy_template'", path=scenario_path
        )
    resource_ref = scenario.resource_policy(scenario_path)
    tests = effective_tests(scenario, scenario_path)
    if not tests:
        raise ConfigurationError(
            "scenario must include 'tests' array with at least one test case",
            path=scenario_path,
            field="tests",
        )

    label_root = scenario_path.parent

    identity = load_policy(policy_ref, variables, "identity policy")
    identity_document = finalize_document(identity.document, "identity policy", strict_policy)
    tracked_identity = track_policy(
        identity_document, identity.path, identity.source_text, label_root
    )
    sources = dict(tracked_identity.sources)

    boundary_text = ""
    fragment_files: tuple[Path, ...] = ()
    warnings: list[str] = []
    if scenario.scp_paths:
        files = expand_globs(label_root, scenario.scp_paths)
        for f in files:
            logger.debug("Guardrail fragment: %s", f)
        merged = merge_fragments(files, label_root)
        boundary_document = finalize_document(merged.document, "SCP/RCP fragments", strict_policy)
        boundary_text = to_json_pretty(boundary_document)
        sources.update(merged.sources)
        fragment_files = merged.files
        warnings.append(SCP_APPROXIMATION_WARNING)

    resource_text = ""
    if resource_ref is not None:
        resource = load_policy(resource_ref, variables, "resource policy")
        resource_text = to_json_pretty(
            finalize_document(resource.document, "resource policy", strict_policy)
        )

    source_map = PolicySourceMap(
        sources=MappingProxyType(sources),
        identity_policy=tracked_identity.text,
        permissions_boundary=boundary_text,
        resource_policy=resource_text,
    )

    return PreparedSimulation(
        scenario_path=scenario_path,
        scenario=scenario,
        variables=MappingProxyType(dict(variables)),
        identity_policy=tracked_identity.text,
        permissions_boundary=boundary_text,
        resource_policy=resource_text,
        source_map=source_map,
        fragment_files=fragment_files,
        strict_policy=strict_policy,
        warnings=tuple(warnings),
    )
