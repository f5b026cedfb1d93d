"""YAML scenario loader with ``extends`` inheritance."""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from politest.errors import ConfigurationError, CyclicInheritanceError
from politest.sources import read_source_text

from .schemas import (
    LIST_FIELDS,
    MAPPING_FIELDS,
    POLICY_PAIRS,
    SCALAR_FIELDS,
    ScenarioDocument,
    TestCase,
)

logger = logging.getLogger(__name__)

PATH_FIELDS = (
    "vars_file",
    "policy_template",
    "policy_json",
    "resource_policy_template",
    "resource_policy_json",
)
TEST_PATH_FIELDS = ("resource_policy_template", "resource_policy_json")


def absolute_join(base: Path | str, rel: str | Path) -> Path:
    """Join ``rel`` onto ``base`` unless it is already absolute; normalize the result."""
    rel = Path(rel)
    joined = rel if rel.is_absolute() else Path(base) / rel
    return Path(os.path.abspath(joined))


def load_yaml(path: Path | str, kind: str = "YAML file") -> Any:
    """Read and parse a YAML file.

    Raises:
        SourceNotFoundError: If the file doesn't exist
        ConfigurationError: If the file is not UTF-8 or YAML parsing fails
    """
    path = Path(path)
    text = read_source_text(path, kind)
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML: {e}", path=path) from e


def parse_scenario(path: Path | str) -> ScenarioDocument:
    """Parse a single scenario document without following ``extends``.

    Relative file references are anchored to the document's own directory.

    Raises:
        SourceNotFoundError: If the scenario file doesn't exist
        ConfigurationError: If the document is empty or invalid
    """
    path = Path(path)
    data = load_yaml(path, "scenario")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError("scenario must be a YAML mapping", path=path)

    try:
        document = ScenarioDocument.from_dict(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid scenario: {e}", path=path) from e

    return anchor_paths(document, path.parent)


def anchor_paths(document: ScenarioDocument, base: Path) -> ScenarioDocument:
    """Return a copy of ``document`` with every file reference made absolute."""
    update: dict[str, Any] = {}
    for name in PATH_FIELDS:
        value = getattr(document, name)
        if value:
            update[name] = str(absolute_join(base, value))
    if document.scp_paths:
        update["scp_paths"] = [str(absolute_join(base, p)) for p in document.scp_paths]
    if document.tests:
        update["tests"] = [_anchor_test(test, base) for test in document.tests]
    return document.model_copy(update=update)


def _anchor_test(test: TestCase, base: Path) -> TestCase:
    update = {
        name: str(absolute_join(base, getattr(test, name)))
        for name in TEST_PATH_FIELDS
        if getattr(test, name)
    }
    return test.model_copy(update=update) if update else test


def merge_scenarios(parent: ScenarioDocument, child: ScenarioDocument) -> ScenarioDocument:
    """Merge ``child`` over ``parent``.

    - Scalars: the child wins only when it supplies a non-empty value.
    - ``vars`` and ``expect``: merged key by key, child wins on conflict.
    - Lists: replaced wholesale when the child supplies any items.
    - Policy pairs: setting one side in the child clears the inherited other side.

    Neither input is modified. The merge is associative.
    """
    update: dict[str, Any] = {"extends": child.extends or parent.extends}

    for name in SCALAR_FIELDS:
        value = getattr(child, name)
        if value:
            update[name] = value

    for name in MAPPING_FIELDS:
        merged = dict(getattr(parent, name))
        merged.update(getattr(child, name))
        update[name] = merged

    for name in LIST_FIELDS:
        value = getattr(child, name)
        update[name] = list(value) if value else list(getattr(parent, name))

    for template_field, document_field in POLICY_PAIRS:
        template = getattr(child, template_field)
        document = getattr(child, document_field)
        if template:
            update[template_field] = template
            update[document_field] = ""
        if document:
            update[document_field] = document
            if not template:
                update[template_field] = ""

    return parent.model_copy(update=update)


def load_scenario(path: Path | str) -> ScenarioDocument:
    """Load a scenario and recursively merge its ``extends`` parents.

    A parent path is resolved relative to the directory of the document that
    names it.

    Args:
        path: Path to the scenario YAML file

    Returns:
        The effective scenario after inheritance

    Raises:
        SourceNotFoundError: If a scenario in the chain doesn't exist
        CyclicInheritanceError: If the chain revisits a scenario
        ConfigurationError: If a scenario in the chain is invalid
    """
    return _load_chain(Path(os.path.abspath(path)), ())


def _load_chain(path: Path, chain: Sequence[Path]) -> ScenarioDocument:
    if path in chain:
        raise CyclicInheritanceError([*chain, path])

    logger.debug("Loading scenario %s", path)
    document = parse_scenario(path)
    if not document.extends:
        return document

    parent_path = absolute_join(path.parent, document.extends)
    logger.debug("Scenario %s extends %s", path, parent_path)
    parent = _load_chain(parent_path, (*chain, path))
    return merge_scenarios(parent, document)


def load_variables(scenario: ScenarioDocument) -> dict[str, Any]:
    """Build the variable bindings for a scenario.

    Bindings from ``vars_file`` come first; inline ``vars`` override them.

    Raises:
        SourceNotFoundError: If the variables file doesn't exist
        ConfigurationError: If the variables file is not a mapping
    """
    variables: dict[str, Any] = {}
    if scenario.vars_file:
        logger.debug("Loading variables from %s", scenario.vars_file)
        data = load_yaml(scenario.vars_file, "variables file")
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ConfigurationError("variables file must be a YAML mapping", path=scenario.vars_file)
        variables.update({str(k): v for k, v in data.items()})
    variables.update(scenario.vars)
    return variables
