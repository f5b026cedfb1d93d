"""Strict template rendering.

Canonical ``{{.NAME}}`` references (optionally dotted, ``{{.account.id}}``)
are resolved by key lookup in the variable table; all other text passes
through untouched, so JSON braces and IAM ``${aws:...}`` variables never need
escaping. Reference names are never evaluated as expressions, so names such
as ``none`` or ``items`` mean the bound value and nothing else. An unbound
name raises ``MissingVariableError``: an empty substitution could silently
yield a broader policy than intended.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from politest.errors import MalformedOutputError, MissingVariableError
from politest.sources import read_source_text
from politest.template.notation import normalize_notation

logger = logging.getLogger(__name__)

REFERENCE_PATTERN = re.compile(
    r"\{\{\s*\.([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)\s*\}\}"
)


def resolve_reference(reference: str, variables: Mapping[str, Any], template: str | None = None) -> Any:
    """Value bound to a dotted ``reference``, walking nested mappings by key.

    Raises:
        MissingVariableError: A segment is not a key of the value it indexes.
    """
    value: Any = variables
    for part in reference.split("."):
        if not isinstance(value, Mapping) or part not in value:
            raise MissingVariableError(reference, template)
        value = value[part]
    return value


def format_value(value: Any) -> str:
    """Format a bound value for substitution into text.

    Booleans use JSON spelling and composite values are emitted as JSON, so
    templates like ``"Bool": {{.enabled}}`` produce valid policy documents.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value)
    return str(value)


def render_canonical(text: str, variables: Mapping[str, Any], template: str | None = None) -> str:
    """Execute canonical-syntax text against ``variables``.

    Raises:
        MissingVariableError: A referenced name (or nested key) is unbound.
    """

    def _substitute(match: re.Match[str]) -> str:
        return format_value(resolve_reference(match.group(1), variables, template))

    return REFERENCE_PATTERN.sub(_substitute, text)


def render_string(text: str, variables: Mapping[str, Any], template: str | None = None) -> str:
    """Normalize any of the four notations in ``text`` and render it."""
    normalized = normalize_notation(text, variables.keys())
    return render_canonical(normalized, variables, template)


def render_strings(values: Iterable[str], variables: Mapping[str, Any]) -> list[str]:
    """Render each string in ``values``."""
    return [render_string(v, variables) for v in values]


def minify_json(text: str, template: str | None = None) -> str:
    """Validate ``text`` as JSON and return its compact canonical form.

    Idempotent: minifying an already-minified document returns it unchanged.

    Raises:
        MalformedOutputError: ``text`` is not valid JSON.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedOutputError(template, str(e)) from e
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def render_json(text: str, variables: Mapping[str, Any], template: str | None = None) -> str:
    """Render a JSON-bearing template and return minified JSON."""
    return minify_json(render_string(text, variables, template), template)


def render_template_file_json(path: Path | str, variables: Mapping[str, Any]) -> str:
    """Read a JSON template file, render it, validate and minify the output.

    Raises:
        SourceNotFoundError: The template file does not exist.
        ConfigurationError: The template file is not valid UTF-8.
        MissingVariableError: The template references an unbound variable.
        MalformedOutputError: The rendered output is not valid JSON.
    """
    path = Path(path)
    text = read_source_text(path, "policy template")
    logger.debug("Rendering JSON template %s", path)
    return render_json(text, variables, str(path))
