"""IAM policy grammar checks.

Authors may annotate policies with metadata the IAM grammar does not accept
(``Description``, ``Owner``, ...). Outgoing documents are always stripped of
such fields; in strict mode their presence is an error instead.
"""

from __future__ import annotations

from typing import Any

from politest.errors import PolicySchemaError

TOP_LEVEL_FIELDS = frozenset({"Version", "Id", "Statement"})
STATEMENT_FIELDS = frozenset({
    "Sid",
    "Effect",
    "Principal",
    "NotPrincipal",
    "Action",
    "NotAction",
    "Resource",
    "NotResource",
    "Condition",
})


def strip_non_iam_fields(document: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``document`` keeping only IAM grammar fields."""
    cleaned: dict[str, Any] = {}
    for key, value in document.items():
        if key not in TOP_LEVEL_FIELDS:
            continue
        if key == "Statement":
            cleaned[key] = _strip_statements(value)
        else:
            cleaned[key] = value
    return cleaned


def _strip_statements(statements: Any) -> Any:
    if isinstance(statements, dict):
        return _strip_statement(statements)
    if not isinstance(statements, list):
        return statements
    return [_strip_statement(s) if isinstance(s, dict) else s for s in statements]


def _strip_statement(statement: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in statement.items() if k in STATEMENT_FIELDS}


def find_non_iam_fields(document: dict[str, Any]) -> list[str]:
    """List fields outside the IAM grammar, e.g. ``Statement[1]: Owner``."""
    violations = [f"Top-level: {key}" for key in document if key not in TOP_LEVEL_FIELDS]
    statements = document.get("Statement")
    if isinstance(statements, dict):
        statements = [statements]
    if isinstance(statements, list):
        for i, statement in enumerate(statements):
            if not isinstance(statement, dict):
                continue
            violations.extend(
                f"Statement[{i}]: {key}" for key in statement if key not in STATEMENT_FIELDS
            )
    return violations


def validate_iam_fields(document: dict[str, Any], label: str) -> None:
    """Raise ``PolicySchemaError`` if ``document`` has non-IAM fields."""
    violations = find_non_iam_fields(document)
    if violations:
        raise PolicySchemaError(label, violations)
