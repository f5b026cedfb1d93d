"""Variable notation normalization.

Scenario authors reference variables in four interchangeable spellings::

    {{.BUCKET}}   canonical double-brace dotted form
    ${BUCKET}     brace-wrapped dollar form
    $BUCKET       bare dollar form
    <BUCKET>      angle-bracket form

``normalize_notation`` rewrites every reference to a *known* variable into
the canonical form, which is the only syntax the renderer executes. Anything
that does not name a known variable is left exactly as written, so IAM policy
variables like ``${aws:username}`` and unrelated ``<...>`` text survive.
"""

from __future__ import annotations

import re
from collections.abc import Collection

IDENTIFIER = r"[A-Za-z_][A-Za-z0-9_]*"

CANONICAL_PATTERN = re.compile(r"\{\{\s*\.(" + IDENTIFIER + r")\s*\}\}")
DOLLAR_BRACE_PATTERN = re.compile(r"\$\{(" + IDENTIFIER + r")\}")
# Greedy identifier match followed by a non-identifier lookahead: $BUCKET_NAME
# is captured whole and never split at $BUCKET.
DOLLAR_PATTERN = re.compile(r"\$(" + IDENTIFIER + r")(?![A-Za-z0-9_])")
ANGLE_PATTERN = re.compile(r"<(" + IDENTIFIER + r")>")


def canonical(name: str) -> str:
    """Return the canonical reference for ``name``."""
    return "{{." + name + "}}"


def normalize_notation(text: str, known: Collection[str]) -> str:
    """Rewrite all four notations referencing a known variable to ``{{.NAME}}``.

    Args:
        text: Arbitrary text (template file contents, an ARN, a context value).
        known: Variable names that are bound for this run. Case-sensitive.

    Returns:
        Text with every known reference in canonical form.
    """
    if not known:
        return text

    def _rewrite(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in known:
            return canonical(name)
        return match.group(0)

    # ${VAR} must run before $VAR so the brace form is consumed whole.
    text = CANONICAL_PATTERN.sub(_rewrite, text)
    text = DOLLAR_BRACE_PATTERN.sub(_rewrite, text)
    text = DOLLAR_PATTERN.sub(_rewrite, text)
    text = ANGLE_PATTERN.sub(_rewrite, text)
    return text


def referenced_names(text: str) -> set[str]:
    """Names referenced in canonical form (after normalization)."""
    return {m.group(1) for m in CANONICAL_PATTERN.finditer(text)}
