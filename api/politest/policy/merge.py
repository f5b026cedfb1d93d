"""Guardrail fragment merging.

Independently authored SCP/RCP fragments are concatenated into one
permissions-boundary document. Each fragment is tracked on its own, so every
merged statement keeps a token that points back to its fragment file.
"""

from __future__ import annotations

import glob
import json
import logging
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from politest.errors import ConfigurationError, SourceNotFoundError
from politest.policy.provenance import (
    POLICY_VERSION,
    PolicySource,
    extract_statements,
    tag_statements,
    to_json_pretty,
)
from politest.sources import read_source_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergedDocument:
    """Result of merging fragments.

    Attributes:
        document: ``{"Version": ..., "Statement": [...]}`` in fragment order.
        sources: Token -> provenance across all fragments.
        files: Fragment files in merge order.
    """

    document: dict[str, Any]
    sources: Mapping[str, PolicySource]
    files: tuple[Path, ...]

    @property
    def statements(self) -> list[Any]:
        return self.document["Statement"]

    @property
    def text(self) -> str:
        return to_json_pretty(self.document)


def expand_globs(base: Path | str, patterns: Iterable[str]) -> list[Path]:
    """Expand fragment patterns relative to ``base``.

    Returns deduplicated absolute paths sorted lexicographically, so merge
    order never depends on pattern order or filesystem traversal order. A
    pattern matching nothing falls back to its literal path when that exists.

    Raises:
        SourceNotFoundError: A pattern matches no file at all.
    """
    seen: set[Path] = set()
    for pattern in patterns:
        joined = pattern if os.path.isabs(pattern) else os.path.join(base, pattern)
        matches = [m for m in glob.glob(joined, recursive=True) if os.path.isfile(m)]
        if not matches and os.path.isfile(joined):
            matches = [joined]
        if not matches:
            raise SourceNotFoundError(joined, "policy fragment")
        seen.update(Path(os.path.abspath(m)) for m in matches)
    return sorted(seen, key=lambda p: str(p))


def merge_fragments(files: Sequence[Path | str], label_root: Path | None = None) -> MergedDocument:
    """Merge fragment files into one policy document with provenance.

    - A document with a ``Statement`` array contributes every element.
    - A document with a single ``Statement`` object contributes that object.
    - Anything else is contributed verbatim as one opaque statement; the
      simulator is left to reject it.

    Args:
        files: Fragment paths, typically from ``expand_globs``.
        label_root: Directory tracking tokens are made relative to. Defaults
            to the fragments' common directory.

    Raises:
        SourceNotFoundError: A fragment file doesn't exist.
        ConfigurationError: A fragment is not valid UTF-8 or not valid JSON.
    """
    statements: list[Any] = []
    sources: dict[str, PolicySource] = {}
    ordered = tuple(Path(os.path.abspath(f)) for f in files)
    if label_root is None and ordered:
        # relative to the common directory: distinct files never share a prefix
        label_root = Path(os.path.commonpath([p.parent for p in ordered]))

    for path in ordered:
        text = read_source_text(path, "policy fragment")
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"invalid JSON in policy fragment: {e}", path=path) from e

        tagged, fragment_sources = tag_statements(
            extract_statements(document), path, text, label_root
        )
        statements.extend(tagged)
        sources.update(fragment_sources)
        logger.debug("Merged %d statement(s) from %s", len(tagged), path)

    return MergedDocument(
        document={"Version": POLICY_VERSION, "Statement": statements},
        sources=MappingProxyType(sources),
        files=ordered,
    )
