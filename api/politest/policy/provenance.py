"""Statement provenance tracking.

Every statement sent to the simulator is relabelled with a tracking token
(``<source>#stmt:<ordinal>``) written into its ``Sid``. The simulator reports
which statements matched; the token leads back to a ``PolicySource`` record
holding the file, the 1-based line range of the statement as it appears in
the original file, and the statement's original ``Sid``.

Line ranges come from a scan of the raw source text, not from the parsed
JSON, so they match what a reader sees in the file even when the source is
an unrendered template containing ``{{.VAR}}`` or ``$VAR`` references.
"""

from __future__ import annotations

import bisect
import copy
import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from politest.sources import read_source_text

logger = logging.getLogger(__name__)

POLICY_VERSION = "2012-10-17"
TOKEN_SEPARATOR = "#stmt:"


# ============================================================================
# Provenance records
# ============================================================================

@dataclass(frozen=True)
class PolicySource:
    """Where one merged statement came from.

    Attributes:
        file_path: Absolute path of the source file.
        start_line: First line of the statement (1-based, inclusive), or
            None when the statement could not be located in the text.
        end_line: Last line of the statement (1-based, inclusive).
        label: The statement's original ``Sid``, if it had one.
        ordinal: Position of the statement in its source document.
    """

    file_path: Path
    start_line: int | None
    end_line: int | None
    label: str | None = None
    ordinal: int = 0

    @property
    def line_range(self) -> str:
        if self.start_line is None or self.end_line is None:
            return "?"
        if self.start_line == self.end_line:
            return str(self.start_line)
        return f"{self.start_line}-{self.end_line}"

    def read_lines(self) -> list[str]:
        """Read the statement's lines from disk.

        Always re-reads the file so the excerpt reflects its current content.
        Returns an empty list if the file or range is no longer available.
        """
        if self.start_line is None or self.end_line is None:
            return []
        try:
            text = self.file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            logger.warning("Cannot re-read policy source %s", self.file_path)
            return []
        # same line breaks as LineIndex
        lines = text.split("\n")
        return lines[self.start_line - 1:self.end_line]


@dataclass(frozen=True)
class TrackedPolicy:
    """A policy document with tracking tokens injected.

    Attributes:
        document: Parsed document with tokens in place of original ``Sid`` s.
        sources: Token -> provenance for every tracked statement.
    """

    document: dict[str, Any]
    sources: Mapping[str, PolicySource]

    @property
    def text(self) -> str:
        """Indented JSON, so simulator line positions point at single statements."""
        return to_json_pretty(self.document)


@dataclass(frozen=True)
class PolicySourceMap:
    """Provenance for one run: token table plus the documents actually sent.

    Built once while preparing a run and read-only afterwards.
    """

    sources: Mapping[str, PolicySource] = field(default_factory=lambda: MappingProxyType({}))
    identity_policy: str = ""
    permissions_boundary: str = ""
    resource_policy: str = ""

    def lookup(self, token: str) -> PolicySource | None:
        return self.sources.get(token)

    def __contains__(self, token: object) -> bool:
        return token in self.sources

    def __len__(self) -> int:
        return len(self.sources)


# ============================================================================
# Raw text scanning
# ============================================================================

@dataclass(frozen=True)
class TextSpan:
    """Character offsets [start, end) of one JSON value in a source text."""

    start: int
    end: int


class SourceScanError(ValueError):
    """Raw text is too malformed to locate statement boundaries."""


_BARE_TERMINATORS = frozenset(",:]}") | frozenset(" \t\r\n")


class _Scanner:
    """Tolerant JSON-shaped scanner.

    Understands strings (with escapes), objects, arrays and bare tokens, and
    treats an unquoted ``{{ ... }}`` template reference as an opaque bare
    token, so unrendered templates can be scanned as well as plain JSON.
    """

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def skip_ws(self) -> None:
        n = len(self.text)
        while self.pos < n and self.text[self.pos] in " \t\r\n":
            self.pos += 1

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def expect(self, ch: str) -> None:
        self.skip_ws()
        if self.peek() != ch:
            raise SourceScanError(f"expected '{ch}' at offset {self.pos}")
        self.pos += 1

    def read_string(self) -> str:
        start = self.pos
        self.pos += 1  # opening quote
        n = len(self.text)
        while self.pos < n:
            ch = self.text[self.pos]
            if ch == "\\":
                self.pos += 2
                continue
            self.pos += 1
            if ch == '"':
                raw = self.text[start:self.pos]
                try:
                    return json.loads(raw)
                except json.JSONDecodeError:
                    return raw[1:-1]
        raise SourceScanError(f"unterminated string at offset {start}")

    def skip_template_reference(self) -> None:
        end = self.text.find("}}", self.pos + 2)
        if end < 0:
            raise SourceScanError(f"unterminated template reference at offset {self.pos}")
        self.pos = end + 2

    def skip_bare(self) -> None:
        n = len(self.text)
        start = self.pos
        while self.pos < n and self.text[self.pos] not in _BARE_TERMINATORS:
            if self.text.startswith("{{", self.pos):
                self.skip_template_reference()
                continue
            self.pos += 1
        if self.pos == start:
            raise SourceScanError(f"unexpected character at offset {start}")

    def skip_value(self) -> TextSpan:
        self.skip_ws()
        start = self.pos
        ch = self.peek()
        if ch == '"':
            self.read_string()
        elif self.text.startswith("{{", self.pos):
            self.skip_bare()
        elif ch == "{":
            self.scan_object()
        elif ch == "[":
            self.scan_array()
        elif ch:
            self.skip_bare()
        else:
            raise SourceScanError("unexpected end of text")
        return TextSpan(start, self.pos)

    def scan_object(self, wanted_key: str | None = None) -> TextSpan | None:
        """Skip an object; return the span of ``wanted_key``'s value if present."""
        found: TextSpan | None = None
        self.expect("{")
        self.skip_ws()
        if self.peek() == "}":
            self.pos += 1
            return None
        while True:
            self.skip_ws()
            if self.peek() == '"':
                key = self.read_string()
            else:
                key = None
                self.skip_bare()
            self.expect(":")
            span = self.skip_value()
            if wanted_key is not None and key == wanted_key and found is None:
                found = span
            self.skip_ws()
            ch = self.peek()
            self.pos += 1
            if ch == "}":
                return found
            if ch != ",":
                raise SourceScanError(f"expected ',' or '}}' at offset {self.pos - 1}")

    def scan_array(self) -> list[TextSpan]:
        elements: list[TextSpan] = []
        self.expect("[")
        self.skip_ws()
        if self.peek() == "]":
            self.pos += 1
            return elements
        while True:
            elements.append(self.skip_value())
            self.skip_ws()
            ch = self.peek()
            self.pos += 1
            if ch == "]":
                return elements
            if ch != ",":
                raise SourceScanError(f"expected ',' or ']' at offset {self.pos - 1}")


def statement_text_spans(text: str) -> list[TextSpan]:
    """Locate each statement of a policy document in raw source text.

    - Object with a ``Statement`` array: one span per array element.
    - Object with a single ``Statement`` object: that object.
    - Object without ``Statement`` (a bare statement) or any other value:
      the whole top-level value.

    Raises:
        SourceScanError: The text cannot be scanned.
    """
    scanner = _Scanner(text)
    scanner.skip_ws()
    if scanner.peek() != "{":
        return [scanner.skip_value()]

    start = scanner.pos
    statement_span = scanner.scan_object(wanted_key="Statement")
    whole = TextSpan(start, scanner.pos)
    if statement_span is None:
        return [whole]

    inner = _Scanner(text)
    inner.pos = statement_span.start
    if inner.peek() == "[":
        return inner.scan_array()
    return [statement_span]


class LineIndex:
    """Offset -> 1-based line number lookup for one text."""

    def __init__(self, text: str):
        self._starts = [0]
        self._starts.extend(i + 1 for i, ch in enumerate(text) if ch == "\n")

    def line_of(self, offset: int) -> int:
        return bisect.bisect_right(self._starts, offset)

    def span_lines(self, span: TextSpan) -> tuple[int, int]:
        # end is exclusive; the last character of the value sits at end - 1
        return self.line_of(span.start), self.line_of(max(span.start, span.end - 1))


def statement_line_spans(text: str) -> list[tuple[int, int]]:
    """1-based inclusive line ranges of each statement in ``text``.

    Returns an empty list if the text cannot be scanned.
    """
    try:
        spans = statement_text_spans(text)
    except SourceScanError as e:
        logger.debug("Cannot locate statements in source text: %s", e)
        return []
    index = LineIndex(text)
    return [index.span_lines(span) for span in spans]


def statement_at_line(document_text: str, line: int) -> dict[str, Any] | None:
    """Return the statement object whose text covers ``line`` (1-based).

    Used to map a simulator's reported statement position in a submitted
    document back to that statement's tracking ``Sid``.
    """
    ranges = statement_line_spans(document_text)
    try:
        statements = extract_statements(json.loads(document_text))
    except json.JSONDecodeError:
        return None
    for (start, end), statement in zip(ranges, statements):
        if start <= line <= end and isinstance(statement, dict):
            return statement
    return None


# ============================================================================
# Token injection
# ============================================================================

def extract_statements(document: Any) -> list[Any]:
    """Statements of a parsed document, following the same shape rules as the scanner."""
    if isinstance(document, dict):
        if "Statement" in document:
            statements = document["Statement"]
            return list(statements) if isinstance(statements, list) else [statements]
        return [document]
    return [document]


def token_prefix(source_path: Path, label_root: Path | None = None) -> str:
    """Readable, per-file unique prefix for tracking tokens.

    Relative to ``label_root`` when given (unique for distinct files),
    otherwise the file's basename.
    """
    if label_root is not None:
        try:
            return Path(os.path.relpath(source_path, label_root)).as_posix()
        except ValueError:
            # different drive on Windows
            pass
    return source_path.name


def make_token(prefix: str, ordinal: int) -> str:
    return f"{prefix}{TOKEN_SEPARATOR}{ordinal}"


def tag_statements(
    statements: list[Any],
    source_path: Path,
    source_text: str,
    label_root: Path | None = None,
) -> tuple[list[Any], dict[str, PolicySource]]:
    """Inject tracking tokens into ``statements``.

    Statements are matched to their text spans in ``source_text`` by ordinal.
    Non-object statements are passed through untagged.

    Returns:
        (tagged statement copies, token -> PolicySource)
    """
    source_path = Path(os.path.abspath(source_path))
    prefix = token_prefix(source_path, label_root)
    line_spans = statement_line_spans(source_text)
    if line_spans and len(line_spans) != len(statements):
        logger.warning(
            "Statement count mismatch in %s (source %d, document %d); line ranges unavailable",
            source_path, len(line_spans), len(statements),
        )
        line_spans = []

    tagged: list[Any] = []
    sources: dict[str, PolicySource] = {}
    for ordinal, statement in enumerate(statements):
        if not isinstance(statement, dict):
            tagged.append(statement)
            continue

        start, end = line_spans[ordinal] if line_spans else (None, None)
        original = statement.get("Sid")
        token = make_token(prefix, ordinal)

        statement = copy.deepcopy(statement)
        statement["Sid"] = token
        tagged.append(statement)
        sources[token] = PolicySource(
            file_path=source_path,
            start_line=start,
            end_line=end,
            label=original if isinstance(original, str) and original else None,
            ordinal=ordinal,
        )
    return tagged, sources


def track_policy(
    document: str | dict[str, Any],
    source_path: Path | str,
    source_text: str | None = None,
    label_root: Path | None = None,
) -> TrackedPolicy:
    """Inject tracking tokens into every statement of one policy document.

    Args:
        document: The policy to send (rendered JSON text or parsed mapping).
        source_path: File the policy was authored in.
        source_text: Raw file text (pre- or post-substitution). Read from
            ``source_path`` when omitted.
        label_root: Directory tokens are made relative to.

    Returns:
        TrackedPolicy with rewritten document and token -> PolicySource map.
    """
    source_path = Path(source_path)
    if isinstance(document, str):
        document = json.loads(document)
    if source_text is None:
        source_text = read_source_text(source_path, "policy")

    document = copy.deepcopy(document)
    if not isinstance(document, dict) or "Statement" not in document:
        return TrackedPolicy(document=document, sources=MappingProxyType({}))

    raw = document["Statement"]
    statements = raw if isinstance(raw, list) else [raw]
    tagged, sources = tag_statements(statements, source_path, source_text, label_root)
    document["Statement"] = tagged if isinstance(raw, list) else tagged[0]
    logger.debug("Tracked %d statement(s) from %s", len(sources), source_path)
    return TrackedPolicy(document=document, sources=MappingProxyType(sources))


def to_json_pretty(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)
