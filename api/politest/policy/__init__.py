"""Policy composition: provenance tracking, fragment merging and preparation."""

from politest.policy.compose import PreparedSimulation, load_policy, prepare_simulation
from politest.policy.merge import MergedDocument, expand_globs, merge_fragments
from politest.policy.provenance import (
    PolicySource,
    PolicySourceMap,
    TrackedPolicy,
    statement_at_line,
    statement_line_spans,
    track_policy,
)
from politest.policy.schema import find_non_iam_fields, strip_non_iam_fields, validate_iam_fields

__all__ = [
    "MergedDocument",
    "PolicySource",
    "PolicySourceMap",
    "PreparedSimulation",
    "TrackedPolicy",
    "expand_globs",
    "find_non_iam_fields",
    "load_policy",
    "merge_fragments",
    "prepare_simulation",
    "statement_at_line",
    "statement_line_spans",
    "strip_non_iam_fields",
    "track_policy",
    "validate_iam_fields",
]
