"""Variable notation normalization and strict template rendering."""

from politest.template.notation import canonical, normalize_notation, referenced_names
from politest.template.renderer import (
    format_value,
    minify_json,
    render_canonical,
    render_json,
    render_string,
    render_strings,
    render_template_file_json,
    resolve_reference,
)

__all__ = [
    "canonical",
    "format_value",
    "minify_json",
    "normalize_notation",
    "referenced_names",
    "render_canonical",
    "render_json",
    "render_string",
    "render_strings",
    "render_template_file_json",
    "resolve_reference",
]
