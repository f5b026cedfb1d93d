"""Tests for strict template rendering and JSON minification."""
import json

import pytest

from politest.errors import (
    ConfigurationError,
    MalformedOutputError,
    MissingVariableError,
    SourceNotFoundError,
)
from politest.template import (
    format_value,
    minify_json,
    render_canonical,
    render_json,
    render_string,
    render_template_file_json,
)


class TestRenderString:
    """Substitution of bound values."""

    def test_missing_variable_raises(self):
        with pytest.raises(MissingVariableError) as exc_info:
            render_canonical("arn:aws:s3:::{{.BUCKET}}/*", {})
        assert exc_info.value.name == "BUCKET"

    def test_missing_variable_never_renders_empty(self):
        """An unknown $NAME is left as text, but an unknown canonical reference fails."""
        assert render_string("$UNKNOWN", {"OTHER": "x"}) == "$UNKNOWN"
        with pytest.raises(MissingVariableError):
            render_string("{{.UNKNOWN}}", {"OTHER": "x"})

    def test_dotted_reference(self):
        assert render_canonical("{{.account.id}}", {"account": {"id": "1234"}}) == "1234"

    def test_missing_attribute_raises(self):
        with pytest.raises(MissingVariableError):
            render_canonical("{{.account.region}}", {"account": {"id": "1234"}})

    @pytest.mark.parametrize("name", ["none", "true", "false", "not", "if", "in", "and"])
    def test_keyword_names_resolve_to_bound_value(self, name):
        assert render_string(f"x-{{{{.{name}}}}}-y", {name: "VAL"}) == "x-VAL-y"
        assert render_string(f"x-${name}-y", {name: "VAL"}) == "x-VAL-y"

    @pytest.mark.parametrize("key", ["items", "keys", "values", "get"])
    def test_dotted_reference_uses_keys_not_attributes(self, key):
        assert render_canonical(f"{{{{.acct.{key}}}}}", {"acct": {key: "3"}}) == "3"

    @pytest.mark.parametrize("key", ["items", "keys", "get", "upper"])
    def test_missing_key_never_falls_back_to_attribute(self, key):
        with pytest.raises(MissingVariableError) as exc_info:
            render_canonical(f"{{{{.acct.{key}}}}}", {"acct": {"id": "1", "name": "n"}})
        assert exc_info.value.name == f"acct.{key}"

    def test_dotted_reference_into_scalar_raises(self):
        with pytest.raises(MissingVariableError):
            render_canonical("{{.account.id}}", {"account": "1234"})

    def test_literal_text_passes_through(self):
        text = '{"Condition": {"StringEquals": {"aws:PrincipalTag/team": "${aws:PrincipalTag/x}"}}}'
        assert render_string(text, {"team": "ops"}) == text

    def test_values_are_formatted_for_json(self):
        rendered = render_string('{"Bool": {{.enabled}}, "List": {{.items}}}', {
            "enabled": True,
            "items": ["a", "b"],
        })
        assert json.loads(rendered) == {"Bool": True, "List": ["a", "b"]}


def test_format_value():
    assert format_value(False) == "false"
    assert format_value(None) == "null"
    assert format_value(42) == "42"
    assert format_value({"k": 1}) == '{"k": 1}'


class TestMinifyJson:
    """Validation and compaction of rendered JSON."""

    def test_minify_is_idempotent(self):
        text = '{\n  "Version": "2012-10-17",\n  "Statement": [ {"Effect": "Allow"} ]\n}'
        once = minify_json(text)
        assert once == '{"Version":"2012-10-17","Statement":[{"Effect":"Allow"}]}'
        assert minify_json(once) == once

    def test_invalid_json_raises(self):
        with pytest.raises(MalformedOutputError):
            minify_json('{"Statement": [}')

    def test_render_json_reports_malformed_output(self):
        # value without quotes produces invalid JSON
        with pytest.raises(MalformedOutputError) as exc_info:
            render_json('{"Resource": {{.bucket}}}', {"bucket": "reports"}, "policy.tpl")
        assert exc_info.value.template == "policy.tpl"


class TestRenderTemplateFile:
    """Rendering template files from disk."""

    def test_render_file(self, write_file):
        path = write_file("p.json.tpl", '{\n  "Resource": "arn:aws:s3:::<bucket>"\n}\n')
        assert render_template_file_json(path, {"bucket": "b1"}) == '{"Resource":"arn:aws:s3:::b1"}'

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(SourceNotFoundError) as exc_info:
            render_template_file_json(tmp_path / "absent.tpl", {})
        assert isinstance(exc_info.value, FileNotFoundError)
        assert "absent.tpl" in str(exc_info.value)

    def test_missing_variable_names_template(self, write_file):
        path = write_file("p.json.tpl", '{"Resource": "{{.nope}}"}')
        with pytest.raises(MissingVariableError) as exc_info:
            render_template_file_json(path, {"other": 1})
        assert str(path) in str(exc_info.value)

    def test_non_utf8_template_names_file(self, tmp_path):
        path = tmp_path / "p.json.tpl"
        path.write_bytes(b'{"Resource": "\xff"}')
        with pytest.raises(ConfigurationError) as exc_info:
            render_template_file_json(path, {})
        assert exc_info.value.path == path
        assert "UTF-8" in str(exc_info.value)
