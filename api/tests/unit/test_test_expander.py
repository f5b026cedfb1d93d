"""Tests for expanding declared tests into atomic executions."""
from pathlib import Path

import pytest

from politest.config import ContextEntry, PolicyDocumentRef, ScenarioDocument, TestCase
from politest.errors import ConfigurationError, MissingVariableError
from politest.runner.expander import (
    ScenarioDefaults,
    effective_tests,
    expand_test,
    expand_tests,
    select_tests,
)


def make_test(**kwargs) -> TestCase:
    kwargs.setdefault("expect", "allowed")
    return TestCase(**kwargs)


class TestExpandTest:
    """Fan-out and field resolution."""

    def test_actions_fan_out_resources_do_not(self):
        test = make_test(actions=["a:X", "a:Y"], resource="r1")
        executions = expand_test(test, ScenarioDefaults(), {})

        assert [e.action for e in executions] == ["a:X", "a:Y"]
        assert all(e.resources == ("r1",) for e in executions)

    def test_multiple_resources_stay_together(self):
        executions = expand_test(make_test(action="a:X", resources=["r1", "r2"]), ScenarioDefaults(), {})
        assert len(executions) == 1
        assert executions[0].resources == ("r1", "r2")

    def test_no_resources_means_wildcard(self):
        execution = expand_test(make_test(action="a:X"), ScenarioDefaults(), {})[0]
        assert execution.resources == ()
        assert execution.resource_display == "*"
        assert execution.name == "a:X on *"

    def test_action_and_actions_rejected(self):
        with pytest.raises(ConfigurationError):
            expand_test(make_test(action="a:X", actions=["a:Y"]), ScenarioDefaults(), {})

    def test_no_action_rejected(self):
        with pytest.raises(ConfigurationError):
            expand_test(make_test(resource="r1"), ScenarioDefaults(), {})

    def test_resource_and_resources_rejected(self):
        with pytest.raises(ConfigurationError):
            expand_test(make_test(action="a:X", resource="r1", resources=["r2"]), ScenarioDefaults(), {})

    def test_fields_are_rendered(self):
        test = make_test(
            action="s3:$verb",
            resource="arn:aws:s3:::<bucket>/k",
            caller_arn="arn:aws:iam::${account}:user/bob",
            context=[ContextEntry(key="aws:SourceVpc", values=("{{.vpc}}",))],
        )
        variables = {"verb": "GetObject", "bucket": "b1", "account": "123", "vpc": "vpc-1"}
        execution = expand_test(test, ScenarioDefaults(), variables)[0]

        assert execution.action == "s3:GetObject"
        assert execution.resources == ("arn:aws:s3:::b1/k",)
        assert execution.caller_arn == "arn:aws:iam::123:user/bob"
        assert execution.context[0].values == ("vpc-1",)

    def test_unbound_variable_raises(self):
        with pytest.raises(MissingVariableError):
            expand_test(make_test(action="s3:GetObject", resource="{{.bucket}}"), ScenarioDefaults(), {"x": 1})

    def test_context_is_scenario_then_test(self):
        defaults = ScenarioDefaults(context=(ContextEntry(key="aws:SourceIp", values=("10.0.0.1",)),))
        test = make_test(action="a:X", context=[ContextEntry(key="aws:MultiFactorAuthPresent", values=("true",))])
        execution = expand_test(test, defaults, {})[0]
        assert [c.key for c in execution.context] == ["aws:SourceIp", "aws:MultiFactorAuthPresent"]

    def test_overrides_resolve_independently(self):
        defaults = ScenarioDefaults(
            caller_arn="arn:scenario",
            resource_owner="111",
            resource_handling_option="EC2-VPC-InstanceStore",
            resource_policy='{"Statement": []}',
        )
        execution = expand_test(make_test(action="a:X", caller_arn="arn:test"), defaults, {})[0]

        assert execution.caller_arn == "arn:test"
        assert execution.resource_owner == "111"
        assert execution.resource_handling_option == "EC2-VPC-InstanceStore"
        assert execution.resource_policy == '{"Statement": []}'

    def test_absent_overrides_are_none(self):
        execution = expand_test(make_test(action="a:X"), ScenarioDefaults(), {})[0]
        assert execution.caller_arn is None
        assert execution.resource_owner is None
        assert execution.resource_handling_option is None
        assert execution.resource_policy is None

    def test_resource_policy_override_uses_loader(self):
        loaded = []

        def loader(ref):
            loaded.append(ref)
            return "test-level policy"

        test = make_test(action="a:X", resource_policy_json="/tmp/bucket.json")
        execution = expand_test(test, ScenarioDefaults(resource_policy="scenario policy"), {}, 1, loader)[0]

        assert execution.resource_policy == "test-level policy"
        assert loaded == [PolicyDocumentRef(path=Path("/tmp/bucket.json"))]

    def test_resource_policy_override_without_loader(self):
        test = make_test(action="a:X", resource_policy_json="/tmp/bucket.json")
        with pytest.raises(ConfigurationError):
            expand_test(test, ScenarioDefaults(), {})

    def test_named_and_generated_names(self):
        named = expand_test(make_test(name="read", action="a:X", resource="r1"), ScenarioDefaults(), {})[0]
        unnamed = expand_test(make_test(action="a:X", resource="r1"), ScenarioDefaults(), {})[0]
        assert (named.name, named.named) == ("read", True)
        assert (unnamed.name, unnamed.named) == ("a:X on r1", False)


def test_expand_tests_keeps_declaration_order():
    tests = [(1, make_test(actions=["a:1", "a:2"])), (2, make_test(action="a:3"))]
    executions = expand_tests(tests, ScenarioDefaults(), {})
    assert [(e.test_index, e.action) for e in executions] == [(1, "a:1"), (1, "a:2"), (2, "a:3")]


def test_expand_tests_fails_before_returning_anything():
    tests = [(1, make_test(action="a:1")), (2, make_test(action="a:2", actions=["a:3"]))]
    with pytest.raises(ConfigurationError):
        expand_tests(tests, ScenarioDefaults(), {})


class TestEffectiveTests:
    """Legacy scenarios and test selection."""

    def test_tests_array_used_as_is(self):
        scenario = ScenarioDocument(tests=[make_test(action="a:X")], actions=["ignored"])
        assert [t.action for t in effective_tests(scenario)] == ["a:X"]

    def test_legacy_format_converted(self):
        scenario = ScenarioDocument(
            actions=["s3:GetObject", "s3:PutObject"],
            resources=["arn:aws:s3:::b/*"],
            expect={"s3:GetObject": "allowed", "s3:PutObject": "implicitDeny"},
        )
        tests = effective_tests(scenario)

        assert [(t.action, t.expect) for t in tests] == [
            ("s3:GetObject", "allowed"),
            ("s3:PutObject", "implicitDeny"),
        ]
        assert all(t.resources == ["arn:aws:s3:::b/*"] for t in tests)

    def test_legacy_missing_expectation(self):
        scenario = ScenarioDocument(actions=["s3:GetObject"], expect={})
        with pytest.raises(ConfigurationError):
            effective_tests(scenario)

    def test_select_by_name(self):
        tests = [make_test(name="a", action="x"), make_test(name="b", action="y"), make_test(action="z")]
        assert [i for i, _ in select_tests(tests, ["b"])] == [2]
        assert [i for i, _ in select_tests(tests, None)] == [1, 2, 3]

    def test_select_unknown_name(self):
        with pytest.raises(ConfigurationError):
            select_tests([make_test(name="a", action="x")], ["missing"])


class TestErrorsNameScenario:
    """Configuration errors carry the scenario file when it is known."""

    def test_expand_test_error(self):
        defaults = ScenarioDefaults(scenario_path=Path("/scenarios/s.yml"))
        with pytest.raises(ConfigurationError) as exc_info:
            expand_test(make_test(action="a:X", actions=["a:Y"]), defaults, {})
        assert exc_info.value.path == Path("/scenarios/s.yml")

    def test_resource_policy_pair_error(self):
        defaults = ScenarioDefaults(scenario_path=Path("/scenarios/s.yml"))
        test = make_test(action="a:X", resource_policy_json="/a.json", resource_policy_template="/a.tpl")
        with pytest.raises(ConfigurationError) as exc_info:
            expand_test(test, defaults, {}, 1, lambda ref: "")
        assert exc_info.value.path == Path("/scenarios/s.yml")

    def test_legacy_and_selection_errors(self):
        path = Path("/scenarios/s.yml")
        with pytest.raises(ConfigurationError) as exc_info:
            effective_tests(ScenarioDocument(actions=["s3:GetObject"], expect={}), path)
        assert exc_info.value.path == path

        with pytest.raises(ConfigurationError) as exc_info:
            select_tests([make_test(name="a", action="x")], ["missing"], path)
        assert exc_info.value.path == path
