"""
Pytest configuration and shared fixtures.

Provides:
- ``write_file``: writes text, JSON or YAML files under ``tmp_path``
- ``scenario_path``: a complete scenario (template policy, vars file and
  guardrail fragments) on disk
- ``fake_simulator``: an in-memory simulator that evaluates Allow/Deny by
  action match, enough to exercise the runner end to end
"""

import fnmatch
import json
from pathlib import Path
from typing import Callable

import pytest
import yaml

from politest.runner.protocol import SimulationRequest, SimulationResult

IDENTITY_TEMPLATE = """{
  "Version": "2012-10-17",
  "Statement": [
    {
      "Sid": "AllowRead",
      "Effect": "Allow",
      "Action": ["s3:GetObject", "s3:ListBucket"],
      "Resource": "arn:aws:s3:::{{.bucket}}/*"
    },
    {
      "Sid": "AllowWrite",
      "Effect": "Allow",
      "Action": "s3:PutObject",
      "Resource": "arn:aws:s3:::${bucket}/*"
    },
    {
      "Sid": "AllowDelete",
      "Effect": "Allow",
      "Action": "s3:DeleteObject",
      "Resource": "*"
    }
  ]
}
"""

ALLOW_ALL_FRAGMENT = """{
  "Version": "2012-10-17",
  "Statement": [
    {
      "Sid": "AllowAll",
      "Effect": "Allow",
      "Action": "*",
      "Resource": "*"
    }
  ]
}
"""

DENY_DELETE_FRAGMENT = """{
  "Version": "2012-10-17",
  "Statement": {
    "Sid": "DenyDelete",
    "Effect": "Deny",
    "Action": "s3:DeleteObject",
    "Resource": "*"
  }
}
"""


@pytest.fixture
def write_file(tmp_path) -> Callable[..., Path]:
    """Write a file relative to ``tmp_path``; dicts/lists are dumped as JSON or YAML by suffix."""

    def _write(relpath: str, content) -> Path:
        path = tmp_path / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        if not isinstance(content, str):
            if relpath.endswith(".json"):
                content = json.dumps(content, indent=2)
            else:
                content = yaml.safe_dump(content, sort_keys=False)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def identity_template() -> str:
    return IDENTITY_TEMPLATE


@pytest.fixture
def scenario_path(write_file) -> Path:
    """A scenario exercising templates, vars_file, fragments and multi-action tests."""
    write_file("policies/identity.json.tpl", IDENTITY_TEMPLATE)
    write_file("scp/00-allow-all.json", ALLOW_ALL_FRAGMENT)
    write_file("scp/10-deny-delete.json", DENY_DELETE_FRAGMENT)
    write_file("vars/common.yml", {"bucket": "reports", "account": "111122223333"})
    return write_file("scenario.yml", {
        "vars_file": "vars/common.yml",
        "policy_template": "policies/identity.json.tpl",
        "scp_paths": ["scp/*.json"],
        "caller_arn": "arn:aws:iam::$account:user/alice",
        "tests": [
            {
                "name": "read reports",
                "actions": ["s3:GetObject", "s3:ListBucket"],
                "resource": "arn:aws:s3:::<bucket>/2024/q1.csv",
                "expect": "allowed",
            },
            {
                "name": "write reports",
                "action": "s3:PutObject",
                "resources": ["arn:aws:s3:::{{.bucket}}/new.csv"],
                "expect": "allowed",
            },
            {
                "name": "delete blocked by guardrail",
                "action": "s3:DeleteObject",
                "resource": "arn:aws:s3:::reports/old.csv",
                "expect": "explicitDeny",
            },
        ],
    })


def _matches(patterns, action: str) -> bool:
    if isinstance(patterns, str):
        patterns = [patterns]
    return any(fnmatch.fnmatchcase(action.lower(), p.lower()) for p in patterns or [])


def _statements(document_text: str) -> list:
    document = json.loads(document_text)
    statements = document.get("Statement", [])
    return statements if isinstance(statements, list) else [statements]


class FakeSimulator:
    """Evaluates Action matches only: explicit Deny wins, else Allow in every layer."""

    def __init__(self, decision_override: str | None = None, empty: bool = False):
        self.requests: list[SimulationRequest] = []
        self.decision_override = decision_override
        self.empty = empty

    def simulate(self, request: SimulationRequest) -> SimulationResult:
        self.requests.append(request)
        if self.empty:
            return SimulationResult(decision=None, raw={"EvaluationResults": []})

        hits: list[tuple[str, str]] = []
        allowed_layers = []
        for documents in (request.policy_documents, request.permissions_boundary_documents):
            if not documents:
                continue
            layer_allows = False
            for text in documents:
                for statement in _statements(text):
                    if _matches(statement.get("Action"), request.action):
                        hits.append((statement.get("Sid", ""), statement.get("Effect", "")))
                        layer_allows = layer_allows or statement.get("Effect") == "Allow"
            allowed_layers.append(layer_allows)

        denies = [sid for sid, effect in hits if effect == "Deny"]
        if denies:
            decision, matched = "explicitDeny", denies
        elif allowed_layers and all(allowed_layers):
            decision, matched = "allowed", [sid for sid, _ in hits]
        else:
            decision, matched = "implicitDeny", []

        if self.decision_override is not None:
            decision = self.decision_override
        raw = {"EvaluationResults": [{"EvalActionName": request.action, "EvalDecision": decision}]}
        return SimulationResult(decision=decision, matched_statements=tuple(matched), raw=raw)


@pytest.fixture
def fake_simulator() -> FakeSimulator:
    return FakeSimulator()


@pytest.fixture
def fake_simulator_factory() -> Callable[..., FakeSimulator]:
    return FakeSimulator
