"""Pydantic schemas for scenario documents."""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from politest.errors import ConfigurationError

# ============================================================================
# Context Entries
# ============================================================================

class ContextKeyType(str, Enum):
    """Closed set of condition-context value types understood by the simulator."""
    string = "string"
    string_list = "stringList"
    numeric = "numeric"
    numeric_list = "numericList"
    boolean = "boolean"
    boolean_list = "booleanList"


_CONTEXT_TYPES_BY_LOWER = {t.value.lower(): t for t in ContextKeyType}


def _as_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ContextEntry(BaseModel):
    """One condition-context entry (``aws:SourceIp``, ``s3:prefix``, ...)."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    key: str = Field(..., alias="ContextKeyName", description="Condition key name")
    values: tuple[str, ...] = Field(..., alias="ContextKeyValues", description="Condition key values")
    type: ContextKeyType = Field(ContextKeyType.string, alias="ContextKeyType", description="Value type tag")

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        """Validate key name is not empty."""
        if not v or not v.strip():
            raise ValueError("ContextKeyName cannot be empty")
        return v

    @field_validator("values", mode="before")
    @classmethod
    def coerce_values(cls, v: Any) -> Any:
        """Accept a scalar or a list of scalars; YAML numbers and booleans become strings."""
        if v is None:
            return ()
        if isinstance(v, (list, tuple)):
            return tuple(_as_string(item) for item in v)
        return (_as_string(v),)

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, v: Any) -> ContextKeyType:
        """Match the type tag case-insensitively; unknown tags are rejected."""
        if isinstance(v, ContextKeyType):
            return v
        tag = str(v).strip().lower()
        if tag not in _CONTEXT_TYPES_BY_LOWER:
            allowed = ", ".join(t.value for t in ContextKeyType)
            raise ValueError(f"unsupported context type '{v}': must be one of: {allowed}")
        return _CONTEXT_TYPES_BY_LOWER[tag]

    def to_simulator_dict(self) -> dict[str, Any]:
        """Shape used by the IAM ``ContextEntries`` parameter."""
        return {
            "ContextKeyName": self.key,
            "ContextKeyValues": list(self.values),
            "ContextKeyType": self.type.value,
        }


# ============================================================================
# Policy References
# ============================================================================

class PolicyTemplateRef(BaseModel):
    """Policy rendered from a template file with scenario variables."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["template"] = "template"
    path: Path


class PolicyDocumentRef(BaseModel):
    """Policy loaded verbatim from a JSON file."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["json"] = "json"
    path: Path


# Tagged union: an effective scenario holds at most one of the two.
PolicyRef = PolicyTemplateRef | PolicyDocumentRef


def policy_ref(
    template: str | None,
    document: str | None,
    template_field: str,
    document_field: str,
    path: Path | None = None,
) -> PolicyRef | None:
    """Collapse a template/document field pair into a ``PolicyRef``.

    Raises:
        ConfigurationError: Both fields are set.
    """
    if template and document:
        raise ConfigurationError(
            f"provide only one of '{document_field}' or '{template_field}'",
            path=path,
            field=document_field,
        )
    if template:
        return PolicyTemplateRef(path=Path(template))
    if document:
        return PolicyDocumentRef(path=Path(document))
    return None


# ============================================================================
# Test Cases
# ============================================================================

class TestCase(BaseModel):
    """One declared test as authored in a scenario."""
    model_config = ConfigDict(frozen=True)
    __test__ = False  # not a pytest class

    name: str = Field("", description="Human label for the test")
    action: str = Field("", description="Single action (use this OR actions)")
    actions: list[str] = Field(default_factory=list, description="Actions sharing resources and context")
    resource: str = Field("", description="Single resource ARN (use this OR resources)")
    resources: list[str] = Field(default_factory=list, description="Resource ARNs evaluated together")
    context: list[ContextEntry] = Field(default_factory=list, description="Context added to scenario context")
    resource_policy_template: str = Field("", description="Resource policy template override")
    resource_policy_json: str = Field("", description="Resource policy document override")
    caller_arn: str = Field("", description="Caller identity override")
    resource_owner: str = Field("", description="Resource owner override")
    resource_handling_option: str = Field("", description="EC2 resource handling scenario override")
    expect: str = Field(..., description="Expected decision: allowed, explicitDeny or implicitDeny")

    @field_validator("name", "action", "resource", "caller_arn", "resource_owner",
                     "resource_handling_option", "resource_policy_template",
                     "resource_policy_json", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        """YAML ``~`` and missing values both mean "not set"."""
        return "" if v is None else v

    @field_validator("actions", "resources", mode="before")
    @classmethod
    def none_to_list(cls, v: Any) -> Any:
        """Treat ``~`` as an empty list."""
        return [] if v is None else v

    @field_validator("expect")
    @classmethod
    def validate_expect(cls, v: str) -> str:
        """Validate expected decision is not blank."""
        if not v or not v.strip():
            raise ValueError("expect cannot be empty")
        return v.strip()

    @property
    def label(self) -> str:
        return self.name or self.action or (self.actions[0] if self.actions else "<unnamed>")

    def resource_policy(self, path: Path | None = None) -> PolicyRef | None:
        """Per-test resource policy override, if any."""
        return policy_ref(
            self.resource_policy_template,
            self.resource_policy_json,
            "resource_policy_template",
            "resource_policy_json",
            path,
        )


# ============================================================================
# Scenario Document
# ============================================================================

SCALAR_FIELDS = (
    "vars_file",
    "caller_arn",
    "resource_owner",
    "resource_handling_option",
)
MAPPING_FIELDS = ("vars", "expect")
LIST_FIELDS = ("scp_paths", "actions", "resources", "context", "tests")
POLICY_PAIRS = (
    ("policy_template", "policy_json"),
    ("resource_policy_template", "resource_policy_json"),
)


class ScenarioDocument(BaseModel):
    """A scenario as authored, or the effective result of an ``extends`` chain.

    Empty strings and empty collections mean "not set": they inherit from the
    parent rather than clearing it.
    """
    model_config = ConfigDict(frozen=True)

    extends: str = Field("", description="Parent scenario path, relative to this document")
    vars_file: str = Field("", description="YAML file of variable bindings")
    vars: dict[str, Any] = Field(default_factory=dict, description="Inline variable bindings")
    policy_template: str = Field("", description="Identity policy template path")
    policy_json: str = Field("", description="Identity policy document path")
    resource_policy_template: str = Field("", description="Resource policy template path")
    resource_policy_json: str = Field("", description="Resource policy document path")
    scp_paths: list[str] = Field(default_factory=list, description="Guardrail fragment glob patterns")
    context: list[ContextEntry] = Field(default_factory=list, description="Scenario-level context")
    caller_arn: str = Field("", description="Default caller identity")
    resource_owner: str = Field("", description="Default resource owner account")
    resource_handling_option: str = Field("", description="EC2 resource handling scenario")
    actions: list[str] = Field(default_factory=list, description="Legacy format: actions to evaluate")
    resources: list[str] = Field(default_factory=list, description="Legacy format: resources to evaluate")
    expect: dict[str, str] = Field(default_factory=dict, description="Legacy format: action -> decision")
    tests: list[TestCase] = Field(default_factory=list, description="Ordered test cases")

    @field_validator("extends", "vars_file", "policy_template", "policy_json",
                     "resource_policy_template", "resource_policy_json", "caller_arn",
                     "resource_owner", "resource_handling_option", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        """YAML ``~`` and missing values both mean "not set"."""
        return "" if v is None else v

    @field_validator("vars", "expect", mode="before")
    @classmethod
    def none_to_mapping(cls, v: Any) -> Any:
        """Treat ``~`` as an empty mapping; variable names are always strings."""
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k): val for k, val in v.items()}
        return v

    @field_validator("scp_paths", "actions", "resources", "context", "tests", mode="before")
    @classmethod
    def none_to_list(cls, v: Any) -> Any:
        """Treat ``~`` as an empty list; a lone pattern string becomes a one-item list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    def policy(self, path: Path | None = None) -> PolicyRef | None:
        """Identity policy source. Raises ``ConfigurationError`` if both are set."""
        return policy_ref(self.policy_template, self.policy_json, "policy_template", "policy_json", path)

    def resource_policy(self, path: Path | None = None) -> PolicyRef | None:
        """Scenario-level resource policy source, if any."""
        return policy_ref(
            self.resource_policy_template,
            self.resource_policy_json,
            "resource_policy_template",
            "resource_policy_json",
            path,
        )

    @classmethod
    def from_dict(cls, data: dict) -> ScenarioDocument:
        """Create a scenario document from a parsed YAML mapping."""
        return cls.model_validate(data)
