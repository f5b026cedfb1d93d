"""Scenario configuration for politest."""
from pydantic import ValidationError

from .loader import load_scenario, load_variables, merge_scenarios, parse_scenario
from .schemas import (
    ContextEntry,
    ContextKeyType,
    PolicyDocumentRef,
    PolicyRef,
    PolicyTemplateRef,
    ScenarioDocument,
    TestCase,
)

__all__ = [
    "ContextEntry",
    "ContextKeyType",
    "PolicyDocumentRef",
    "PolicyRef",
    "PolicyTemplateRef",
    "ScenarioDocument",
    "TestCase",
    "ValidationError",
    "load_scenario",
    "load_variables",
    "merge_scenarios",
    "parse_scenario",
]
