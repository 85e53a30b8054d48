"""Pytest fixtures for test suite."""

from pathlib import Path
from typing import Any, Callable, Mapping

import pytest

from rulelogic.io.rules import rule_from_tree
from rulelogic.settings import Settings
from rulelogic.state import RuleSet


def build_ruleset(trees: Mapping[str, Any]) -> RuleSet:
    """RuleSet from {name: expression tree}, in mapping order."""
    return RuleSet(tuple(rule_from_tree(name, tree) for name, tree in trees.items()))


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Default solver settings."""
    return Settings()


@pytest.fixture
def make_ruleset() -> Callable[[Mapping[str, Any]], RuleSet]:
    """Factory building a RuleSet from expression trees."""
    return build_ruleset


@pytest.fixture
def rules_file(tmp_path: Path) -> Path:
    """A small rule file mixing numeric, categorical and conditional rules."""
    path = tmp_path / "rules.yaml"
    path.write_text(
        """
rules:
  - name: adult
    expr: {">=": [age, 18]}
  - name: income_positive
    expr: {">": [income, 0]}
  - name: retired_no_job
    expr:
      if: {"==": [status, {label: retired}]}
      then: {"==": [hours, 0]}
  - name: known_status
    expr: {"in": [status, [employed, retired, student]]}
""",
        encoding="utf-8",
    )
    return path


# =============================================================================
# Scenario Fixtures
# =============================================================================


@pytest.fixture
def conditional_conflict(make_ruleset) -> RuleSet:
    """if (x > 1) y < 0, together with x > 2 and y > 1: the conditional is the culprit."""
    return make_ruleset(
        {
            "rule1": {"if": {">": ["x", 1]}, "then": {"<": ["y", 0]}},
            "rule2": {">": ["x", 2]},
            "rule3": {">": ["y", 1]},
        }
    )


@pytest.fixture
def derived_conflict(make_ruleset) -> RuleSet:
    """x > 0, y > 0 and x + y == -1: no pair conflicts, the three together do."""
    return make_ruleset(
        {
            "rule1": {">": ["x", 0]},
            "rule2": {">": ["y", 0]},
            "rule3": {"==": [{"+": ["x", "y"]}, -1]},
        }
    )
