"""Tests for rule set simplification."""

import pytest

from rulelogic.errors import InfeasibleRuleSetWarning, NotConvergedError
from rulelogic.pipeline import pin_name
from rulelogic.simplify import simplify_conditional, simplify_fixed_variables, simplify_rules
from rulelogic.state import TRUE, LinearClause, MembershipClause, Rule


def lin(var, rel, rhs):
    return LinearClause(((var, 1),), rel, rhs)


class TestFixedVariables:
    def test_substitutes_and_pins(self, make_ruleset, settings):
        rs = make_ruleset(
            {
                "lo": {">=": ["x", 3]},
                "hi": {"<=": ["x", 3]},
                "sum": {">=": [{"+": ["x", "y"]}, 5]},
            }
        )
        out = simplify_fixed_variables(rs, settings=settings)
        assert out.names() == ["sum", pin_name("x")]
        assert out["sum"].dnf == ((lin("y", ">=", 2),),)
        assert out[pin_name("x")].dnf == ((lin("x", "==", 3),),)

    def test_existing_pin_is_kept(self, make_ruleset, settings):
        rs = make_ruleset({"p": {"==": ["x", 4]}, "s": {"<=": [{"+": ["x", "y"]}, 10]}})
        out = simplify_fixed_variables(rs, settings=settings)
        assert out.names() == ["p", "s"]
        assert out["p"] is rs["p"]
        assert out["s"].dnf == ((lin("y", "<=", 6),),)

    def test_nothing_fixed(self, make_ruleset, settings):
        rs = make_ruleset({"r": {">": ["x", 1]}})
        assert simplify_fixed_variables(rs, settings=settings) is rs


class TestConditional:
    def test_forced_antecedent_collapses(self, make_ruleset, settings):
        rs = make_ruleset(
            {
                "cond": {"if": {">": ["x", 0]}, "then": {">": ["y", 0]}},
                "x_big": {">": ["x", 1]},
            }
        )
        out = simplify_conditional(rs, settings=settings)
        assert out.names() == ["cond", "x_big"]
        assert out["cond"].dnf == ((lin("y", ">", 0),),)
        assert out["x_big"] is rs["x_big"]

    def test_open_conditional_untouched(self, make_ruleset, settings):
        rs = make_ruleset({"cond": {"if": {">": ["x", 0]}, "then": {">": ["y", 0]}}})
        assert simplify_conditional(rs, settings=settings) is rs

    def test_infeasible_refused(self, make_ruleset, settings):
        rs = make_ruleset({"r1": {"==": ["x", 0]}, "r2": {"==": ["x", 1]}})
        with pytest.warns(InfeasibleRuleSetWarning):
            assert simplify_conditional(rs, settings=settings) is rs


class TestSimplifyRules:
    @pytest.fixture
    def weight_rule(self, make_ruleset):
        return make_ruleset(
            {"rule": {"if": {"==": ["gender", {"label": "male"}]}, "then": {">": ["weight", 50]}}}
        )

    def test_binding_true_antecedent(self, weight_rule, settings):
        out = simplify_rules(weight_rule, {"gender": "male"}, settings=settings)
        assert out.names() == ["rule", pin_name("gender")]
        assert out["rule"].dnf == ((lin("weight", ">", 50),),)
        assert out[pin_name("gender")].dnf == ((MembershipClause("gender", "male"),),)

    def test_binding_false_antecedent(self, weight_rule, settings):
        out = simplify_rules(weight_rule, {"gender": "female"}, settings=settings)
        assert out.names() == [pin_name("gender")]

    def test_combined(self, make_ruleset, settings):
        rs = make_ruleset(
            {
                "cond": {"if": {">": ["x", 0]}, "then": {">": ["y", 0]}},
                "x_big": {">": ["x", 1]},
                "lo": {">=": ["z", 3]},
                "hi": {"<=": ["z", 3]},
                "r1": {">": ["w", 1]},
                "r2": {">": ["w", 2]},
            }
        )
        out = simplify_rules(rs, settings=settings)
        assert out.names() == ["cond", "x_big", "r2", pin_name("z")]
        assert out["cond"].dnf == ((lin("y", ">", 0),),)

    def test_idempotent(self, make_ruleset, settings):
        rs = make_ruleset(
            {
                "cond": {"if": {">": ["x", 0]}, "then": {">": ["y", 0]}},
                "x_big": {">": ["x", 1]},
                "lo": {">=": ["z", 3]},
                "hi": {"<=": ["z", 3]},
                "r1": {">": ["w", 1]},
                "r2": {">": ["w", 2]},
            }
        )
        once = simplify_rules(rs, settings=settings)
        assert simplify_rules(once, settings=settings) == once

    def test_infeasible_refused(self, make_ruleset, settings):
        rs = make_ruleset({"r1": {"==": ["x", 0]}, "r2": {"==": ["x", 1]}})
        with pytest.warns(InfeasibleRuleSetWarning):
            assert simplify_rules(rs, settings=settings) is rs

    def test_round_cap(self, make_ruleset, settings, monkeypatch):
        def grow(ruleset, settings=None):
            return ruleset.extend([Rule(f"extra{len(ruleset)}", TRUE)])

        monkeypatch.setattr("rulelogic.simplify.remove_redundancy", grow)
        rs = make_ruleset({"r": {">": ["x", 1]}})
        with pytest.raises(NotConvergedError) as info:
            simplify_rules(rs, settings=settings)
        assert info.value.iterations == 1
        assert len(info.value.ruleset) > len(rs)
