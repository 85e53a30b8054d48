"""Tests for the rule model: clauses, rules and rule sets."""

import math

import pytest

from rulelogic.errors import DefinitionError, DefinitionWarning
from rulelogic.state import (
    FALSE,
    TRUE,
    Atom,
    LinearClause,
    MembershipClause,
    Relation,
    Rule,
    RuleSet,
    VarKind,
)


def le(coefs, rhs):
    return LinearClause(coefs, Relation.LE, rhs)


class TestLinearClause:
    def test_coefficients_merged_sorted_and_zeros_dropped(self):
        clause = LinearClause((("y", 2), ("x", 1), ("y", -2), ("z", 0)), "<=", 3)
        assert clause.coefs == (("x", 1.0),)
        assert clause.relation is Relation.LE
        assert clause.rhs == 3.0

    def test_accepts_mapping(self):
        clause = LinearClause({"b": 1, "a": -1}, ">", 0)
        assert clause.coefs == (("a", -1.0), ("b", 1.0))
        assert clause.variables == ("a", "b")

    def test_unknown_relation(self):
        with pytest.raises(DefinitionError, match="Unknown relation"):
            LinearClause((("x", 1),), "=<", 1)

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_non_finite_coefficient(self, bad):
        with pytest.raises(DefinitionError, match="finite"):
            LinearClause((("x", bad),), "<=", 1)

    def test_non_finite_rhs(self):
        with pytest.raises(DefinitionError, match="finite"):
            le((("x", 1),), math.inf)

    def test_bool_is_not_a_number(self):
        with pytest.raises(DefinitionError):
            le((("x", True),), 1)

    def test_str(self):
        assert str(le((("x", 1), ("y", 2)), 3)) == "x + 2*y <= 3"

    def test_strictness(self):
        assert Relation.LT.is_strict and Relation.GT.is_strict
        assert not Relation.EQ.is_strict


class TestMembershipClause:
    def test_single_label_string(self):
        clause = MembershipClause("gender", "male")
        assert clause.labels == frozenset({"male"})
        assert not clause.negated

    def test_labels_are_strings(self):
        assert MembershipClause("size", [1, 2]).labels == frozenset({"1", "2"})

    def test_empty_name(self):
        with pytest.raises(DefinitionError):
            MembershipClause("", ["a"])


class TestRule:
    def test_blank_name(self):
        with pytest.raises(DefinitionError):
            Rule("  ", TRUE)

    def test_dnf_is_cached(self):
        rule = Rule("r", Atom(le((("x", 1),), 1)))
        assert rule.dnf is rule.dnf

    def test_markers(self):
        assert Rule("t", TRUE).is_tautology
        assert Rule("f", FALSE).is_contradiction
        assert not Rule("f", FALSE).is_tautology

    def test_from_dnf_fills_cache(self):
        clause = le((("x", 1),), 1)
        rule = Rule.from_dnf("r", [[clause], [clause]])
        assert rule.dnf == ((clause,),)
        assert rule.expr == Atom(clause)

    def test_variables_in_first_use_order(self):
        rule = Rule.from_dnf("r", [[le((("y", 1),), 1), MembershipClause("g", "a")], [le((("x", 1),), 0)]])
        assert rule.variables == ("y", "g", "x")

    def test_renamed_keeps_expression(self):
        rule = Rule("r", Atom(le((("x", 1),), 1)))
        other = rule.renamed("s")
        assert other.name == "s" and other.expr == rule.expr


class TestRuleSet:
    @pytest.fixture
    def rules(self):
        return RuleSet(
            (
                Rule("a", Atom(le((("x", 1),), 1))),
                Rule("b", Atom(MembershipClause("g", ["m", "f"]))),
                Rule("c", Atom(le((("x", 1), ("y", 1)), 5))),
            )
        )

    def test_duplicate_name(self):
        rule = Rule("a", TRUE)
        with pytest.raises(DefinitionError, match="Duplicate"):
            RuleSet((rule, rule))

    def test_lookup(self, rules):
        assert len(rules) == 3
        assert list(rules) == ["a", "b", "c"]
        assert "b" in rules and "z" not in rules
        assert rules.get("z") is None
        with pytest.raises(KeyError, match="Unknown rule 'z'"):
            rules["z"]

    def test_transformations_share_rules(self, rules):
        smaller = rules.without("b")
        assert smaller.names() == ["a", "c"]
        assert smaller["a"] is rules["a"]
        assert rules.only(["c", "a"]).names() == ["a", "c"]
        assert len(rules) == 3

    def test_replace_keeps_position(self, rules):
        new = Rule("b", Atom(MembershipClause("g", "m")))
        replaced = rules.replace(new)
        assert replaced.names() == ["a", "b", "c"]
        assert replaced["b"] is new
        with pytest.raises(KeyError):
            rules.replace(Rule("z", TRUE))

    def test_extend(self, rules):
        assert rules.extend([Rule("d", TRUE)]).names() == ["a", "b", "c", "d"]

    def test_variables_and_labels(self, rules):
        assert rules.variables() == {
            "x": VarKind.NUMERIC,
            "g": VarKind.CATEGORICAL,
            "y": VarKind.NUMERIC,
        }
        assert rules.labels() == {"g": ("f", "m")}

    def test_equality_ignores_cache(self, rules):
        same = RuleSet(tuple(Rule(r.name, r.expr) for r in rules.rules))
        assert same == rules


class TestFromRules:
    def test_skips_duplicates_with_warning(self):
        with pytest.warns(DefinitionWarning, match="Duplicate"):
            rs = RuleSet.from_rules([Rule("a", TRUE), Rule("a", FALSE)])
        assert rs.names() == ["a"]
        assert rs["a"].is_tautology

    def test_skips_kind_conflicts(self):
        rules = [
            Rule("num", Atom(le((("x", 1),), 1))),
            Rule("cat", Atom(MembershipClause("x", "a"))),
        ]
        with pytest.warns(DefinitionWarning, match="numeric"):
            rs = RuleSet.from_rules(rules)
        assert rs.names() == ["num"]

    def test_strict_raises(self):
        with pytest.raises(DefinitionError):
            RuleSet.from_rules([Rule("a", TRUE), Rule("a", TRUE)], strict=True)
