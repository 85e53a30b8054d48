"""Tests for tree-shaped rule input and YAML rule files."""

import pytest

from rulelogic.errors import DefinitionError, DefinitionWarning, EncodingError
from rulelogic.io.rules import (
    dump_rules,
    expr_from_tree,
    linear_from_tree,
    load_rules,
    rule_from_tree,
    rules_from_items,
)
from rulelogic.state import (
    FALSE,
    TRUE,
    And,
    Atom,
    If,
    LinearClause,
    MembershipClause,
    Not,
    Or,
    Relation,
    VarKind,
)


class TestLinearExpressions:
    def test_sum_difference_and_scaling(self):
        tree = {"-": [{"+": [{"*": [2, "x"]}, {"var": "y"}, 3]}, {"/": ["x", 2]}]}
        coefs, const = linear_from_tree(tree, rule="r")
        assert coefs == {"x": 1.5, "y": 1.0}
        assert const == 3.0

    def test_unary_minus(self):
        assert linear_from_tree({"-": ["x"]}, rule="r") == ({"x": -1.0}, 0.0)

    def test_product_of_variables(self):
        with pytest.raises(EncodingError, match="not linear") as info:
            linear_from_tree({"*": ["x", "y"]}, rule="r")
        assert info.value.rule == "r"

    def test_division_by_variable(self):
        with pytest.raises(EncodingError):
            linear_from_tree({"/": [1, "x"]}, rule="r")

    def test_division_by_zero(self):
        with pytest.raises(DefinitionError, match="zero"):
            linear_from_tree({"/": ["x", 0]}, rule="r")

    @pytest.mark.parametrize("bad", [True, None, float("inf"), {"^": ["x", 2]}])
    def test_bad_operands(self, bad):
        with pytest.raises(DefinitionError):
            linear_from_tree(bad, rule="r")


class TestBooleanExpressions:
    def test_comparison_moves_everything_left(self):
        expr = expr_from_tree({"<=": [{"+": ["x", 1]}, {"*": [2, "y"]}]}, rule="r")
        assert expr == Atom(LinearClause((("x", 1), ("y", -2)), Relation.LE, -1))

    def test_not_equal(self):
        expr = expr_from_tree({"!=": ["x", 3]}, rule="r")
        assert expr == Not(Atom(LinearClause((("x", 1),), Relation.EQ, 3)))

    def test_labels(self):
        assert expr_from_tree({"==": ["gender", {"label": "male"}]}, rule="r") == Atom(
            MembershipClause("gender", "male")
        )
        assert expr_from_tree({"!=": [{"label": "male"}, {"var": "gender"}]}, rule="r") == Atom(
            MembershipClause("gender", "male", negated=True)
        )
        assert expr_from_tree({"not in": ["size", ["S", "M"]]}, rule="r") == Atom(
            MembershipClause("size", ["S", "M"], negated=True)
        )

    def test_connectives_and_aliases(self):
        a = {">": ["x", 0]}
        b = {"<": ["y", 0]}
        atom_a = expr_from_tree(a, rule="r")
        atom_b = expr_from_tree(b, rule="r")
        assert expr_from_tree({"and": [a, b]}, rule="r") == And((atom_a, atom_b))
        assert expr_from_tree({"&&": [a, b]}, rule="r") == And((atom_a, atom_b))
        assert expr_from_tree({"||": [a, b]}, rule="r") == Or((atom_a, atom_b))
        assert expr_from_tree({"!": a}, rule="r") == Not(atom_a)
        assert expr_from_tree({"if": a, "then": b}, rule="r") == If(atom_a, atom_b)
        assert expr_from_tree(True, rule="r") == TRUE
        assert expr_from_tree(False, rule="r") == FALSE

    @pytest.mark.parametrize(
        "tree",
        [
            {"xor": [True, False]},
            {"and": True},
            {"<=": ["x"]},
            {"in": ["g", "a"]},
            {"<=": ["x", 1], ">=": ["x", 0]},
            "x",
            3,
        ],
    )
    def test_malformed(self, tree):
        with pytest.raises(DefinitionError):
            expr_from_tree(tree, rule="r")

    def test_rule_kind_conflict_raised_at_load(self):
        with pytest.raises(DefinitionError, match="both"):
            rule_from_tree("mixed", {"and": [{">": ["x", 0]}, {"in": ["x", ["a"]]}]})


class TestRuleFiles:
    def test_load(self, rules_file):
        rs = load_rules(str(rules_file))
        assert rs.names() == ["adult", "income_positive", "retired_no_job", "known_status"]
        assert rs.variables()["status"] is VarKind.CATEGORICAL
        assert len(rs["retired_no_job"].dnf) == 2

    def test_bad_rule_skipped_with_warning(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            """
rules:
  - name: ok
    expr: {">": [x, 0]}
  - name: nonlinear
    expr: {">": [{"*": [x, y]}, 0]}
""",
            encoding="utf-8",
        )
        with pytest.warns(DefinitionWarning, match="nonlinear"):
            rs = load_rules(str(path))
        assert rs.names() == ["ok"]
        with pytest.raises(EncodingError):
            load_rules(str(path), strict=True)

    @pytest.mark.parametrize(
        "content",
        ["[]", "rules: {}", "rules:\n  - expr: true", "rules:\n  - name: ''\n    expr: true"],
    )
    def test_wrong_shape_raises(self, tmp_path, content):
        path = tmp_path / "rules.yaml"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ValueError):
            load_rules(str(path))

    def test_duplicate_names_skipped(self):
        items = [{"name": "a", "expr": True}, {"name": "a", "expr": False}]
        with pytest.warns(DefinitionWarning, match="Duplicate"):
            rs = rules_from_items(items)
        assert rs["a"].is_tautology

    def test_dump_and_reload_preserves_meaning(self, rules_file, tmp_path):
        original = load_rules(str(rules_file))
        out = tmp_path / "out.yaml"
        dump_rules(original, str(out))
        reloaded = load_rules(str(out))
        assert reloaded.names() == original.names()
        for name in original:
            assert reloaded[name].dnf == original[name].dnf
