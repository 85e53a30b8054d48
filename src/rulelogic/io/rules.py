"""YAML rule files and tree-shaped rule mappings.

Assumptions (strict):
- The file is YAML and contains a top-level key `rules`.
- `rules` is a list of **mappings**. Each item MUST have:
    - `name`: the rule name (non-empty string)
    - `expr`: the rule expression as a tree (see below)
- A wrong file shape raises ValueError. A rule whose expression is
  malformed is skipped with a DefinitionWarning, or raised when `strict`.

Expression trees are nested single-key mappings:

    {"and": [...]}   {"or": [...]}   {"not": e}   {"if": a, "then": b}
    {"<=": [lhs, rhs]}  (also "<", "==", ">=", ">", "!=")
    {"in": [var, [labels]]}  {"not in": [var, [labels]]}
    {"==": [var, {"label": value}]}  (and "!=")
    true / false

Linear expressions (lhs, rhs) are numbers, variable names, {"var": name},
{"+": [...]}, {"-": [a, b]}, {"-": [a]}, {"*": [a, b]} with one constant
side and {"/": [a, c]} with a constant divisor. "&&", "||" and "!" are
accepted for "and", "or" and "not"; YAML needs them quoted.
"""

from __future__ import annotations

import math
import warnings
from typing import Any, Iterable, List, Mapping, Tuple

from yaml import safe_dump, safe_load

from rulelogic.errors import DefinitionError, DefinitionWarning, EncodingError
from rulelogic.state import (
    And,
    Atom,
    Const,
    Expr,
    If,
    LinearClause,
    MembershipClause,
    Not,
    Or,
    Relation,
    Rule,
    RuleSet,
)

__all__ = [
    "expr_from_tree",
    "rule_from_tree",
    "rules_from_items",
    "load_rules",
    "expr_to_tree",
    "rule_to_tree",
    "dump_rules",
]

_AND = ("and", "&&")
_OR = ("or", "||")
_NOT = ("not", "!")
_COMPARE = ("<=", "<", "==", ">=", ">", "!=")
_MEMBER = ("in", "not in")

Linear = Tuple[dict, float]


# ---------- Linear expressions ----------


def _number(value: Any, *, rule: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DefinitionError(f"Expected a number, got {value!r}", rule=rule)
    if not math.isfinite(value):
        raise DefinitionError(f"Numbers must be finite, got {value!r}", rule=rule)
    return float(value)


def _scale(linear: Linear, factor: float) -> Linear:
    coefs, const = linear
    return {name: coef * factor for name, coef in coefs.items()}, const * factor


def _add(left: Linear, right: Linear) -> Linear:
    coefs = dict(left[0])
    for name, coef in right[0].items():
        coefs[name] = coefs.get(name, 0.0) + coef
    return coefs, left[1] + right[1]


def _operands(node: Mapping, op: str, *, rule: str) -> list:
    args = node[op]
    if not isinstance(args, list):
        raise DefinitionError(f"'{op}' expects a list of operands, got {args!r}", rule=rule)
    return args


def linear_from_tree(tree: Any, *, rule: str) -> Linear:
    """Read a linear expression as ({variable: coefficient}, constant)."""
    if isinstance(tree, str):
        if not tree:
            raise DefinitionError("Variable names must be non-empty", rule=rule)
        return {tree: 1.0}, 0.0
    if not isinstance(tree, Mapping):
        return {}, _number(tree, rule=rule)
    if len(tree) != 1:
        raise DefinitionError(f"Expected a single-key mapping, got keys {sorted(tree)}", rule=rule)

    (op,) = tree
    if op == "var":
        name = tree[op]
        if not isinstance(name, str) or not name:
            raise DefinitionError(f"'var' expects a variable name, got {name!r}", rule=rule)
        return {name: 1.0}, 0.0
    if op == "+":
        out: Linear = ({}, 0.0)
        for arg in _operands(tree, op, rule=rule):
            out = _add(out, linear_from_tree(arg, rule=rule))
        return out
    if op == "-":
        args = _operands(tree, op, rule=rule)
        if len(args) == 1:
            return _scale(linear_from_tree(args[0], rule=rule), -1.0)
        if len(args) == 2:
            return _add(
                linear_from_tree(args[0], rule=rule),
                _scale(linear_from_tree(args[1], rule=rule), -1.0),
            )
        raise DefinitionError(f"'-' expects one or two operands, got {len(args)}", rule=rule)
    if op == "*":
        args = _operands(tree, op, rule=rule)
        out = ({}, 1.0)
        for arg in args:
            factor = linear_from_tree(arg, rule=rule)
            if out[0] and factor[0]:
                raise EncodingError(
                    f"Product of variables {sorted(out[0])} and {sorted(factor[0])} is not linear",
                    rule=rule,
                )
            out = _scale(factor, out[1]) if not out[0] else _scale(out, factor[1])
        return out
    if op == "/":
        args = _operands(tree, op, rule=rule)
        if len(args) != 2:
            raise DefinitionError(f"'/' expects two operands, got {len(args)}", rule=rule)
        divisor = linear_from_tree(args[1], rule=rule)
        if divisor[0]:
            raise EncodingError(f"Division by variables {sorted(divisor[0])} is not linear", rule=rule)
        if divisor[1] == 0.0:
            raise DefinitionError("Division by zero", rule=rule)
        return _scale(linear_from_tree(args[0], rule=rule), 1.0 / divisor[1])
    raise DefinitionError(f"Unknown arithmetic operator '{op}'", rule=rule)


# ---------- Boolean expressions ----------


def _variable_name(tree: Any, *, rule: str) -> str:
    if isinstance(tree, Mapping) and set(tree) == {"var"}:
        tree = tree["var"]
    if not isinstance(tree, str) or not tree:
        raise DefinitionError(f"Expected a variable name, got {tree!r}", rule=rule)
    return tree


def _is_label(tree: Any) -> bool:
    return isinstance(tree, Mapping) and set(tree) == {"label"}


def _comparison(op: str, args: list, *, rule: str) -> Expr:
    if len(args) != 2:
        raise DefinitionError(f"'{op}' expects two operands, got {len(args)}", rule=rule)
    lhs, rhs = args
    if op in ("==", "!=") and (_is_label(lhs) or _is_label(rhs)):
        var, label = (rhs, lhs) if _is_label(lhs) else (lhs, rhs)
        clause = MembershipClause(
            _variable_name(var, rule=rule),
            frozenset((str(label["label"]),)),
            negated=op == "!=",
        )
        return Atom(clause)

    coefs, const = _add(
        linear_from_tree(lhs, rule=rule),
        _scale(linear_from_tree(rhs, rule=rule), -1.0),
    )
    if op == "!=":
        return Not(Atom(LinearClause(tuple(coefs.items()), Relation.EQ, -const)))
    return Atom(LinearClause(tuple(coefs.items()), Relation.parse(op), -const))


def expr_from_tree(tree: Any, *, rule: str) -> Expr:
    """Convert a tree-shaped mapping into an expression."""
    if isinstance(tree, bool):
        return Const(tree)
    if not isinstance(tree, Mapping):
        raise DefinitionError(f"Expected a boolean expression, got {tree!r}", rule=rule)

    if set(tree) == {"if", "then"}:
        return If(expr_from_tree(tree["if"], rule=rule), expr_from_tree(tree["then"], rule=rule))
    if len(tree) != 1:
        raise DefinitionError(f"Expected a single-key mapping, got keys {sorted(tree)}", rule=rule)

    (op,) = tree
    if op in _AND:
        return And(tuple(expr_from_tree(a, rule=rule) for a in _operands(tree, op, rule=rule)))
    if op in _OR:
        return Or(tuple(expr_from_tree(a, rule=rule) for a in _operands(tree, op, rule=rule)))
    if op in _NOT:
        return Not(expr_from_tree(tree[op], rule=rule))
    if op in _COMPARE:
        return _comparison(op, _operands(tree, op, rule=rule), rule=rule)
    if op in _MEMBER:
        args = _operands(tree, op, rule=rule)
        if len(args) != 2 or not isinstance(args[1], list):
            raise DefinitionError(f"'{op}' expects [variable, [labels]]", rule=rule)
        labels = frozenset(str(label) for label in args[1])
        return Atom(MembershipClause(_variable_name(args[0], rule=rule), labels, op == "not in"))
    raise DefinitionError(f"Unknown operator '{op}'", rule=rule)


def rule_from_tree(name: str, tree: Any) -> Rule:
    """Build a Rule and normalize it, so definition errors surface here."""
    rule = Rule(name, expr_from_tree(tree, rule=name))
    rule.dnf  # cached; raises for kind conflicts within the rule
    return rule


def rules_from_items(items: Iterable[Any], *, strict: bool = False) -> RuleSet:
    """Build a RuleSet from `{name, expr}` mappings.

    Items of the wrong shape raise ValueError. Rules with a malformed
    expression are skipped with a DefinitionWarning unless `strict`.
    """
    rules: List[Rule] = []
    for idx, item in enumerate(items):
        if not isinstance(item, Mapping) or "name" not in item or "expr" not in item:
            raise ValueError(f"rules[{idx}] must be a mapping with the keys 'name' and 'expr'.")
        name = item["name"]
        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"rules[{idx}].name must be a non-empty string.")
        try:
            rules.append(rule_from_tree(name.strip(), item["expr"]))
        except (DefinitionError, EncodingError) as e:
            if strict:
                raise
            warnings.warn(f"Skipping {e}", DefinitionWarning, stacklevel=2)
    return RuleSet.from_rules(rules, strict=strict)


def load_rules(path: str, *, strict: bool = False) -> RuleSet:
    with open(path, "r", encoding="utf-8") as stream:
        parsed = safe_load(stream)

    if not isinstance(parsed, dict) or "rules" not in parsed:
        raise ValueError("Rule file must contain a top-level 'rules' list.")
    items = parsed["rules"]
    if not isinstance(items, list):
        raise ValueError("'rules' must be a list of mappings with keys 'name' and 'expr'.")
    return rules_from_items(items, strict=strict)


# ---------- Writing ----------


def _linear_to_tree(clause: LinearClause) -> Any:
    parts = [name if coef == 1.0 else {"*": [coef, name]} for name, coef in clause.coefs]
    if not parts:
        return 0
    return parts[0] if len(parts) == 1 else {"+": parts}


def expr_to_tree(expr: Expr) -> Any:
    """Inverse of expr_from_tree, up to arithmetic rearrangement."""
    if isinstance(expr, Const):
        return bool(expr.value)
    if isinstance(expr, Atom):
        clause = expr.clause
        if isinstance(clause, LinearClause):
            return {clause.relation.value: [_linear_to_tree(clause), clause.rhs]}
        op = "not in" if clause.negated else "in"
        return {op: [clause.variable, sorted(clause.labels)]}
    if isinstance(expr, And):
        return {"and": [expr_to_tree(arg) for arg in expr.args]}
    if isinstance(expr, Or):
        return {"or": [expr_to_tree(arg) for arg in expr.args]}
    if isinstance(expr, Not):
        return {"not": expr_to_tree(expr.arg)}
    if isinstance(expr, If):
        return {"if": expr_to_tree(expr.antecedent), "then": expr_to_tree(expr.consequent)}
    raise DefinitionError(f"Unsupported expression node {type(expr).__name__}")


def rule_to_tree(rule: Rule) -> dict:
    return {"name": rule.name, "expr": expr_to_tree(rule.expr)}


def dump_rules(ruleset: RuleSet, path: str) -> None:
    with open(path, "w", encoding="utf-8") as stream:
        safe_dump(
            {"rules": [rule_to_tree(rule) for rule in ruleset.rules]},
            stream,
            sort_keys=False,
        )
