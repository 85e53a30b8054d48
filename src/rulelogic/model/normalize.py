"""Disjunctive normal form for rule expressions.

A rule's expression tree is rewritten into a DNF: a tuple of terms, each term
a tuple of atomic clauses, such that the rule holds exactly when every clause
of at least one term holds.

  - conjunction distributes (cross product of terms)
  - disjunction concatenates term lists
  - negation is pushed down to the clauses: `<=` <-> `>`, `<` <-> `>=`,
    `==` becomes `<` or `>`, membership <-> exclusion
  - `if A then B` expands to `not A or B`

Terms and clauses keep their first-seen order and duplicates are dropped, so
the same tree always yields the same DNF.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from rulelogic.errors import DefinitionError
from rulelogic.state import (
    DNF,
    And,
    Atom,
    Clause,
    Const,
    Expr,
    If,
    LinearClause,
    MembershipClause,
    Not,
    Or,
    Relation,
    Term,
    VarKind,
)

__all__ = [
    "to_dnf",
    "negate",
    "negate_clause",
    "reduce_dnf",
    "variable_kinds",
    "substitute_dnf",
    "holds",
]

_FLIP = {
    Relation.LE: Relation.GT,
    Relation.LT: Relation.GE,
    Relation.GE: Relation.LT,
    Relation.GT: Relation.LE,
}

TAUTOLOGY: DNF = ((),)
CONTRADICTION: DNF = ()


def _compare(lhs: float, relation: Relation, rhs: float, tol: float = 0.0) -> bool:
    if relation is Relation.LE:
        return lhs <= rhs + tol
    if relation is Relation.LT:
        return lhs < rhs
    if relation is Relation.GE:
        return lhs >= rhs - tol
    if relation is Relation.GT:
        return lhs > rhs
    return abs(lhs - rhs) <= tol


def negate_clause(clause: Clause) -> DNF:
    """Return the DNF of `not clause`."""
    if isinstance(clause, LinearClause):
        if clause.relation is Relation.EQ:
            return (
                (LinearClause(clause.coefs, Relation.LT, clause.rhs),),
                (LinearClause(clause.coefs, Relation.GT, clause.rhs),),
            )
        return ((LinearClause(clause.coefs, _FLIP[clause.relation], clause.rhs),),)
    if isinstance(clause, MembershipClause):
        return ((MembershipClause(clause.variable, clause.labels, not clause.negated),),)
    raise DefinitionError(f"Unsupported clause type {type(clause).__name__}")


def _unique(items):
    seen: dict[Any, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return tuple(seen)


def _cross(left: DNF, right: DNF) -> DNF:
    return _unique(_unique(a + b) for a in left for b in right)


def _constant(clause: Clause) -> Optional[bool]:
    """Truth value of a clause that no longer depends on any variable."""
    if isinstance(clause, LinearClause) and not clause.coefs:
        return _compare(0.0, clause.relation, clause.rhs)
    if isinstance(clause, MembershipClause) and not clause.labels:
        return clause.negated
    return None


def reduce_dnf(dnf: DNF) -> DNF:
    """Drop constant clauses, false terms and duplicates.

    A DNF with an empty term is a tautology and is returned as `((),)`.
    """
    terms: list[Term] = []
    for term in dnf:
        kept: list[Clause] = []
        alive = True
        for clause in term:
            value = _constant(clause)
            if value is None:
                kept.append(clause)
            elif not value:
                alive = False
                break
        if not alive:
            continue
        if not kept:
            return TAUTOLOGY
        terms.append(_unique(kept))
    return _unique(terms)


class _Normalizer:
    def __init__(self, rule: Optional[str]):
        self.rule = rule
        self.clause_index = -1
        self.kinds: dict[str, VarKind] = {}

    def _register(self, clause: Clause) -> None:
        if isinstance(clause, LinearClause):
            kind = VarKind.NUMERIC
        elif isinstance(clause, MembershipClause):
            kind = VarKind.CATEGORICAL
        else:
            raise DefinitionError(
                f"Unsupported clause type {type(clause).__name__}",
                rule=self.rule,
                clause_index=self.clause_index,
            )
        for name in clause.variables:
            seen = self.kinds.setdefault(name, kind)
            if seen is not kind:
                raise DefinitionError(
                    f"Variable '{name}' is used both as {seen.value} and {kind.value}",
                    rule=self.rule,
                    clause_index=self.clause_index,
                )

    def dnf(self, expr: Expr, positive: bool = True) -> DNF:
        if isinstance(expr, Atom):
            self.clause_index += 1
            self._register(expr.clause)
            dnf = ((expr.clause,),) if positive else negate_clause(expr.clause)
            return reduce_dnf(dnf)
        if isinstance(expr, Const):
            return TAUTOLOGY if bool(expr.value) == positive else CONTRADICTION
        if isinstance(expr, Not):
            return self.dnf(expr.arg, not positive)
        if isinstance(expr, If):
            # not A or B; negated: A and not B
            if positive:
                return self._any([(expr.antecedent, False), (expr.consequent, True)])
            return self._all([(expr.antecedent, True), (expr.consequent, False)])
        if isinstance(expr, (And, Or)):
            parts = [(arg, positive) for arg in expr.args]
            if isinstance(expr, And) == positive:
                return self._all(parts)
            return self._any(parts)
        raise DefinitionError(
            f"Unsupported expression node {type(expr).__name__}",
            rule=self.rule,
            clause_index=self.clause_index + 1,
        )

    def _all(self, parts) -> DNF:
        out: DNF = TAUTOLOGY
        for expr, positive in parts:
            out = _cross(out, self.dnf(expr, positive))
        return reduce_dnf(out)

    def _any(self, parts) -> DNF:
        out: DNF = CONTRADICTION
        for expr, positive in parts:
            out = out + self.dnf(expr, positive)
        return reduce_dnf(out)


def to_dnf(expr: Expr, *, rule: Optional[str] = None) -> DNF:
    """Normalize an expression tree into DNF.

    Raises DefinitionError (with rule name and clause index) for unknown
    nodes or clauses and for variables used with inconsistent kinds.
    """
    return _Normalizer(rule).dnf(expr)


def negate(expr: Expr, *, rule: Optional[str] = None) -> DNF:
    """DNF of `not expr`, with the negation pushed down to the clauses."""
    return _Normalizer(rule).dnf(expr, positive=False)


def variable_kinds(dnf: DNF, *, rule: Optional[str] = None) -> dict[str, VarKind]:
    normalizer = _Normalizer(rule)
    for term in dnf:
        for clause in term:
            normalizer.clause_index += 1
            normalizer._register(clause)
    return normalizer.kinds


def _substitute_clause(clause: Clause, values: Mapping[str, Any], tol: float = 0.0):
    """Plug bound values into a clause; returns a clause or a bool."""
    if isinstance(clause, LinearClause):
        if not any(name in values for name in clause.variables):
            return clause
        rhs = clause.rhs
        rest = []
        for name, coef in clause.coefs:
            if name in values:
                rhs -= coef * float(values[name])
            else:
                rest.append((name, coef))
        if not rest:
            return _compare(0.0, clause.relation, rhs, tol)
        return LinearClause(tuple(rest), clause.relation, rhs)
    if clause.variable not in values:
        return clause
    return (str(values[clause.variable]) in clause.labels) != clause.negated


def substitute_dnf(dnf: DNF, values: Mapping[str, Any], tol: float = 0.0) -> DNF:
    """Partially evaluate a DNF with variable -> value bindings.

    Clauses left without variables are decided with `tol` of slack on
    non-strict relations.
    """
    terms: list[Term] = []
    for term in dnf:
        kept: list[Clause] = []
        alive = True
        for clause in term:
            out = _substitute_clause(clause, values, tol)
            if out is True:
                continue
            if out is False:
                alive = False
                break
            kept.append(out)
        if alive:
            terms.append(tuple(kept))
    return reduce_dnf(tuple(terms))


def holds(expr: Expr, values: Mapping[str, Any], tol: float = 1e-6) -> bool:
    """Evaluate an expression tree directly against an assignment.

    Non-strict relations and equalities accept `tol` of slack; strict ones
    are compared exactly. A categorical value of None stands for a label
    that no rule mentions.
    """
    if isinstance(expr, Atom):
        clause = expr.clause
        try:
            if isinstance(clause, LinearClause):
                lhs = sum(coef * float(values[name]) for name, coef in clause.coefs)
                return _compare(lhs, clause.relation, clause.rhs, tol)
            if isinstance(clause, MembershipClause):
                value = values[clause.variable]
                inside = value is not None and str(value) in clause.labels
                return inside != clause.negated
        except KeyError as e:
            raise DefinitionError(f"No value for variable {e.args[0]!r}") from e
        raise DefinitionError(f"Unsupported clause type {type(clause).__name__}")
    if isinstance(expr, Const):
        return bool(expr.value)
    if isinstance(expr, And):
        return all(holds(arg, values, tol) for arg in expr.args)
    if isinstance(expr, Or):
        return any(holds(arg, values, tol) for arg in expr.args)
    if isinstance(expr, Not):
        return not holds(expr.arg, values, tol)
    if isinstance(expr, If):
        return not holds(expr.antecedent, values, tol) or holds(expr.consequent, values, tol)
    raise DefinitionError(f"Unsupported expression node {type(expr).__name__}")
