"""Constraint rows for normalized rules.

A rule in DNF is written as linear rows over the decision variables:

- single-term rules are written as hard rows;
- each term of a multi-term rule gets a binary selector `s`; every row of
  the term is relaxed by `M * (1 - s)` so an unselected term imposes nothing,
  and one row `sum(s) >= 1` requires some term to hold;
- always-true rules add nothing; always-false rules add a row no point meets.

Strict relations are shifted by `settings.epsilon`. The relaxation constant
of a row is `sum(|a_i| * M_i) + |b| + epsilon` where `M_i` is the bound of
variable i, so a relaxed row is slack everywhere inside the variable box.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Mapping, Optional

from rulelogic.errors import EncodingError
from rulelogic.model.variables import DecisionVar
from rulelogic.settings import Settings
from rulelogic.state import DNF, Clause, LinearClause, MembershipClause, Relation

__all__ = [
    "Row",
    "relaxation",
    "linear_rows",
    "membership_rows",
    "exactly_one_rows",
    "encode_rule",
]

Sense = Literal["<=", ">=", "=="]


@dataclass(frozen=True, slots=True)
class Row:
    """A linear constraint `sum(coef * var) <sense> rhs`.

    Attributes:
        coefs: Tuple of (decision variable name, coefficient) pairs
        sense: "<=", ">=" or "=="
        rhs: Constant on the right hand side
        label: Human-readable origin, for debugging
    """

    coefs: tuple[tuple[str, float], ...]
    sense: Sense
    rhs: float
    label: str = ""


_SENSE: dict[Relation, Sense] = {
    Relation.LE: "<=",
    Relation.LT: "<=",
    Relation.GE: ">=",
    Relation.GT: ">=",
    Relation.EQ: "==",
}


def relaxation(clause: LinearClause, settings: Settings) -> float:
    """Big-M constant that makes `clause` slack over the whole variable box."""
    reach = sum(abs(coef) * settings.bound(name) for name, coef in clause.coefs)
    return reach + abs(clause.rhs) + settings.epsilon


def linear_rows(
    clause: LinearClause,
    numeric: Mapping[str, DecisionVar],
    settings: Settings,
    selector: Optional[str] = None,
    label: str = "",
) -> list[Row]:
    coefs = tuple((numeric[name].name, coef) for name, coef in clause.coefs)
    rhs = clause.rhs
    if clause.relation is Relation.LT:
        rhs -= settings.epsilon
    elif clause.relation is Relation.GT:
        rhs += settings.epsilon
    sense = _SENSE[clause.relation]

    if selector is None:
        return [Row(coefs, sense, rhs, label)]

    m = relaxation(clause, settings)
    rows: list[Row] = []
    if sense in ("<=", "=="):
        # a.x <= rhs + M (1 - s)
        rows.append(Row(coefs + ((selector, m),), "<=", rhs + m, label))
    if sense in (">=", "=="):
        # a.x >= rhs - M (1 - s)
        rows.append(Row(coefs + ((selector, -m),), ">=", rhs - m, label))
    return rows


def membership_rows(
    clause: MembershipClause,
    indicators: Mapping[str, Mapping[Optional[str], DecisionVar]],
    selector: Optional[str] = None,
    label: str = "",
) -> list[Row]:
    per_label = indicators[clause.variable]
    coefs = tuple((per_label[lab].name, 1.0) for lab in sorted(clause.labels))
    if not coefs:
        raise EncodingError(f"Empty label set in '{clause}' must be reduced before encoding")

    if not clause.negated:
        if selector is None:
            return [Row(coefs, ">=", 1.0, label)]
        # sum(X[v, L]) >= s
        return [Row(coefs + ((selector, -1.0),), ">=", 0.0, label)]

    n = float(len(coefs))
    if selector is None:
        return [Row(coefs, "<=", 0.0, label)]
    # sum(X[v, L]) <= |L| (1 - s)
    return [Row(coefs + ((selector, n),), "<=", n, label)]


def exactly_one_rows(
    indicators: Mapping[str, Mapping[Optional[str], DecisionVar]],
) -> list[Row]:
    """Every categorical variable takes exactly one label."""
    return [
        Row(
            tuple((dv.name, 1.0) for dv in per_label.values()),
            "==",
            1.0,
            f"{var}: exactly one label",
        )
        for var, per_label in indicators.items()
    ]


def _clause_rows(
    clause: Clause,
    *,
    rule: str,
    index: int,
    numeric: Mapping[str, DecisionVar],
    indicators: Mapping[str, Mapping[Optional[str], DecisionVar]],
    settings: Settings,
    selector: Optional[str],
) -> list[Row]:
    label = f"{rule}[{index}]: {clause}"
    if isinstance(clause, LinearClause):
        return linear_rows(clause, numeric, settings, selector, label)
    if isinstance(clause, MembershipClause):
        return membership_rows(clause, indicators, selector, label)
    raise EncodingError(
        f"Clause type {type(clause).__name__} has no linear encoding",
        rule=rule,
        clause_index=index,
    )


def encode_rule(
    position: int,
    rule: str,
    dnf: DNF,
    *,
    numeric: Mapping[str, DecisionVar],
    indicators: Mapping[str, Mapping[Optional[str], DecisionVar]],
    settings: Settings,
) -> tuple[list[DecisionVar], list[Row], tuple[str, ...]]:
    """Write one rule's DNF as rows.

    Returns
    -------
    variables : list[DecisionVar]
        Selector (or marker) variables created for this rule.
    rows : list[Row]
        The rule's constraint rows.
    selectors : tuple[str, ...]
        Names of the term selectors, empty for single-term rules.
    """
    tag = f"{position}:{rule}"
    if not dnf:
        marker = DecisionVar(f"false[{tag}]", "binary", 0.0, 0.0)
        return [marker], [Row(((marker.name, 1.0),), ">=", 1.0, f"{rule}: always false")], ()
    if any(not term for term in dnf):
        return [], [], ()

    common = dict(rule=rule, numeric=numeric, indicators=indicators, settings=settings)

    if len(dnf) == 1:
        rows: list[Row] = []
        for index, clause in enumerate(dnf[0]):
            rows.extend(_clause_rows(clause, index=index, selector=None, **common))
        return [], rows, ()

    variables: list[DecisionVar] = []
    rows = []
    index = 0
    for k, term in enumerate(dnf):
        sel = DecisionVar(f"sel[{tag}#{k}]", "binary", 0.0, 1.0)
        variables.append(sel)
        for clause in term:
            rows.extend(_clause_rows(clause, index=index, selector=sel.name, **common))
            index += 1
    rows.append(
        Row(
            tuple((sel.name, 1.0) for sel in variables),
            ">=",
            1.0,
            f"{rule}: at least one term",
        )
    )
    return variables, rows, tuple(sel.name for sel in variables)
